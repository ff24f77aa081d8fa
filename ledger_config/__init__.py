"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  No other component reads configuration files or environment
    variables directly.

Architecture position:
    Configuration.  Sits beside ``ledger_kernel``; the kernel never imports
    from here.  Modules, the batch layer, and scripts do.

Environment overrides:
    LEDGER_CONFIG_PATH    -- YAML file to load instead of defaults.yaml
    LEDGER_DATABASE_URL   -- replaces database.url
    LEDGER_LOG_LEVEL      -- replaces logging.level

Audit relevance:
    Every call logs ``config_loaded`` with config_id, version and checksum.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from ledger_config.loader import load_config
from ledger_config.schema import (
    ChartAccountDef,
    DatabaseSettings,
    LedgerConfig,
    LoggingSettings,
    RoleBinding,
    SchedulerSettings,
)

_logger = logging.getLogger("ledger_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``config_path`` argument, then
    LEDGER_CONFIG_PATH, then the packaged defaults.yaml.
    """
    path = Path(config_path or os.environ.get("LEDGER_CONFIG_PATH") or DEFAULT_CONFIG_PATH)
    config = load_config(path)

    database_url = os.environ.get("LEDGER_DATABASE_URL")
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    log_level = os.environ.get("LEDGER_LOG_LEVEL")
    if log_level:
        config = replace(config, logging=LoggingSettings(level=log_level.upper()))

    _logger.info(
        "config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "path": str(path),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "ChartAccountDef",
    "DatabaseSettings",
    "LedgerConfig",
    "LoggingSettings",
    "RoleBinding",
    "SchedulerSettings",
]
