"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
dataclasses of ``ledger_config.schema``.  Runtime callers go through
``ledger_config.get_active_config()`` instead of calling this directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown account type in the chart  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    ChartAccountDef,
    DatabaseSettings,
    LedgerConfig,
    LoggingSettings,
    RoleBinding,
    SchedulerSettings,
)

_ACCOUNT_TYPES = frozenset({"asset", "liability", "equity", "income", "expense"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_chart(items: list[dict[str, Any]]) -> tuple[ChartAccountDef, ...]:
    chart = []
    for item in items:
        account_type = item["account_type"]
        if account_type not in _ACCOUNT_TYPES:
            raise ValueError(f"Unknown account type {account_type!r} for account {item['code']}")
        chart.append(
            ChartAccountDef(
                code=str(item["code"]),
                name=item["name"],
                account_type=account_type,
                subtype=item.get("subtype"),
            )
        )
    return tuple(chart)


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """Parse a raw config dict into a LedgerConfig."""
    db = data.get("database", {})
    sched = data.get("scheduler", {})
    log = data.get("logging", {})

    return LedgerConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        database=DatabaseSettings(
            url=db["url"],
            echo=bool(db.get("echo", False)),
            pool_size=int(db.get("pool_size", 20)),
            max_overflow=int(db.get("max_overflow", 10)),
            busy_timeout=int(db.get("busy_timeout", 30)),
        ),
        logging=LoggingSettings(level=str(log.get("level", "INFO")).upper()),
        scheduler=SchedulerSettings(
            tick_interval_seconds=int(sched.get("tick_interval_seconds", 3600)),
            max_catch_up=int(sched.get("max_catch_up", 12)),
            batch_size=int(sched.get("batch_size", 100)),
        ),
        chart_of_accounts=parse_chart(data.get("chart_of_accounts", [])),
        role_bindings=tuple(
            RoleBinding(role=role, account_code=str(code))
            for role, code in (data.get("role_bindings") or {}).items()
        ),
        expense_categories={
            str(k): str(v) for k, v in (data.get("expense_categories") or {}).items()
        },
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> LedgerConfig:
    return parse_config(load_yaml_file(path))
