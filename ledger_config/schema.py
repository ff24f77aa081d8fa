"""
Configuration Schema (``ledger_config.schema``).

Frozen dataclasses produced by ``ledger_config.loader``.  No I/O.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    busy_timeout: int = 30


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class SchedulerSettings:
    """Recurring scheduler cadence and per-tick limits."""

    tick_interval_seconds: int = 3600
    # Occurrences generated for one recurring transaction in one tick
    max_catch_up: int = 12
    # Due recurring transactions processed per tick
    batch_size: int = 100


@dataclass(frozen=True)
class ChartAccountDef:
    """One account of the default chart seeded for a new tenant."""

    code: str
    name: str
    account_type: str
    subtype: str | None = None


@dataclass(frozen=True)
class RoleBinding:
    """Maps an account role (e.g. "bank") to an account code."""

    role: str
    account_code: str


@dataclass(frozen=True)
class LedgerConfig:
    """The complete runtime configuration."""

    config_id: str
    version: int
    database: DatabaseSettings
    logging: LoggingSettings
    scheduler: SchedulerSettings
    chart_of_accounts: tuple[ChartAccountDef, ...]
    role_bindings: tuple[RoleBinding, ...]
    expense_categories: dict[str, str] = field(default_factory=dict)
    checksum: str = ""

    def account_code_for_role(self, role: str) -> str | None:
        for binding in self.role_bindings:
            if binding.role == role:
                return binding.account_code
        return None

    def account_code_for_category(self, category: str) -> str | None:
        return self.expense_categories.get(category)
