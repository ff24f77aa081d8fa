"""Database layer - engine, base classes, money type, and immutability listeners."""

from ledger_kernel.db.base import UUID, Base, TenantScopedBase, TrackedBase, UUIDString
from ledger_kernel.db.engine import create_tables, get_engine, get_session
from ledger_kernel.db.types import is_minor_units

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "TenantScopedBase",
    "UUIDString",
    "UUID",
    "is_minor_units",
]
