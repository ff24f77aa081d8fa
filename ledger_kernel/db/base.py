"""
Declarative bases for every ledger table.

Three layers:

* ``Base``: UUID primary key and the column type map. Python ``int`` maps
  to BigInteger because every amount and balance is a whole number of
  minor units; floats and Decimals never reach the database.
* ``TrackedBase``: who created or last changed a row, and when. These are
  audit columns and stay writable on otherwise immutable rows.
* ``TenantScopedBase``: ``tenant_id`` for rows owned by one tenant's books.
  Nothing in the ledger joins across tenants, so every tenant table
  indexes ``tenant_id`` first.

Model modules import from here; this module imports nothing from the rest
of the kernel.
"""

from datetime import date, datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUIDs as 36-character strings, identical on SQLite and PostgreSQL."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        int: BigInteger,
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    # Every ledger write names an actor.
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)


class TenantScopedBase(TrackedBase):
    __abstract__ = True

    tenant_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)


UUID = PyUUID
