"""
Retainer ORM Models (``ledger_modules.retainers.orm``).

Responsibility
--------------
SQLAlchemy persistence for client retainers.  Maps to the ``Retainer``
frozen dataclass in ``models.py``.

Architecture position
---------------------
**Modules layer** -- persistence.  MUST NOT be imported by
``ledger_kernel``.

Invariants enforced
-------------------
* balance >= 0 (ck_retainer_balance_non_negative).  The service never
  relies on the constraint: consumption uses a guarded UPDATE.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TenantScopedBase, UUIDString


class RetainerModel(TenantScopedBase):
    """ORM model for one client retainer."""

    __tablename__ = "retainers"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_retainer_balance_non_negative"),
        Index("idx_retainer_tenant_client", "tenant_id", "client_id"),
        Index("idx_retainer_tenant_status", "tenant_id", "status"),
    )

    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    minimum_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    replenish_threshold: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from ledger_modules.retainers.models import Retainer, RetainerStatus

        return Retainer(
            id=self.id,
            tenant_id=self.tenant_id,
            client_id=self.client_id,
            balance=self.balance,
            status=RetainerStatus(self.status),
            minimum_balance=self.minimum_balance,
            replenish_threshold=self.replenish_threshold,
            name=self.name,
            closed_at=self.closed_at,
            refund_reason=self.refund_reason,
        )

    def __repr__(self) -> str:
        return f"<RetainerModel {self.id}: {self.balance} ({self.status})>"
