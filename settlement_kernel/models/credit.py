"""
Module: settlement_kernel.models.credit
Responsibility: ORM persistence for customer credit payments (collections
    against an outstanding balance).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - amount = cash_amount + online_amount.
    - Status moves ACTIVE -> CANCELLED once.  The row is never deleted and its
      amounts never change; cancellation is compensated in the ledger and
      cashbook.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TenantScopedBase, UUIDString


class CreditPaymentStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class CreditPayment(TenantScopedBase):
    """Money collected from a customer towards what they owe."""

    __tablename__ = "credit_payments"

    __table_args__ = (
        Index("idx_credit_payment_customer", "organization_id", "customer_id"),
    )

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("customers.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    cash_amount: Mapped[Decimal] = mapped_column(nullable=False)
    online_amount: Mapped[Decimal] = mapped_column(nullable=False)
    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    credit_date: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CreditPaymentStatus.ACTIVE.value
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def is_cancelled(self) -> bool:
        return self.status == CreditPaymentStatus.CANCELLED

    def __repr__(self) -> str:
        return f"<CreditPayment {self.id} amount={self.amount} {self.status}>"
