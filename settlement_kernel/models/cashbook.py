"""
Module: settlement_kernel.models.cashbook
Responsibility: ORM persistence for cash and online money movements.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only (db/immutability.py).  Reversals are new rows with the
      amounts on the opposite side (cash_out instead of cash_in).
    - All four amounts are non-negative.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TenantScopedBase, UUIDString


class CashbookSource(str, Enum):
    SALE = "sale"
    PURCHASE = "purchase"
    CLOSING = "closing"
    CREDIT = "credit"


class CashbookEntry(TenantScopedBase):
    """One dated money movement tied to the document that caused it."""

    __tablename__ = "cashbook_entries"

    __table_args__ = (
        Index("idx_cashbook_org_date", "organization_id", "entry_date"),
    )

    entry_date: Mapped[datetime] = mapped_column(nullable=False)
    source_type: Mapped[CashbookSource] = mapped_column(String(20), nullable=False)
    reference_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    cash_in: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    cash_out: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    online_in: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    online_out: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    @property
    def net_amount(self) -> Decimal:
        return self.cash_in + self.online_in - self.cash_out - self.online_out
