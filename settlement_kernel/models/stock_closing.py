"""
Module: settlement_kernel.models.stock_closing
Responsibility: ORM persistence for end-of-day stock reconciliation
    snapshots.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Immutable after insert, header and lines alike (db/immutability.py).
    - total_difference_value equals the sum of difference * price over the
      shrinkage lines and the total_amount of the linked sale.

Audit relevance:
    morning_stock, purchases, sales and discrepancy are the figures the
    counting clerk saw.  system_stock and difference are what the engine read
    and acted on.  Keeping both makes disagreements between them visible.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, TenantScopedBase, UUIDString


class StockClosing(TenantScopedBase):
    """One reconciliation run."""

    __tablename__ = "stock_closings"

    __table_args__ = (
        Index("idx_stock_closing_org_date", "organization_id", "closing_date"),
    )

    closing_date: Mapped[datetime] = mapped_column(nullable=False)
    total_difference_value: Mapped[Decimal] = mapped_column(nullable=False)
    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sales.id"), nullable=False
    )
    cash_amount: Mapped[Decimal] = mapped_column(nullable=False)
    online_amount: Mapped[Decimal] = mapped_column(nullable=False)

    items: Mapped[list["StockClosingItem"]] = relationship(
        back_populates="closing",
        order_by="StockClosingItem.line_no",
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "closing_date": self.closing_date.isoformat(),
            "sale_id": str(self.sale_id),
            "total_difference_value": str(self.total_difference_value),
            "cash_amount": str(self.cash_amount),
            "online_amount": str(self.online_amount),
            "items": [item.to_dict() for item in self.items],
        }


class StockClosingItem(Base):
    """Per-product figures of one reconciliation run."""

    __tablename__ = "stock_closing_items"

    closing_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_closings.id"), nullable=False, index=True
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    morning_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    purchases: Mapped[int] = mapped_column(Integer, nullable=False)
    sales: Mapped[int] = mapped_column(Integer, nullable=False)
    system_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    closing_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    physical_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    difference: Mapped[int] = mapped_column(Integer, nullable=False)
    discrepancy: Mapped[int] = mapped_column(Integer, nullable=False)
    discrepancy_value: Mapped[Decimal] = mapped_column(nullable=False)

    closing: Mapped[StockClosing] = relationship(back_populates="items")

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id),
            "product_name": self.product_name,
            "morning_stock": self.morning_stock,
            "purchases": self.purchases,
            "sales": self.sales,
            "system_stock": self.system_stock,
            "closing_stock": self.closing_stock,
            "physical_stock": self.physical_stock,
            "difference": self.difference,
            "discrepancy": self.discrepancy,
            "discrepancy_value": str(self.discrepancy_value),
        }
