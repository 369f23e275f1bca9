"""
Module: settlement_kernel.models.purchase
Responsibility: ORM persistence for vendor purchases and their line items.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - total_bottles = carets * bottles_per_caret + bottles on every line.
    - A Purchase is never deleted.  A return flips is_returned and records
      who returned it and when; the monetary figures stay as recorded.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, TenantScopedBase, UUIDString


class Purchase(TenantScopedBase):
    """Stock received from one vendor, with its taxes and payment."""

    __tablename__ = "purchases"

    __table_args__ = (
        UniqueConstraint("organization_id", "purchase_number", name="uq_purchase_number"),
        Index("idx_purchase_vendor", "organization_id", "vendor_id"),
    )

    purchase_number: Mapped[str] = mapped_column(String(50), nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("vendors.id"), nullable=False
    )
    vendor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    purchase_date: Mapped[datetime] = mapped_column(nullable=False)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(nullable=False)
    tcs_rate: Mapped[Decimal] = mapped_column(nullable=False)
    tcs_amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False)
    due_amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)

    is_returned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    returned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    returned_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    items: Mapped[list["PurchaseItem"]] = relationship(
        back_populates="purchase",
        order_by="PurchaseItem.line_no",
    )

    @property
    def total_bottles(self) -> int:
        return sum(item.total_bottles for item in self.items)

    def __repr__(self) -> str:
        return f"<Purchase {self.purchase_number} total={self.total_amount}>"


class PurchaseItem(Base):
    """One product line of a purchase, counted in carets and loose bottles."""

    __tablename__ = "purchase_items"

    __table_args__ = (
        UniqueConstraint("purchase_id", "line_no", name="uq_purchase_item_line"),
    )

    purchase_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchases.id"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    carets: Mapped[int] = mapped_column(Integer, nullable=False)
    bottles: Mapped[int] = mapped_column(Integer, nullable=False)
    bottles_per_caret: Mapped[int] = mapped_column(Integer, nullable=False)
    total_bottles: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_price_per_caret: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    purchase: Mapped[Purchase] = relationship(back_populates="items")
