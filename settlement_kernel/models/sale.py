"""
Module: settlement_kernel.models.sale
Responsibility: ORM persistence for sales: the sale header, its ordered
    line items, the vendor allocations that fulfilled each line, and the
    capacity-bounded sub-bills a large cart is split into.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A Sale is never deleted (db/immutability.py).  Returns and voids are
      recorded by status flags plus new compensating rows.
    - Sum of SaleVendorAllocation.quantity for an item equals item.quantity.
    - kind distinguishes customer sales, reconciliation shrinkage sales and
      return sales.  Nothing depends on the sale_number prefix.

Audit relevance:
    items[].vendor_allocations[] is the only record of which vendor's stock a
    sale consumed.  Together with sub_bills[] and the customer ledger it is
    sufficient to replay stock deltas and balances.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, TenantScopedBase, UUIDString


class SaleKind(str, Enum):
    """What produced the sale.

    ORDINARY sales come from a cart.  SHRINKAGE_ADJUSTMENT sales are
    synthesized by inventory reconciliation to account for missing stock.
    RETURN sales mirror an ordinary sale that was returned in full.
    """

    ORDINARY = "ordinary"
    SHRINKAGE_ADJUSTMENT = "shrinkage_adjustment"
    RETURN = "return"


class SaleStatus(str, Enum):
    ACTIVE = "active"
    VOIDED = "voided"


class PaymentStatus(str, Enum):
    PAID = "paid"
    PARTIAL = "partial"
    UNPAID = "unpaid"

    @classmethod
    def for_amounts(cls, total: Decimal, paid: Decimal) -> "PaymentStatus":
        if paid >= total:
            return cls.PAID
        if paid > 0:
            return cls.PARTIAL
        return cls.UNPAID


class PaymentMode(str, Enum):
    CASH = "cash"
    ONLINE = "online"
    CREDIT = "credit"
    SPLIT = "split"

    @classmethod
    def for_parts(
        cls,
        cash: Decimal,
        online: Decimal,
        credit: Decimal,
        default: "PaymentMode",
    ) -> "PaymentMode":
        """The single mode used, SPLIT for several, ``default`` for none."""
        used = [
            mode
            for mode, amount in ((cls.CASH, cash), (cls.ONLINE, online), (cls.CREDIT, credit))
            if amount > 0
        ]
        if not used:
            return cls(default)
        if len(used) == 1:
            return used[0]
        return cls.SPLIT


class DiscountType(str, Enum):
    """How a line's discount_value is read.

    PERCENTAGE is a share of the line's gross amount; AMOUNT is an absolute
    figure for the whole line.
    """

    PERCENTAGE = "percentage"
    AMOUNT = "amount"


class Sale(TenantScopedBase):
    """
    One settled customer transaction (or a synthesized equivalent).

    Guarantees:
        - total_amount = max(0, subtotal - total_discount).
        - paid_amount = cash_amount + online_amount.
        - due_amount = max(0, total_amount - paid_amount); always zero for
          shrinkage and return sales.
    """

    __tablename__ = "sales"

    __table_args__ = (
        UniqueConstraint("organization_id", "sale_number", name="uq_sale_number"),
        Index("idx_sale_org_date", "organization_id", "sale_date"),
        Index("idx_sale_customer", "organization_id", "customer_id"),
    )

    sale_number: Mapped[str] = mapped_column(String(50), nullable=False)
    kind: Mapped[SaleKind] = mapped_column(String(30), nullable=False)
    customer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("customers.id"), nullable=True
    )
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    sale_date: Mapped[datetime] = mapped_column(nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    bill_discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_discount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False)
    due_amount: Mapped[Decimal] = mapped_column(nullable=False)
    cash_amount: Mapped[Decimal] = mapped_column(nullable=False)
    online_amount: Mapped[Decimal] = mapped_column(nullable=False)
    credit_amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SaleStatus.ACTIVE.value
    )
    is_returned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reference_sale_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("sales.id"), nullable=True
    )

    items: Mapped[list["SaleItem"]] = relationship(
        back_populates="sale",
        order_by="SaleItem.line_no",
        cascade="save-update, merge",
    )
    sub_bills: Mapped[list["SubBill"]] = relationship(
        back_populates="sale",
        order_by="SubBill.bill_no",
        cascade="save-update, merge",
    )

    def __repr__(self) -> str:
        return f"<Sale {self.sale_number} {self.kind} total={self.total_amount}>"

    def to_dict(self) -> dict[str, Any]:
        """Persisted shape used by downstream audit replays."""
        return {
            "id": str(self.id),
            "sale_number": self.sale_number,
            "kind": SaleKind(self.kind).value,
            "customer_id": str(self.customer_id) if self.customer_id else None,
            "customer_name": self.customer_name,
            "sale_date": self.sale_date.isoformat(),
            "items": [item.to_dict() for item in self.items],
            "sub_bills": [bill.to_dict() for bill in self.sub_bills],
            "subtotal": str(self.subtotal),
            "bill_discount_amount": str(self.bill_discount_amount),
            "total_discount": str(self.total_discount),
            "total_amount": str(self.total_amount),
            "paid_amount": str(self.paid_amount),
            "due_amount": str(self.due_amount),
            "status": self.status,
            "is_returned": self.is_returned,
        }


class SaleItem(Base):
    """One cart line: product, quantity, price and discount.

    discount_type and discount_value record the discount as the cashier
    entered it; discount_amount is the absolute figure derived from them.
    """

    __tablename__ = "sale_items"

    __table_args__ = (
        UniqueConstraint("sale_id", "line_no", name="uq_sale_item_line"),
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sales.id"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_unit: Mapped[Decimal] = mapped_column(nullable=False)
    discount_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DiscountType.AMOUNT.value
    )
    discount_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    sale: Mapped[Sale] = relationship(back_populates="items")
    vendor_allocations: Mapped[list["SaleVendorAllocation"]] = relationship(
        back_populates="item",
        order_by="SaleVendorAllocation.seq",
        cascade="save-update, merge",
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id),
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price_per_unit": str(self.price_per_unit),
            "discount_type": self.discount_type,
            "discount_value": str(self.discount_value),
            "discount_amount": str(self.discount_amount),
            "total_amount": str(self.total_amount),
            "vendor_allocations": [a.to_dict() for a in self.vendor_allocations],
        }


class SaleVendorAllocation(Base):
    """Quantity of a sale line supplied from one vendor's stock."""

    __tablename__ = "sale_vendor_allocations"

    sale_item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sale_items.id"), nullable=False, index=True
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("vendors.id"), nullable=False
    )
    vendor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    item: Mapped[SaleItem] = relationship(back_populates="vendor_allocations")

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendor_id": str(self.vendor_id),
            "vendor_name": self.vendor_name,
            "quantity": self.quantity,
        }


class SubBill(Base):
    """A capacity-bounded partition of a sale with its own payment split."""

    __tablename__ = "sub_bills"

    __table_args__ = (
        UniqueConstraint("sale_id", "bill_no", name="uq_sub_bill_no"),
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sales.id"), nullable=False
    )
    bill_no: Mapped[int] = mapped_column(Integer, nullable=False)
    sub_total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_volume_ml: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    cash_paid_amount: Mapped[Decimal] = mapped_column(nullable=False)
    online_paid_amount: Mapped[Decimal] = mapped_column(nullable=False)
    credit_paid_amount: Mapped[Decimal] = mapped_column(nullable=False)

    sale: Mapped[Sale] = relationship(back_populates="sub_bills")
    items: Mapped[list["SubBillItem"]] = relationship(
        back_populates="sub_bill",
        order_by="SubBillItem.line_no",
        cascade="save-update, merge",
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "bill_no": self.bill_no,
            "items": [item.to_dict() for item in self.items],
            "sub_total_amount": str(self.sub_total_amount),
            "total_discount_amount": str(self.total_discount_amount),
            "total_amount": str(self.total_amount),
            "total_volume_ml": self.total_volume_ml,
            "payment_mode": self.payment_mode,
            "cash_paid_amount": str(self.cash_paid_amount),
            "online_paid_amount": str(self.online_paid_amount),
            "credit_paid_amount": str(self.credit_paid_amount),
        }


class SubBillItem(Base):
    """A (possibly partial) sale line placed in one sub-bill."""

    __tablename__ = "sub_bill_items"

    sub_bill_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("sub_bills.id"), nullable=False, index=True
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_unit: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    sub_bill: Mapped[SubBill] = relationship(back_populates="items")

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id),
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price_per_unit": str(self.price_per_unit),
            "discount_amount": str(self.discount_amount),
            "total_amount": str(self.total_amount),
        }
