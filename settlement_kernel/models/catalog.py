"""
Module: settlement_kernel.models.catalog
Responsibility: ORM persistence for the master data the settlement engine
    reads and mutates: products, vendors, per-vendor stock and customers.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - VendorStock has exactly one row per (organization, vendor, product) and
      current_stock is never negative (CHECK constraint).
    - Product.current_stock equals the sum of its VendorStock rows.  No
      constraint can express this; settlement_services.stock_allocation is the
      only writer of either counter and moves both in the same call.
    - Customer.outstanding_balance moves only through sale dues, credit
      payments and their compensating reversals.

Failure modes:
    - IntegrityError on a duplicate (vendor, product) stock row.
    - IntegrityError if a stock counter would go negative.

Audit relevance:
    Stock counters and outstanding balances are running totals.  Their history
    is reconstructible from Sale.items[].vendor_allocations, Purchase.items[],
    StockClosing and the customer ledger.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TenantScopedBase, UUIDString


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class VendorStatus(str, Enum):
    """Vendor lifecycle status.

    Only ACTIVE vendors are drawn from when fulfilling a sale.  DELETED
    vendors keep their stock rows so reconciliation can still source
    shrinkage from them.
    """

    ACTIVE = "active"
    DELETED = "deleted"


class CustomerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Product(TenantScopedBase):
    """
    Sellable product with an aggregate stock counter.

    Contract:
        current_stock is the sum of VendorStock.current_stock for this product.
        morning_stock is the baseline physical count from the last
        reconciliation; morning_stock_last_updated_date marks the start of
        the business day that baseline applies to.
    """

    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_org_name", "organization_id", "name"),
        CheckConstraint("current_stock >= 0", name="ck_product_stock_non_negative"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    brand: Mapped[str | None] = mapped_column(String(200), nullable=True)
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    morning_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    morning_stock_last_updated_date: Mapped[datetime | None] = mapped_column(nullable=True)
    price_per_unit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    volume_ml: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bottles_per_caret: Mapped[int] = mapped_column(Integer, nullable=False, default=12)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProductStatus.ACTIVE.value
    )

    def __repr__(self) -> str:
        return f"<Product {self.name} stock={self.current_stock}>"


class Vendor(TenantScopedBase):
    """
    Supplier of stock.

    Contract:
        priority orders vendors for deduction: lower values are drawn from
        first.  Ties are broken by id (see VendorSelector).
    """

    __tablename__ = "vendors"

    __table_args__ = (
        Index("idx_vendor_org_priority", "organization_id", "priority"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=VendorStatus.ACTIVE.value
    )

    @property
    def is_active(self) -> bool:
        return self.status == VendorStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Vendor {self.name} priority={self.priority}>"


class VendorStock(TenantScopedBase):
    """
    Units of one product held on behalf of one vendor.

    Rows are created on first purchase and never deleted; an exhausted row
    simply holds zero.
    """

    __tablename__ = "vendor_stocks"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "vendor_id", "product_id", name="uq_vendor_stock"
        ),
        Index("idx_vendor_stock_product", "organization_id", "product_id"),
        CheckConstraint("current_stock >= 0", name="ck_vendor_stock_non_negative"),
    )

    vendor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("vendors.id"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_purchase_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    last_purchase_date: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<VendorStock vendor={self.vendor_id} product={self.product_id} "
            f"stock={self.current_stock}>"
        )


class Customer(TenantScopedBase):
    """
    Named buyer who may buy on credit.

    Contract:
        outstanding_balance is the amount currently owed.  It never goes
        below zero through a credit collection.  max_discount_percentage,
        when set, caps the combined item and bill discount of every sale.
    """

    __tablename__ = "customers"

    __table_args__ = (
        Index("idx_customer_org_name", "organization_id", "name"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    credit_limit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    outstanding_balance: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    max_discount_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    last_transaction_date: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CustomerStatus.ACTIVE.value
    )

    def __repr__(self) -> str:
        return f"<Customer {self.name} outstanding={self.outstanding_balance}>"
