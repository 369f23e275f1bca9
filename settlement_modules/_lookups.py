"""
Shared row lookups for settlement flows.

Used by settlement_modules/*/service.py to load and lock the master-data
rows a settlement works on, and to validate caller-supplied amounts.

Architecture: Modules layer. Imports only from settlement_kernel.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.types import ZERO, to_decimal
from settlement_kernel.exceptions import (
    CustomerNotFoundError,
    ProductNotFoundError,
    ValidationError,
    VendorNotFoundError,
)
from settlement_kernel.models.catalog import Customer, Product, Vendor


def require_amount(field: str, value: Any) -> Decimal:
    """A non-negative Decimal, or ValidationError naming ``field``."""
    try:
        amount = to_decimal(value)
    except (TypeError, ArithmeticError) as exc:
        raise ValidationError(field, str(exc)) from exc
    if amount < ZERO:
        raise ValidationError(field, f"must not be negative, got {amount}")
    return amount


def require_positive_int(field: str, value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(field, f"must be a positive integer, got {value!r}")
    return value


def lock_customer(session: Session, organization_id: UUID, customer_id: UUID) -> Customer:
    """Customer row locked FOR UPDATE, or CustomerNotFoundError."""
    customer = session.execute(
        select(Customer)
        .where(Customer.organization_id == organization_id, Customer.id == customer_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if customer is None:
        raise CustomerNotFoundError(str(customer_id))
    return customer


def get_vendor(session: Session, organization_id: UUID, vendor_id: UUID) -> Vendor:
    vendor = session.execute(
        select(Vendor).where(Vendor.organization_id == organization_id, Vendor.id == vendor_id)
    ).scalar_one_or_none()
    if vendor is None:
        raise VendorNotFoundError(str(vendor_id))
    return vendor


def load_products(
    session: Session,
    organization_id: UUID,
    product_ids: Iterable[UUID],
    for_update: bool = False,
) -> dict[UUID, Product]:
    """Products by id; ProductNotFoundError for the first id not found.

    With ``for_update`` the rows are locked in id order and refreshed.
    """
    wanted = list(dict.fromkeys(product_ids))
    stmt = select(Product).where(
        Product.organization_id == organization_id,
        Product.id.in_(wanted),
    )
    if for_update:
        stmt = (
            stmt.order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    rows = session.execute(stmt).scalars()
    products = {product.id: product for product in rows}
    for product_id in wanted:
        if product_id not in products:
            raise ProductNotFoundError(str(product_id))
    return products
