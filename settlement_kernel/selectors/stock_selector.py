"""
Module: settlement_kernel.selectors.stock_selector
Responsibility: Read-only stock queries and the aggregate consistency check
    between Product.current_stock and its VendorStock rows.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - assert_aggregate_consistency() raises if any product's aggregate
      differs from the sum of its vendor rows.
"""

from uuid import UUID

from sqlalchemy import func, select

from settlement_kernel.exceptions import StockAggregateMismatchError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.catalog import Product, VendorStock
from settlement_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.stock")


class StockSelector(BaseSelector):

    def vendor_levels(self, organization_id: UUID, product_id: UUID) -> dict[UUID, int]:
        """Vendor id -> units held for one product."""
        rows = self.session.execute(
            select(VendorStock.vendor_id, VendorStock.current_stock).where(
                VendorStock.organization_id == organization_id,
                VendorStock.product_id == product_id,
            )
        ).all()
        return {vendor_id: stock for vendor_id, stock in rows}

    def vendor_total(self, organization_id: UUID, product_id: UUID) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(VendorStock.current_stock), 0)).where(
                VendorStock.organization_id == organization_id,
                VendorStock.product_id == product_id,
            )
        ).scalar_one()
        return int(total)

    def assert_aggregate_consistency(
        self,
        organization_id: UUID,
        product_ids: list[UUID] | None = None,
    ) -> None:
        """
        Check Product.current_stock == sum of VendorStock.current_stock.

        Raises:
            StockAggregateMismatchError: for the first inconsistent product.
        """
        vendor_sums = (
            select(
                VendorStock.product_id.label("product_id"),
                func.sum(VendorStock.current_stock).label("vendor_total"),
            )
            .where(VendorStock.organization_id == organization_id)
            .group_by(VendorStock.product_id)
            .subquery()
        )
        stmt = (
            select(
                Product.id,
                Product.current_stock,
                func.coalesce(vendor_sums.c.vendor_total, 0),
            )
            .outerjoin(vendor_sums, vendor_sums.c.product_id == Product.id)
            .where(Product.organization_id == organization_id)
            .order_by(Product.name)
        )
        if product_ids is not None:
            stmt = stmt.where(Product.id.in_(product_ids))

        for product_id, product_stock, vendor_total in self.session.execute(stmt):
            if product_stock != int(vendor_total):
                logger.error(
                    "stock_aggregate_mismatch",
                    extra={
                        "product_id": str(product_id),
                        "product_stock": product_stock,
                        "vendor_total": int(vendor_total),
                    },
                )
                raise StockAggregateMismatchError(
                    product_id=str(product_id),
                    product_stock=product_stock,
                    vendor_total=int(vendor_total),
                )
