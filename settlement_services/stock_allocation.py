"""
StockAllocationService -- the stock layer.

Responsibility:
    Applies stock movements to VendorStock rows under row locks and moves
    Product.current_stock by the same amount in the same call.  Sales and
    reconciliation draw stock through allocate(), purchases add it through
    receive(), sale returns put it back through restore() and purchase
    returns take it out through withdraw().

Architecture position:
    Services -- stateful layer over the pure StockAllocationEngine.
    Called by settlement_modules.  Flush only; the calling module owns the
    transaction.

Invariants enforced:
    - Product.current_stock == Σ VendorStock.current_stock.  This class is
      the only writer of either counter.
    - No counter goes negative: a shortfall is detected on locked rows
      before anything is modified.
    - Rows are locked product first, then its vendor rows, so two callers
      touching the same product serialize instead of deadlocking.

Failure modes:
    - InsufficientStockError when the vendors cannot cover the quantity.
      Nothing has been modified when it is raised.
    - ProductNotFoundError if the product row disappeared.

Audit relevance:
    Every successful call logs a ``stock_*`` event with the per-vendor
    movement; the caller persists the same figures on the sale or purchase.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_engines.allocation import (
    StockAllocationEngine,
    StockAllocationResult,
    StockSource,
)
from settlement_kernel.exceptions import InsufficientStockError, ProductNotFoundError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.catalog import Product, Vendor, VendorStock
from settlement_kernel.selectors.vendor_selector import VendorInfo
from settlement_kernel.services.base import BaseService

logger = get_logger("services.stock_allocation")


class StockAllocationService(BaseService):
    """
    Locked, two-counter stock mutations.

    Contract:
        Every public method takes the tenant, the Product being moved and
        the acting user; it returns after flushing.
    Non-goals:
        - Does NOT commit or roll back.
        - Does NOT choose which vendors may be drawn from; callers pass the
          vendor list (active only for sales, all for reconciliation).
    """

    def __init__(self, session: Session, engine: StockAllocationEngine | None = None):
        super().__init__(session)
        self._engine = engine or StockAllocationEngine()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock_product(self, organization_id: UUID, product_id: UUID) -> Product:
        product = self.session.execute(
            select(Product)
            .where(
                Product.organization_id == organization_id,
                Product.id == product_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def _lock_vendor_rows(
        self,
        organization_id: UUID,
        product_id: UUID,
    ) -> dict[UUID, VendorStock]:
        rows = self.session.execute(
            select(VendorStock)
            .where(
                VendorStock.organization_id == organization_id,
                VendorStock.product_id == product_id,
            )
            .order_by(VendorStock.vendor_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {row.vendor_id: row for row in rows}

    def _get_or_create_row(
        self,
        organization_id: UUID,
        vendor_id: UUID,
        product_id: UUID,
        actor_id: UUID,
    ) -> VendorStock:
        row = self._lock_vendor_rows(organization_id, product_id).get(vendor_id)
        if row is not None:
            return row

        savepoint = self.session.begin_nested()
        try:
            row = VendorStock(
                organization_id=organization_id,
                vendor_id=vendor_id,
                product_id=product_id,
                current_stock=0,
                created_by_id=actor_id,
            )
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row
        except IntegrityError:
            logger.debug(
                "vendor_stock_race_retry",
                extra={"vendor_id": str(vendor_id), "product_id": str(product_id)},
            )
            savepoint.rollback()
            row = self._lock_vendor_rows(organization_id, product_id).get(vendor_id)
            if row is None:
                raise
            return row

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def allocate(
        self,
        organization_id: UUID,
        product: Product,
        quantity: int,
        vendors: Sequence[VendorInfo],
        actor_id: UUID,
    ) -> StockAllocationResult:
        """
        Draw ``quantity`` units of ``product`` from ``vendors`` in order.

        Raises:
            InsufficientStockError: the vendors hold fewer units than
                requested.  No row has been modified.
        """
        product = self._lock_product(organization_id, product.id)
        rows = self._lock_vendor_rows(organization_id, product.id)

        sources = [
            StockSource(
                source_id=vendor.id,
                label=vendor.name,
                priority=vendor.priority,
                available=rows[vendor.id].current_stock if vendor.id in rows else 0,
            )
            for vendor in vendors
        ]
        result = self._engine.allocate(quantity=quantity, sources=sources)

        if not result.is_complete:
            logger.warning(
                "insufficient_stock",
                extra={
                    "product_id": str(product.id),
                    "product_name": product.name,
                    "requested": quantity,
                    "available": result.total_drawn,
                },
            )
            raise InsufficientStockError(
                product_id=str(product.id),
                product_name=product.name,
                requested=quantity,
                available=result.total_drawn,
            )

        for draw in result.draws:
            row = rows[draw.source_id]
            row.current_stock -= draw.quantity
            row.updated_by_id = actor_id
        product.current_stock -= result.total_drawn
        product.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stock_allocated",
            extra={
                "product_id": str(product.id),
                "quantity": quantity,
                "draws": [
                    {"vendor_id": str(d.source_id), "quantity": d.quantity}
                    for d in result.draws
                ],
                "product_stock_after": product.current_stock,
            },
        )
        return result

    def receive(
        self,
        organization_id: UUID,
        vendor: Vendor,
        product: Product,
        quantity: int,
        unit_price: Decimal,
        when: datetime,
        actor_id: UUID,
    ) -> VendorStock:
        """Add purchased units to the vendor's row, creating it if absent."""
        if quantity <= 0:
            raise ValueError(f"Received quantity must be positive, got {quantity}")

        product = self._lock_product(organization_id, product.id)
        row = self._get_or_create_row(organization_id, vendor.id, product.id, actor_id)

        row.current_stock += quantity
        row.last_purchase_price = unit_price
        row.last_purchase_date = when
        row.updated_by_id = actor_id
        product.current_stock += quantity
        product.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stock_received",
            extra={
                "product_id": str(product.id),
                "vendor_id": str(vendor.id),
                "quantity": quantity,
                "vendor_stock_after": row.current_stock,
                "product_stock_after": product.current_stock,
            },
        )
        return row

    def restore(
        self,
        organization_id: UUID,
        product: Product,
        allocations: Iterable[tuple[UUID, int]],
        actor_id: UUID,
    ) -> int:
        """
        Put back units previously drawn, per (vendor_id, quantity) pair.

        Returns the total restored.
        """
        product = self._lock_product(organization_id, product.id)
        rows = self._lock_vendor_rows(organization_id, product.id)
        restored = 0
        for vendor_id, quantity in allocations:
            if quantity <= 0:
                continue
            row = rows.get(vendor_id)
            if row is None:
                row = self._get_or_create_row(
                    organization_id, vendor_id, product.id, actor_id
                )
                rows[vendor_id] = row
            row.current_stock += quantity
            row.updated_by_id = actor_id
            restored += quantity
        product.current_stock += restored
        product.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stock_restored",
            extra={
                "product_id": str(product.id),
                "quantity": restored,
                "product_stock_after": product.current_stock,
            },
        )
        return restored

    def withdraw(
        self,
        organization_id: UUID,
        vendor: Vendor,
        product: Product,
        quantity: int,
        actor_id: UUID,
    ) -> VendorStock:
        """
        Take units out of one specific vendor's row.

        Raises:
            InsufficientStockError: the vendor holds fewer than ``quantity``.
        """
        if quantity <= 0:
            raise ValueError(f"Withdrawn quantity must be positive, got {quantity}")

        product = self._lock_product(organization_id, product.id)
        row = self._lock_vendor_rows(organization_id, product.id).get(vendor.id)
        available = row.current_stock if row is not None else 0
        if row is None or available < quantity:
            logger.warning(
                "insufficient_stock",
                extra={
                    "product_id": str(product.id),
                    "vendor_id": str(vendor.id),
                    "requested": quantity,
                    "available": available,
                },
            )
            raise InsufficientStockError(
                product_id=str(product.id),
                product_name=product.name,
                requested=quantity,
                available=available,
            )

        row.current_stock -= quantity
        row.updated_by_id = actor_id
        product.current_stock -= quantity
        product.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stock_withdrawn",
            extra={
                "product_id": str(product.id),
                "vendor_id": str(vendor.id),
                "quantity": quantity,
                "vendor_stock_after": row.current_stock,
                "product_stock_after": product.current_stock,
            },
        )
        return row
