"""
Module: settlement_modules.inventory.service
Responsibility:
    End-of-day stock reconciliation.  Compares each counted product with the
    system figure, draws the missing units from vendor stock in priority
    order, books them as one shrinkage-adjustment sale, snapshots the run as
    a StockClosing and rolls the morning-stock baseline to the next day.

Architecture:
    settlement_modules layer -- owns the transaction boundary through
    ``settlement_unit``.  Stock leaves vendor rows only through
    StockAllocationService, exactly as for a customer sale.

Invariants:
    - difference = current_stock - physical_stock.  Only positive
      differences move stock; after the run current_stock == physical for
      those products.
    - Every counted product gets morning_stock = physical_stock.
    - Every product of the tenant gets morning_stock_last_updated_date =
      rollover time of the next calendar day, in the same unit.
    - total_difference_value == Σ difference * price_per_unit
      == shrinkage sale total_amount.

Failure modes:
    - ValidationError for an empty or malformed count list.
    - ProductNotFoundError for an unknown product.
    - InsufficientStockError when vendor rows cannot cover a difference.
    - NothingToReconcileError when no product shows a positive difference;
      nothing is written.

Audit relevance:
    The closing snapshot keeps both the clerk's figures and the system
    figures the engine acted on.  One STOCK_RECONCILED event per run.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_config import SettlementConfig, get_active_config
from settlement_engines.bin_packing import BinPackingEngine, PackableLine, PaymentSplit
from settlement_kernel.db.types import ZERO
from settlement_kernel.domain.business_day import at_time_of_day, next_day_at
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import NothingToReconcileError, ValidationError
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.cashbook import CashbookSource
from settlement_kernel.models.catalog import Product
from settlement_kernel.models.sale import (
    DiscountType,
    PaymentMode,
    PaymentStatus,
    Sale,
    SaleItem,
    SaleKind,
    SaleStatus,
    SaleVendorAllocation,
)
from settlement_kernel.models.stock_closing import StockClosing, StockClosingItem
from settlement_kernel.selectors.vendor_selector import VendorSelector
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.cashbook_service import CashbookService
from settlement_kernel.services.sequence_service import SequenceService
from settlement_modules._lookups import load_products, require_amount
from settlement_modules.inventory.models import ClosingCount, ReconciliationResult
from settlement_modules.sales.service import WALK_IN_NAME, build_sub_bill
from settlement_services.stock_allocation import StockAllocationService
from settlement_services.unit_of_work import settlement_unit

logger = get_logger("modules.inventory.service")


class ReconciliationService:
    """
    Entry point for end-of-day stock reconciliation.

    Contract:
        Callers supply a live Session, and optionally a Clock and a
        SettlementConfig.  ``reconcile`` commits on success and rolls back
        on failure.
    Non-goals:
        - Does not compute the clerk's snapshot figures; they are stored as
          given.
        - Does not add stock when the physical count exceeds the system
          figure.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: SettlementConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._stock = StockAllocationService(session)
        self._cashbook = CashbookService(session)
        self._sequence = SequenceService(session)
        self._auditor = AuditorService(session, self._clock)
        self._vendors = VendorSelector(session)
        self._packer = BinPackingEngine()

    def reconcile(
        self,
        organization_id: UUID,
        closing_counts: Sequence[ClosingCount],
        cash_amount: Decimal,
        online_amount: Decimal,
        actor_id: UUID,
    ) -> ReconciliationResult:
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            operation="reconcile",
        ):
            logger.info(
                "reconciliation_started",
                extra={"products_counted": len(closing_counts)},
            )
            with settlement_unit(self._session, "reconcile"):
                result = self._reconcile(
                    organization_id, closing_counts, cash_amount, online_amount, actor_id
                )

            logger.info(
                "stock_reconciled",
                extra={
                    "sale_id": str(result.sale.id),
                    "sale_number": result.sale.sale_number,
                    "closing_id": str(result.closing.id),
                    "products_adjusted": len(result.closing.items),
                    "total_difference_value": str(result.total_difference_value),
                    "sub_bill_count": len(result.sale.sub_bills),
                },
            )
            return result

    def _validate(
        self,
        closing_counts: Sequence[ClosingCount],
        cash_amount: Decimal,
        online_amount: Decimal,
    ) -> tuple[Decimal, Decimal]:
        if not closing_counts:
            raise ValidationError("closing_counts", "at least one count is required")
        seen: set[UUID] = set()
        for index, count in enumerate(closing_counts):
            physical = count.physical_stock
            if not isinstance(physical, int) or isinstance(physical, bool) or physical < 0:
                raise ValidationError(
                    f"closing_counts[{index}].physical_stock",
                    f"must be a non-negative integer, got {physical!r}",
                )
            if count.product_id in seen:
                raise ValidationError(
                    f"closing_counts[{index}].product_id",
                    f"product {count.product_id} counted twice",
                )
            seen.add(count.product_id)
        cash = require_amount("cash_amount", cash_amount)
        online = require_amount("online_amount", online_amount)
        return cash, online

    def _reconcile(
        self,
        organization_id: UUID,
        closing_counts: Sequence[ClosingCount],
        cash_amount: Decimal,
        online_amount: Decimal,
        actor_id: UUID,
    ) -> ReconciliationResult:
        cash, online = self._validate(closing_counts, cash_amount, online_amount)
        products = load_products(
            self._session,
            organization_id,
            (count.product_id for count in closing_counts),
            for_update=True,
        )
        vendors = self._vendors.ordered_vendors(organization_id, active_only=False)

        items: list[SaleItem] = []
        closing_items: list[StockClosingItem] = []
        packable: list[PackableLine] = []
        total_value = ZERO

        for count in closing_counts:
            product = products[count.product_id]
            system_stock = product.current_stock
            physical = count.physical_stock
            difference = system_stock - physical

            product.morning_stock = physical
            product.updated_by_id = actor_id
            if difference <= 0:
                continue

            allocation = self._stock.allocate(
                organization_id, product, difference, vendors, actor_id
            )
            value = product.price_per_unit * difference
            total_value += value

            item = SaleItem(
                line_no=len(items) + 1,
                product_id=product.id,
                product_name=product.name,
                quantity=difference,
                price_per_unit=product.price_per_unit,
                discount_type=DiscountType.AMOUNT.value,
                discount_value=ZERO,
                discount_amount=ZERO,
                total_amount=value,
            )
            item.vendor_allocations = [
                SaleVendorAllocation(
                    seq=seq,
                    vendor_id=draw.source_id,
                    vendor_name=draw.label,
                    quantity=draw.quantity,
                )
                for seq, draw in enumerate(allocation.draws, start=1)
            ]
            items.append(item)
            packable.append(
                PackableLine(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=difference,
                    price_per_unit=product.price_per_unit,
                    volume_ml=product.volume_ml,
                )
            )
            closing_items.append(
                StockClosingItem(
                    line_no=len(closing_items) + 1,
                    product_id=product.id,
                    product_name=product.name,
                    morning_stock=count.morning_stock,
                    purchases=count.purchases,
                    sales=count.sales,
                    system_stock=system_stock,
                    closing_stock=physical,
                    physical_stock=physical,
                    difference=difference,
                    discrepancy=count.discrepancy,
                    discrepancy_value=count.discrepancy_value,
                )
            )

        if not items:
            raise NothingToReconcileError(len(closing_counts))

        now = self._clock.now()
        reconciliation = self._config.reconciliation
        sale_date = at_time_of_day(now, reconciliation.closing_time)
        paid = cash + online
        mode = PaymentMode.for_parts(
            cash, online, ZERO, self._config.billing.default_payment_mode
        )
        numbering = self._config.numbering
        sale = Sale(
            organization_id=organization_id,
            sale_number=self._sequence.next_document_number(
                organization_id,
                SequenceService.SHRINKAGE,
                numbering.shrinkage_prefix,
                numbering.width,
            ),
            kind=SaleKind.SHRINKAGE_ADJUSTMENT.value,
            customer_id=None,
            customer_name=WALK_IN_NAME,
            sale_date=sale_date,
            subtotal=total_value,
            bill_discount_amount=ZERO,
            total_discount=ZERO,
            total_amount=total_value,
            paid_amount=paid,
            due_amount=ZERO,
            cash_amount=cash,
            online_amount=online,
            credit_amount=ZERO,
            payment_mode=mode.value,
            payment_status=PaymentStatus.PAID.value,
            status=SaleStatus.ACTIVE.value,
            is_returned=False,
            created_by_id=actor_id,
        )
        sale.items = items

        total_volume = sum(line.volume_ml * line.quantity for line in packable)
        ceiling = self._config.billing.volume_ceiling_ml
        if total_volume > ceiling:
            packing = self._packer.split_by_volume(
                lines=packable,
                capacity_ml=ceiling,
                payment=PaymentSplit(cash=cash, online=online),
            )
            if packing.is_split:
                sale.sub_bills = [build_sub_bill(bill, mode) for bill in packing.bills]
        self._session.add(sale)
        self._session.flush()

        closing = StockClosing(
            organization_id=organization_id,
            closing_date=now,
            total_difference_value=total_value,
            sale_id=sale.id,
            cash_amount=cash,
            online_amount=online,
            created_by_id=actor_id,
        )
        closing.items = closing_items
        self._session.add(closing)
        self._session.flush()

        self._cashbook.record(
            organization_id=organization_id,
            entry_date=sale_date,
            source_type=CashbookSource.CLOSING,
            reference_id=closing.id,
            description=f"Stock closing {sale.sale_number}",
            actor_id=actor_id,
            cash_in=cash,
            online_in=online,
        )

        rollover = next_day_at(now, reconciliation.rollover_time)
        tenant_products = self._session.execute(
            select(Product)
            .where(Product.organization_id == organization_id)
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        for product in tenant_products:
            product.morning_stock_last_updated_date = rollover
        self._session.flush()
        logger.info(
            "morning_stock_rolled_over",
            extra={"products_updated": len(tenant_products), "baseline": rollover.isoformat()},
        )

        self._auditor.record(
            organization_id=organization_id,
            action=AuditAction.STOCK_RECONCILED,
            entity_type="stock_closing",
            entity_id=closing.id,
            actor_id=actor_id,
            payload={
                "sale_id": sale.id,
                "sale_number": sale.sale_number,
                "products_counted": len(closing_counts),
                "products_adjusted": len(closing_items),
                "total_difference_value": total_value,
                "cash_amount": cash,
                "online_amount": online,
            },
        )
        return ReconciliationResult(sale=sale, closing=closing)
