"""
Module: settlement_modules.purchasing.service
Responsibility:
    Receives vendor stock: converts caret/bottle quantities, computes line
    amounts and purchase taxes, credits vendor and product stock, posts the
    vendor ledger, records the cash paid out, audits.  Also performs full
    purchase returns.

Architecture:
    settlement_modules layer -- owns the transaction boundary through
    ``settlement_unit``.  The vendor ledger entry is posted inside the same
    unit as the stock and record writes, so a purchase never exists without
    its ledger entry.

Invariants:
    - total_bottles = carets * bottles_per_caret + bottles > 0 per line.
    - amount = carets * price + bottles * price / bottles_per_caret,
      rounded to 2 places.
    - vat = round(subtotal * vat_rate / 100), tcs = round((subtotal + vat)
      * tcs_rate / 100), both to whole currency units ROUND_HALF_UP.
    - Stock goes in and out through StockAllocationService only.

Failure modes:
    - ValidationError for a malformed request.
    - VendorNotFoundError / ProductNotFoundError / PurchaseNotFoundError.
    - PurchaseAlreadyReturnedError.
    - InsufficientStockError on return when the vendor no longer holds the
      purchased units (stock never goes negative).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_config import SettlementConfig, get_active_config
from settlement_kernel.db.types import ZERO, round_money, round_whole
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import (
    PurchaseAlreadyReturnedError,
    PurchaseNotFoundError,
    ValidationError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.cashbook import CashbookSource
from settlement_kernel.models.catalog import Product, VendorStatus
from settlement_kernel.models.ledger import LedgerEntityType, LedgerReferenceType
from settlement_kernel.models.purchase import Purchase, PurchaseItem
from settlement_kernel.models.sale import PaymentStatus
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.cashbook_service import CashbookService
from settlement_kernel.services.ledger_service import LedgerService
from settlement_kernel.services.sequence_service import SequenceService
from settlement_modules._lookups import (
    get_vendor,
    load_products,
    require_amount,
)
from settlement_modules.purchasing.models import PurchaseLineRequest, PurchaseRequest
from settlement_services.stock_allocation import StockAllocationService
from settlement_services.unit_of_work import settlement_unit

logger = get_logger("modules.purchasing.service")


@dataclass(frozen=True)
class PurchaseTaxes:
    """Tax breakdown of one purchase."""

    subtotal: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    tcs_rate: Decimal
    tcs_amount: Decimal

    @property
    def tax_amount(self) -> Decimal:
        return self.vat_amount + self.tcs_amount

    @property
    def total_amount(self) -> Decimal:
        return self.subtotal + self.tax_amount


def compute_taxes(subtotal: Decimal, vat_rate: Decimal, tcs_rate: Decimal) -> PurchaseTaxes:
    """VAT on the subtotal, then TCS on subtotal plus VAT, in whole units."""
    vat = round_whole(subtotal * vat_rate / Decimal("100"))
    tcs = round_whole((subtotal + vat) * tcs_rate / Decimal("100"))
    return PurchaseTaxes(
        subtotal=subtotal,
        vat_rate=vat_rate,
        vat_amount=vat,
        tcs_rate=tcs_rate,
        tcs_amount=tcs,
    )


def line_amount(
    carets: int,
    bottles: int,
    price_per_caret: Decimal,
    bottles_per_caret: int,
) -> Decimal:
    """Invoice amount of a caret/bottle quantity at a per-caret price."""
    loose = price_per_caret * bottles / bottles_per_caret
    return round_money(price_per_caret * carets + loose)


class PurchaseService:
    """
    Entry points for purchase settlement.

    Contract:
        Callers supply a live Session, and optionally a Clock and a
        SettlementConfig.  Each public method commits on success and rolls
        back on failure.
    Non-goals:
        - Does not manage vendor master data.
        - Does not record vendor payments made after the purchase.
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
        self._ledger = LedgerService(session)
        self._cashbook = CashbookService(session)
        self._sequence = SequenceService(session)
        self._auditor = AuditorService(session, self._clock)

    # =========================================================================
    # Create
    # =========================================================================

    def create_purchase(
        self,
        organization_id: UUID,
        request: PurchaseRequest,
        actor_id: UUID,
    ) -> Purchase:
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            operation="create_purchase",
        ):
            with settlement_unit(self._session, "create_purchase"):
                purchase = self._create_purchase(organization_id, request, actor_id)

            logger.info(
                "purchase_created",
                extra={
                    "purchase_id": str(purchase.id),
                    "purchase_number": purchase.purchase_number,
                    "vendor_id": str(purchase.vendor_id),
                    "total_bottles": purchase.total_bottles,
                    "total_amount": str(purchase.total_amount),
                    "due_amount": str(purchase.due_amount),
                },
            )
            return purchase

    def _validate_line(self, index: int, line: PurchaseLineRequest, product: Product) -> int:
        """Validate one line; returns the effective bottles per caret."""
        prefix = f"items[{index}]"
        for name in ("carets", "bottles"):
            value = getattr(line, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationError(
                    f"{prefix}.{name}", f"must be a non-negative integer, got {value!r}"
                )
        require_amount(f"{prefix}.price_per_caret", line.price_per_caret)
        per_caret = line.bottles_per_caret or product.bottles_per_caret
        if per_caret <= 0:
            raise ValidationError(
                f"{prefix}.bottles_per_caret", f"must be positive, got {per_caret}"
            )
        if line.carets * per_caret + line.bottles <= 0:
            raise ValidationError(prefix, "line receives no bottles")
        return per_caret

    def _create_purchase(
        self,
        organization_id: UUID,
        request: PurchaseRequest,
        actor_id: UUID,
    ) -> Purchase:
        if not request.items:
            raise ValidationError("items", "at least one line is required")
        paid = require_amount("paid_amount", request.paid_amount)

        vendor = get_vendor(self._session, organization_id, request.vendor_id)
        if vendor.status != VendorStatus.ACTIVE.value:
            raise ValidationError("vendor_id", f"vendor {vendor.name} is {vendor.status}")
        products = load_products(
            self._session, organization_id, (line.product_id for line in request.items)
        )

        items = []
        for line_no, line in enumerate(request.items, start=1):
            product = products[line.product_id]
            per_caret = self._validate_line(line_no - 1, line, product)
            items.append(
                PurchaseItem(
                    line_no=line_no,
                    product_id=product.id,
                    product_name=product.name,
                    carets=line.carets,
                    bottles=line.bottles,
                    bottles_per_caret=per_caret,
                    total_bottles=line.carets * per_caret + line.bottles,
                    purchase_price_per_caret=line.price_per_caret,
                    amount=line_amount(
                        line.carets, line.bottles, line.price_per_caret, per_caret
                    ),
                )
            )

        purchasing = self._config.purchasing
        taxes = compute_taxes(
            sum((item.amount for item in items), ZERO),
            purchasing.vat_rate,
            purchasing.tcs_rate,
        )
        total = taxes.total_amount
        if paid > total:
            raise ValidationError("paid_amount", f"paid {paid} exceeds purchase total {total}")
        due = total - paid

        purchase_date = request.purchase_date or self._clock.now()
        numbering = self._config.numbering
        purchase = Purchase(
            organization_id=organization_id,
            purchase_number=self._sequence.next_document_number(
                organization_id,
                SequenceService.PURCHASE,
                numbering.purchase_prefix,
                numbering.width,
            ),
            vendor_id=vendor.id,
            vendor_name=vendor.name,
            purchase_date=purchase_date,
            invoice_number=request.invoice_number,
            notes=request.notes,
            subtotal=taxes.subtotal,
            vat_rate=taxes.vat_rate,
            vat_amount=taxes.vat_amount,
            tcs_rate=taxes.tcs_rate,
            tcs_amount=taxes.tcs_amount,
            tax_amount=taxes.tax_amount,
            total_amount=total,
            paid_amount=paid,
            due_amount=due,
            payment_status=PaymentStatus.for_amounts(total, paid).value,
            is_returned=False,
            created_by_id=actor_id,
        )
        purchase.items = items
        self._session.add(purchase)

        for item in items:
            self._stock.receive(
                organization_id,
                vendor,
                products[item.product_id],
                item.total_bottles,
                item.purchase_price_per_caret,
                purchase_date,
                actor_id,
            )
        self._session.flush()

        self._ledger.post_entry(
            organization_id=organization_id,
            entity_type=LedgerEntityType.VENDOR,
            entity_id=vendor.id,
            debit=total,
            credit=paid,
            description=f"Purchase {purchase.purchase_number}",
            actor_id=actor_id,
            reference_type=LedgerReferenceType.PURCHASE,
            reference_id=purchase.id,
        )
        self._cashbook.record(
            organization_id=organization_id,
            entry_date=purchase_date,
            source_type=CashbookSource.PURCHASE,
            reference_id=purchase.id,
            description=f"Payment for purchase {purchase.purchase_number}",
            actor_id=actor_id,
            cash_out=paid,
        )
        self._auditor.record(
            organization_id=organization_id,
            action=AuditAction.PURCHASE_CREATED,
            entity_type="purchase",
            entity_id=purchase.id,
            actor_id=actor_id,
            payload={
                "purchase_number": purchase.purchase_number,
                "vendor_id": vendor.id,
                "total_bottles": purchase.total_bottles,
                "total_amount": total,
                "paid_amount": paid,
            },
        )
        return purchase

    # =========================================================================
    # Return
    # =========================================================================

    def return_purchase(
        self,
        organization_id: UUID,
        purchase_id: UUID,
        actor_id: UUID,
    ) -> Purchase:
        """Send a whole purchase back to its vendor."""
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            operation="return_purchase",
        ):
            with settlement_unit(self._session, "return_purchase"):
                purchase = self._return_purchase(organization_id, purchase_id, actor_id)

            logger.info(
                "purchase_returned",
                extra={
                    "purchase_id": str(purchase.id),
                    "purchase_number": purchase.purchase_number,
                    "total_bottles": purchase.total_bottles,
                },
            )
            return purchase

    def _return_purchase(
        self,
        organization_id: UUID,
        purchase_id: UUID,
        actor_id: UUID,
    ) -> Purchase:
        purchase = self._session.execute(
            select(Purchase)
            .where(Purchase.organization_id == organization_id, Purchase.id == purchase_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if purchase is None:
            raise PurchaseNotFoundError(str(purchase_id))
        if purchase.is_returned:
            raise PurchaseAlreadyReturnedError(str(purchase_id))

        vendor = get_vendor(self._session, organization_id, purchase.vendor_id)
        products = load_products(
            self._session, organization_id, (item.product_id for item in purchase.items)
        )
        for item in purchase.items:
            self._stock.withdraw(
                organization_id,
                vendor,
                products[item.product_id],
                item.total_bottles,
                actor_id,
            )

        now = self._clock.now()
        purchase.is_returned = True
        purchase.returned_at = now
        purchase.returned_by_id = actor_id
        purchase.updated_by_id = actor_id
        self._session.flush()

        self._ledger.post_entry(
            organization_id=organization_id,
            entity_type=LedgerEntityType.VENDOR,
            entity_id=vendor.id,
            debit=purchase.paid_amount,
            credit=purchase.total_amount,
            description=f"Return of purchase {purchase.purchase_number}",
            actor_id=actor_id,
            reference_type=LedgerReferenceType.PURCHASE_RETURN,
            reference_id=purchase.id,
        )
        self._auditor.record(
            organization_id=organization_id,
            action=AuditAction.PURCHASE_RETURNED,
            entity_type="purchase",
            entity_id=purchase.id,
            actor_id=actor_id,
            payload={
                "purchase_number": purchase.purchase_number,
                "total_bottles": purchase.total_bottles,
                "returned_at": now,
            },
        )
        return purchase
