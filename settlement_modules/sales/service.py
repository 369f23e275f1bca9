"""
Module: settlement_modules.sales.service
Responsibility:
    Settles a customer cart: discount-cap enforcement, priority stock
    allocation per line, customer due and ledger posting, value-bounded
    sub-bills, audit.  Also performs full sale returns.

Architecture:
    settlement_modules layer -- owns the transaction boundary of each public
    method through ``settlement_unit``.  Stock counters move only through
    StockAllocationService; balances only through this module and the
    credit module; ledger rows only through LedgerService.

    State machine per call: pending -> committed | failed.  A failure at
    any step rolls back every stock draw, balance change and row written by
    the call.

Invariants:
    - total_amount = max(0, subtotal - total_discount);
      due_amount = max(0, total_amount - paid_amount).
    - Σ vendor allocations of a line == line quantity, and the product
      aggregate falls by the same amount.
    - Named-customer sales post debit = total, credit = paid, so the
      ledger balance moves by exactly the due added to outstanding_balance.
    - Σ sub-bill totals == sale total; sub-bills exist only when the sale
      exceeds the value ceiling and actually needed more than one bill.

Failure modes:
    - ValidationError for a malformed request (no state touched).
    - CustomerNotFoundError / ProductNotFoundError / SaleNotFoundError.
    - DiscountCapExceededError, WalkInCreditNotAllowedError.
    - InsufficientStockError for any line; the whole sale is rolled back.
    - SaleAlreadyReturnedError / SaleNotReturnableError on return.
    - SettlementFailure for anything unexpected.

Audit relevance:
    Every committed sale or return writes one AuditEvent, and the persisted
    items[].vendor_allocations[] and sub_bills[] are sufficient to replay
    the stock and balance movements.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_config import SettlementConfig, get_active_config
from settlement_engines.bin_packing import (
    BinPackingEngine,
    PackableLine,
    PackedBill,
    PaymentSplit,
)
from settlement_kernel.db.types import ZERO, round_money, to_decimal
from settlement_kernel.domain.business_day import calendar_day
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import (
    DiscountCapExceededError,
    SaleAlreadyReturnedError,
    SaleNotFoundError,
    SaleNotReturnableError,
    ValidationError,
    WalkInCreditNotAllowedError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.catalog import Customer, Product
from settlement_kernel.models.ledger import LedgerEntityType, LedgerReferenceType
from settlement_kernel.models.sale import (
    DiscountType,
    PaymentMode,
    PaymentStatus,
    Sale,
    SaleItem,
    SaleKind,
    SaleStatus,
    SaleVendorAllocation,
    SubBill,
    SubBillItem,
)
from settlement_kernel.selectors.vendor_selector import VendorSelector
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.ledger_service import LedgerService
from settlement_kernel.services.sequence_service import SequenceService
from settlement_modules._lookups import (
    load_products,
    lock_customer,
    require_amount,
    require_positive_int,
)
from settlement_modules.sales.models import SaleLineRequest, SaleRequest
from settlement_services.stock_allocation import StockAllocationService
from settlement_services.unit_of_work import settlement_unit

logger = get_logger("modules.sales.service")

WALK_IN_NAME = "Walk-In"


@dataclass(frozen=True)
class _PricedLine:
    product: Product
    quantity: int
    price_per_unit: Decimal
    discount_type: DiscountType
    discount_value: Decimal
    discount_amount: Decimal

    @property
    def gross_amount(self) -> Decimal:
        return self.price_per_unit * self.quantity

    @property
    def total_amount(self) -> Decimal:
        return self.gross_amount - self.discount_amount


class SaleService:
    """
    Entry points for sale settlement.

    Contract:
        Callers supply a live Session, and optionally a Clock and a
        SettlementConfig.  Each public method commits on success and rolls
        back on failure.
    Guarantees:
        - Returns the committed Sale row.
    Non-goals:
        - Does not price products beyond list price or a caller override.
        - Does not render or number sub-bills beyond bill_no.
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
        self._sequence = SequenceService(session)
        self._auditor = AuditorService(session, self._clock)
        self._vendors = VendorSelector(session)
        self._packer = BinPackingEngine()

    # =========================================================================
    # Create
    # =========================================================================

    def create_sale(
        self,
        organization_id: UUID,
        request: SaleRequest,
        actor_id: UUID,
    ) -> Sale:
        """Settle one cart atomically."""
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            operation="create_sale",
        ):
            logger.info(
                "sale_settlement_started",
                extra={
                    "customer_id": str(request.customer_id) if request.customer_id else None,
                    "line_count": len(request.items),
                },
            )
            with settlement_unit(self._session, "create_sale"):
                sale = self._create_sale(organization_id, request, actor_id)

            logger.info(
                "sale_created",
                extra={
                    "sale_id": str(sale.id),
                    "sale_number": sale.sale_number,
                    "total_amount": str(sale.total_amount),
                    "paid_amount": str(sale.paid_amount),
                    "due_amount": str(sale.due_amount),
                    "sub_bill_count": len(sale.sub_bills),
                },
            )
            return sale

    def _validate(self, request: SaleRequest) -> tuple[Decimal, Decimal, Decimal]:
        if not request.items:
            raise ValidationError("items", "at least one line is required")
        for index, line in enumerate(request.items):
            require_positive_int(f"items[{index}].quantity", line.quantity)
            discount = require_amount(f"items[{index}].discount_amount", line.discount_amount)
            if line.price_per_unit is not None:
                require_amount(f"items[{index}].price_per_unit", line.price_per_unit)
            if line.discount_type is not None:
                self._validate_entered_discount(index, line, discount)
        cash = require_amount("cash_amount", request.cash_amount)
        online = require_amount("online_amount", request.online_amount)
        bill_discount = require_amount("bill_discount_amount", request.bill_discount_amount)
        if request.payment_mode is not None:
            try:
                PaymentMode(request.payment_mode)
            except ValueError as exc:
                raise ValidationError("payment_mode", str(exc)) from exc
        return cash, online, bill_discount

    @staticmethod
    def _validate_entered_discount(
        index: int, line: SaleLineRequest, discount_amount: Decimal
    ) -> None:
        field = f"items[{index}].discount_type"
        try:
            discount_type = DiscountType(line.discount_type)
        except ValueError as exc:
            raise ValidationError(field, str(exc)) from exc
        if discount_amount != ZERO:
            raise ValidationError(
                field, "give either discount_amount or discount_type with discount_value"
            )
        value = require_amount(f"items[{index}].discount_value", line.discount_value)
        if discount_type is DiscountType.PERCENTAGE and value > Decimal("100"):
            raise ValidationError(
                f"items[{index}].discount_value", f"percentage {value} exceeds 100"
            )

    def _price_lines(
        self,
        request: SaleRequest,
        products: dict[UUID, Product],
    ) -> list[_PricedLine]:
        lines = []
        for index, line in enumerate(request.items):
            product = products[line.product_id]
            price = (
                to_decimal(line.price_per_unit)
                if line.price_per_unit is not None
                else product.price_per_unit
            )
            discount_type, discount_value, discount_amount = entered_discount(
                line, price * line.quantity
            )
            priced = _PricedLine(
                product=product,
                quantity=line.quantity,
                price_per_unit=price,
                discount_type=discount_type,
                discount_value=discount_value,
                discount_amount=discount_amount,
            )
            if priced.discount_amount > priced.gross_amount:
                raise ValidationError(
                    f"items[{index}].discount_amount",
                    f"{priced.discount_amount} exceeds line amount {priced.gross_amount}",
                )
            lines.append(priced)
        return lines

    def _check_discount_cap(
        self,
        customer: Customer,
        subtotal: Decimal,
        total_discount: Decimal,
    ) -> None:
        if customer.max_discount_percentage is None:
            return
        max_allowed = subtotal * customer.max_discount_percentage / Decimal("100")
        if total_discount > max_allowed + self._config.billing.discount_epsilon:
            logger.warning(
                "discount_cap_exceeded",
                extra={
                    "customer_id": str(customer.id),
                    "total_discount": str(total_discount),
                    "max_allowed": str(max_allowed),
                },
            )
            raise DiscountCapExceededError(
                customer_id=str(customer.id),
                total_discount=total_discount,
                max_allowed=max_allowed,
                max_percentage=customer.max_discount_percentage,
            )

    def _create_sale(
        self,
        organization_id: UUID,
        request: SaleRequest,
        actor_id: UUID,
    ) -> Sale:
        cash, online, bill_discount = self._validate(request)
        billing = self._config.billing

        customer = None
        if request.customer_id is not None:
            customer = lock_customer(self._session, organization_id, request.customer_id)
        products = load_products(
            self._session, organization_id, (line.product_id for line in request.items)
        )
        lines = self._price_lines(request, products)

        subtotal = sum((line.gross_amount for line in lines), ZERO)
        item_discount = sum((line.discount_amount for line in lines), ZERO)
        total_discount = item_discount + bill_discount
        total = max(ZERO, subtotal - total_discount)
        paid = cash + online
        due = max(ZERO, total - paid)

        if paid > total:
            raise ValidationError(
                "payment", f"paid {paid} exceeds sale total {total}"
            )
        if customer is None and due > 0:
            raise WalkInCreditNotAllowedError(due)
        if customer is not None:
            self._check_discount_cap(customer, subtotal, total_discount)

        if request.payment_mode is not None:
            mode = PaymentMode(request.payment_mode)
        else:
            mode = PaymentMode.for_parts(
                cash, online, due, billing.default_payment_mode
            )
        sale_date = request.sale_date or self._clock.now()
        numbering = self._config.numbering
        sale = Sale(
            organization_id=organization_id,
            sale_number=self._sequence.next_document_number(
                organization_id,
                SequenceService.SALE,
                numbering.sale_prefix,
                numbering.width,
            ),
            kind=SaleKind.ORDINARY.value,
            customer_id=customer.id if customer else None,
            customer_name=customer.name if customer else WALK_IN_NAME,
            sale_date=sale_date,
            subtotal=subtotal,
            bill_discount_amount=bill_discount,
            total_discount=total_discount,
            total_amount=total,
            paid_amount=paid,
            due_amount=due,
            cash_amount=cash,
            online_amount=online,
            credit_amount=due,
            payment_mode=mode.value,
            payment_status=PaymentStatus.for_amounts(total, paid).value,
            status=SaleStatus.ACTIVE.value,
            is_returned=False,
            created_by_id=actor_id,
        )
        self._session.add(sale)

        vendors = self._vendors.ordered_vendors(organization_id, active_only=True)
        for line_no, line in enumerate(lines, start=1):
            allocation = self._stock.allocate(
                organization_id, line.product, line.quantity, vendors, actor_id
            )
            item = SaleItem(
                line_no=line_no,
                product_id=line.product.id,
                product_name=line.product.name,
                quantity=line.quantity,
                price_per_unit=line.price_per_unit,
                discount_type=line.discount_type.value,
                discount_value=line.discount_value,
                discount_amount=line.discount_amount,
                total_amount=line.total_amount,
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
            sale.items.append(item)

        if total > billing.value_ceiling:
            self._attach_sub_bills(sale, lines, bill_discount, mode, cash, online, due)

        if customer is not None:
            if due > 0:
                customer.outstanding_balance += due
            customer.last_transaction_date = sale_date
            customer.updated_by_id = actor_id

        self._session.flush()

        if customer is not None:
            self._ledger.post_entry(
                organization_id=organization_id,
                entity_type=LedgerEntityType.CUSTOMER,
                entity_id=customer.id,
                debit=total,
                credit=paid,
                description=f"Sale {sale.sale_number}",
                actor_id=actor_id,
                reference_type=LedgerReferenceType.SALE,
                reference_id=sale.id,
            )

        self._auditor.record(
            organization_id=organization_id,
            action=AuditAction.SALE_CREATED,
            entity_type="sale",
            entity_id=sale.id,
            actor_id=actor_id,
            payload={
                "sale_number": sale.sale_number,
                "customer_id": sale.customer_id,
                "total_amount": total,
                "paid_amount": paid,
                "due_amount": due,
                "line_count": len(lines),
                "sub_bill_count": len(sale.sub_bills),
            },
        )
        return sale

    def _attach_sub_bills(
        self,
        sale: Sale,
        lines: list[_PricedLine],
        bill_discount: Decimal,
        mode: PaymentMode,
        cash: Decimal,
        online: Decimal,
        due: Decimal,
    ) -> None:
        packable = [
            PackableLine(
                product_id=line.product.id,
                product_name=line.product.name,
                quantity=line.quantity,
                price_per_unit=line.price_per_unit,
                discount_amount=line.discount_amount,
                volume_ml=line.product.volume_ml,
            )
            for line in lines
        ]
        net_total = sum((line.total_amount for line in lines), ZERO)
        packing = self._packer.split_by_value(
            lines=packable,
            capacity=self._config.billing.value_ceiling,
            bill_discount=min(bill_discount, net_total),
            payment=PaymentSplit(cash=cash, online=online, credit=due),
        )
        if not packing.is_split:
            return
        sale.sub_bills = [build_sub_bill(bill, mode) for bill in packing.bills]

    # =========================================================================
    # Return
    # =========================================================================

    def return_sale(
        self,
        organization_id: UUID,
        sale_id: UUID,
        actor_id: UUID,
    ) -> Sale:
        """Return an ordinary sale in full; returns the new return Sale."""
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            operation="return_sale",
        ):
            with settlement_unit(self._session, "return_sale"):
                return_sale = self._return_sale(organization_id, sale_id, actor_id)

            logger.info(
                "sale_returned",
                extra={
                    "sale_id": str(sale_id),
                    "return_sale_id": str(return_sale.id),
                    "return_sale_number": return_sale.sale_number,
                    "total_amount": str(return_sale.total_amount),
                },
            )
            return return_sale

    def _return_sale(self, organization_id: UUID, sale_id: UUID, actor_id: UUID) -> Sale:
        original = self._session.execute(
            select(Sale)
            .where(Sale.organization_id == organization_id, Sale.id == sale_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if original is None:
            raise SaleNotFoundError(str(sale_id))
        if original.kind != SaleKind.ORDINARY.value:
            raise SaleNotReturnableError(str(sale_id), f"{original.kind} sales cannot be returned")
        if original.is_returned:
            raise SaleAlreadyReturnedError(str(sale_id))
        if original.status == SaleStatus.VOIDED.value:
            raise SaleNotReturnableError(str(sale_id), "sale is voided")

        products = load_products(
            self._session, organization_id, (item.product_id for item in original.items)
        )
        sale_day = calendar_day(original.sale_date)
        for product in products.values():
            baseline = product.morning_stock_last_updated_date
            if baseline is not None and sale_day < calendar_day(baseline):
                raise SaleNotReturnableError(
                    str(sale_id),
                    f"sale date is before the morning stock date of {product.name}",
                )

        for item in original.items:
            self._stock.restore(
                organization_id,
                products[item.product_id],
                [(a.vendor_id, a.quantity) for a in item.vendor_allocations],
                actor_id,
            )

        numbering = self._config.numbering
        return_sale = Sale(
            organization_id=organization_id,
            sale_number=self._sequence.next_document_number(
                organization_id,
                SequenceService.SALE_RETURN,
                numbering.return_prefix,
                numbering.width,
            ),
            kind=SaleKind.RETURN.value,
            reference_sale_id=original.id,
            customer_id=original.customer_id,
            customer_name=original.customer_name,
            sale_date=self._clock.now(),
            subtotal=original.subtotal,
            bill_discount_amount=original.bill_discount_amount,
            total_discount=original.total_discount,
            total_amount=original.total_amount,
            paid_amount=ZERO,
            due_amount=ZERO,
            cash_amount=ZERO,
            online_amount=ZERO,
            credit_amount=ZERO,
            payment_mode=original.payment_mode,
            payment_status=PaymentStatus.PAID.value,
            status=SaleStatus.ACTIVE.value,
            is_returned=False,
            created_by_id=actor_id,
        )
        return_sale.items = [copy_sale_item(item) for item in original.items]
        self._session.add(return_sale)

        original.is_returned = True
        original.updated_by_id = actor_id

        if original.customer_id is not None:
            customer = lock_customer(self._session, organization_id, original.customer_id)
            if original.due_amount > 0:
                customer.outstanding_balance -= original.due_amount
                customer.updated_by_id = actor_id
            self._session.flush()
            self._ledger.post_entry(
                organization_id=organization_id,
                entity_type=LedgerEntityType.CUSTOMER,
                entity_id=customer.id,
                debit=original.paid_amount,
                credit=original.total_amount,
                description=f"Return of sale {original.sale_number}",
                actor_id=actor_id,
                reference_type=LedgerReferenceType.SALE_RETURN,
                reference_id=return_sale.id,
            )

        self._session.flush()
        self._auditor.record(
            organization_id=organization_id,
            action=AuditAction.SALE_RETURNED,
            entity_type="sale",
            entity_id=original.id,
            actor_id=actor_id,
            payload={
                "return_sale_id": return_sale.id,
                "return_sale_number": return_sale.sale_number,
                "due_reversed": original.due_amount if original.customer_id else ZERO,
            },
        )
        return return_sale


def build_sub_bill(bill: PackedBill, mode: PaymentMode) -> SubBill:
    """SubBill row for one PackedBill."""
    return SubBill(
        bill_no=bill.bill_no,
        sub_total_amount=bill.sub_total_amount,
        total_discount_amount=bill.total_discount_amount,
        total_amount=bill.total_amount,
        total_volume_ml=bill.total_volume_ml,
        payment_mode=PaymentMode(mode).value,
        cash_paid_amount=bill.payment.cash,
        online_paid_amount=bill.payment.online,
        credit_paid_amount=bill.payment.credit,
        items=[
            SubBillItem(
                line_no=line_no,
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                price_per_unit=line.price_per_unit,
                discount_amount=line.discount_amount,
                total_amount=line.total_amount,
            )
            for line_no, line in enumerate(bill.lines, start=1)
        ],
    )


def copy_sale_item(item: SaleItem) -> SaleItem:
    """A fresh SaleItem (with allocations) mirroring ``item``."""
    copy = SaleItem(
        line_no=item.line_no,
        product_id=item.product_id,
        product_name=item.product_name,
        quantity=item.quantity,
        price_per_unit=item.price_per_unit,
        discount_type=item.discount_type,
        discount_value=item.discount_value,
        discount_amount=item.discount_amount,
        total_amount=item.total_amount,
    )
    copy.vendor_allocations = [
        SaleVendorAllocation(
            seq=a.seq,
            vendor_id=a.vendor_id,
            vendor_name=a.vendor_name,
            quantity=a.quantity,
        )
        for a in item.vendor_allocations
    ]
    return copy


def entered_discount(
    line: SaleLineRequest, gross_amount: Decimal
) -> tuple[DiscountType, Decimal, Decimal]:
    """(type, value as entered, absolute amount) for a validated line."""
    if line.discount_type is None:
        amount = to_decimal(line.discount_amount)
        return DiscountType.AMOUNT, amount, amount
    value = to_decimal(line.discount_value)
    if DiscountType(line.discount_type) is DiscountType.PERCENTAGE:
        return DiscountType.PERCENTAGE, value, round_money(gross_amount * value / Decimal("100"))
    return DiscountType.AMOUNT, value, value
