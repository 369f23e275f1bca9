"""
Tests for PurchaseService and the purchase tax helpers.

Covers:
- VAT on the subtotal, TCS on subtotal plus VAT, whole-unit rounding
- Caret and loose-bottle quantities
- Stock received onto the vendor's row
- Vendor ledger and cashbook postings
- Full returns
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from settlement_kernel.exceptions import (
    InsufficientStockError,
    PurchaseAlreadyReturnedError,
    PurchaseNotFoundError,
    ValidationError,
    VendorNotFoundError,
)
from settlement_kernel.models.cashbook import CashbookEntry
from settlement_kernel.models.catalog import VendorStatus
from settlement_kernel.models.ledger import LedgerEntityType
from settlement_kernel.selectors.ledger_selector import LedgerSelector
from settlement_kernel.selectors.stock_selector import StockSelector
from settlement_modules.purchasing import (
    PurchaseLineRequest,
    PurchaseRequest,
    PurchaseService,
    compute_taxes,
    line_amount,
)
from settlement_modules.sales import SaleLineRequest, SaleRequest, SaleService


@pytest.fixture
def purchase_service(session, deterministic_clock, config):
    return PurchaseService(session, deterministic_clock, config)


@pytest.fixture
def whisky_purchase(
    purchase_service, organization_id, test_actor_id, create_product, create_vendor
):
    """2 carets and 6 loose bottles of Whisky at 1200 per caret, 1000 paid."""
    product = create_product()
    vendor = create_vendor()
    purchase = purchase_service.create_purchase(
        organization_id,
        PurchaseRequest(
            vendor_id=vendor.id,
            items=(
                PurchaseLineRequest(
                    product.id, price_per_caret=Decimal("1200"), carets=2, bottles=6
                ),
            ),
            paid_amount=Decimal("1000"),
            invoice_number="INV-77",
        ),
        test_actor_id,
    )
    return purchase, product, vendor


class TestTaxes:

    def test_vat_then_tcs(self):
        taxes = compute_taxes(Decimal("1000"), Decimal("35"), Decimal("1"))

        assert taxes.vat_amount == Decimal("350")
        # 1% of 1350 is 13.5, rounded half up
        assert taxes.tcs_amount == Decimal("14")
        assert taxes.tax_amount == Decimal("364")
        assert taxes.total_amount == Decimal("1364")

    def test_zero_rates(self):
        taxes = compute_taxes(Decimal("999.99"), Decimal("0"), Decimal("0"))

        assert taxes.total_amount == Decimal("999.99")

    @pytest.mark.parametrize(
        "carets, bottles, price, per_caret, expected",
        [
            (2, 0, "1200", 12, "2400.00"),
            (1, 3, "1200", 12, "1500.00"),
            (0, 1, "1000", 12, "83.33"),
            (0, 2, "1000", 24, "83.33"),
        ],
    )
    def test_line_amount(self, carets, bottles, price, per_caret, expected):
        assert line_amount(carets, bottles, Decimal(price), per_caret) == Decimal(expected)


class TestCreatePurchase:

    def test_amounts_and_number(self, whisky_purchase):
        purchase, _, _ = whisky_purchase

        assert purchase.purchase_number == "PUR-000001"
        assert purchase.invoice_number == "INV-77"
        assert purchase.total_bottles == 30
        assert purchase.subtotal == Decimal("3000")
        assert purchase.vat_amount == Decimal("1050")
        assert purchase.tcs_amount == Decimal("41")
        assert purchase.total_amount == Decimal("4091")
        assert purchase.due_amount == Decimal("3091")
        assert purchase.payment_status == "partial"

    def test_stock_received(self, session, organization_id, whisky_purchase):
        _, product, vendor = whisky_purchase

        assert StockSelector(session).vendor_levels(organization_id, product.id) == {
            vendor.id: 30
        }
        assert product.current_stock == 30
        StockSelector(session).assert_aggregate_consistency(organization_id)

    def test_vendor_ledger_carries_due(self, session, organization_id, whisky_purchase):
        _, _, vendor = whisky_purchase

        ledger = LedgerSelector(session)
        lines = ledger.entries_for(organization_id, LedgerEntityType.VENDOR, vendor.id)
        assert [(line.debit, line.credit) for line in lines] == [
            (Decimal("4091"), Decimal("1000"))
        ]
        assert ledger.balance_of(
            organization_id, LedgerEntityType.VENDOR, vendor.id
        ) == Decimal("3091")

    def test_payment_in_cashbook(self, session, whisky_purchase):
        purchase, _, _ = whisky_purchase

        entries = session.execute(
            select(CashbookEntry).where(CashbookEntry.reference_id == purchase.id)
        ).scalars().all()
        assert len(entries) == 1
        assert entries[0].source_type == "purchase"
        assert entries[0].cash_out == Decimal("1000")
        assert entries[0].cash_in == Decimal("0")

    def test_unpaid_purchase_has_no_cashbook_entry(
        self, session, purchase_service, organization_id, test_actor_id,
        create_product, create_vendor,
    ):
        product = create_product()
        vendor = create_vendor()

        purchase = purchase_service.create_purchase(
            organization_id,
            PurchaseRequest(
                vendor_id=vendor.id,
                items=(PurchaseLineRequest(product.id, Decimal("1200"), carets=1),),
            ),
            test_actor_id,
        )

        assert purchase.payment_status == "unpaid"
        assert session.execute(
            select(CashbookEntry).where(CashbookEntry.reference_id == purchase.id)
        ).first() is None

    def test_line_packing_overrides_product(
        self, purchase_service, organization_id, test_actor_id, create_product, create_vendor
    ):
        product = create_product(bottles_per_caret=12)
        vendor = create_vendor()

        purchase = purchase_service.create_purchase(
            organization_id,
            PurchaseRequest(
                vendor_id=vendor.id,
                items=(
                    PurchaseLineRequest(
                        product.id, Decimal("2400"), carets=1, bottles_per_caret=24
                    ),
                ),
            ),
            test_actor_id,
        )

        assert purchase.items[0].total_bottles == 24
        assert product.current_stock == 24


class TestPurchaseValidation:

    def test_deleted_vendor(
        self, session, purchase_service, organization_id, test_actor_id,
        create_product, create_vendor,
    ):
        product = create_product()
        vendor = create_vendor(status=VendorStatus.DELETED)

        with pytest.raises(ValidationError) as exc_info:
            purchase_service.create_purchase(
                organization_id,
                PurchaseRequest(
                    vendor_id=vendor.id,
                    items=(PurchaseLineRequest(product.id, Decimal("1200"), carets=1),),
                ),
                test_actor_id,
            )
        assert exc_info.value.field == "vendor_id"
        assert product.current_stock == 0

    def test_unknown_vendor(self, purchase_service, organization_id, test_actor_id, create_product):
        product = create_product()

        with pytest.raises(VendorNotFoundError):
            purchase_service.create_purchase(
                organization_id,
                PurchaseRequest(
                    vendor_id=uuid4(),
                    items=(PurchaseLineRequest(product.id, Decimal("1200"), carets=1),),
                ),
                test_actor_id,
            )

    def test_overpayment(
        self, purchase_service, organization_id, test_actor_id, create_product, create_vendor
    ):
        product = create_product()
        vendor = create_vendor()

        with pytest.raises(ValidationError, match="exceeds purchase total"):
            purchase_service.create_purchase(
                organization_id,
                PurchaseRequest(
                    vendor_id=vendor.id,
                    items=(PurchaseLineRequest(product.id, Decimal("100"), carets=1),),
                    paid_amount=Decimal("500"),
                ),
                test_actor_id,
            )

    @pytest.mark.parametrize(
        "carets, bottles",
        [(0, 0), (-1, 0), (1, -2)],
    )
    def test_bad_quantities(
        self, purchase_service, organization_id, test_actor_id,
        create_product, create_vendor, carets, bottles,
    ):
        product = create_product()
        vendor = create_vendor()

        with pytest.raises(ValidationError):
            purchase_service.create_purchase(
                organization_id,
                PurchaseRequest(
                    vendor_id=vendor.id,
                    items=(
                        PurchaseLineRequest(
                            product.id, Decimal("100"), carets=carets, bottles=bottles
                        ),
                    ),
                ),
                test_actor_id,
            )


class TestReturnPurchase:

    def test_withdraws_stock_and_reverses_ledger(
        self, session, purchase_service, organization_id, test_actor_id, whisky_purchase
    ):
        purchase, product, vendor = whisky_purchase

        returned = purchase_service.return_purchase(organization_id, purchase.id, test_actor_id)

        assert returned.is_returned is True
        assert returned.returned_by_id == test_actor_id
        assert returned.returned_at is not None
        assert product.current_stock == 0
        assert StockSelector(session).vendor_levels(organization_id, product.id) == {
            vendor.id: 0
        }
        ledger = LedgerSelector(session)
        assert ledger.verify_chain(
            organization_id, LedgerEntityType.VENDOR, vendor.id
        ) == Decimal("0")
        lines = ledger.entries_for(organization_id, LedgerEntityType.VENDOR, vendor.id)
        assert lines[-1].reference_type == "purchase_return"

    def test_cannot_return_twice(
        self, purchase_service, organization_id, test_actor_id, whisky_purchase
    ):
        purchase, _, _ = whisky_purchase
        purchase_service.return_purchase(organization_id, purchase.id, test_actor_id)

        with pytest.raises(PurchaseAlreadyReturnedError):
            purchase_service.return_purchase(organization_id, purchase.id, test_actor_id)

    def test_sold_stock_blocks_return(
        self, session, purchase_service, organization_id, test_actor_id,
        whisky_purchase, deterministic_clock, config,
    ):
        purchase, product, _ = whisky_purchase
        SaleService(session, deterministic_clock, config).create_sale(
            organization_id,
            SaleRequest(items=(SaleLineRequest(product.id, 1),), cash_amount=Decimal("100")),
            test_actor_id,
        )

        with pytest.raises(InsufficientStockError) as exc_info:
            purchase_service.return_purchase(organization_id, purchase.id, test_actor_id)

        assert exc_info.value.available == 29
        assert purchase.is_returned is False
        assert product.current_stock == 29

    def test_unknown_purchase(self, purchase_service, organization_id, test_actor_id):
        with pytest.raises(PurchaseNotFoundError):
            purchase_service.return_purchase(organization_id, uuid4(), test_actor_id)
