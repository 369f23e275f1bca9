"""
Tests for ReconciliationService.reconcile.

Covers:
- Missing units are sold as a shrinkage sale drawn in vendor priority
- Morning stock and the next-day baseline for every product
- Closing snapshot, cashbook entry and audit trace
- Volume-bounded sub-bills
- Nothing missing, malformed counts, a shortfall on a later product
"""

import pytest
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update

from settlement_kernel.exceptions import (
    InsufficientStockError,
    NothingToReconcileError,
    ProductNotFoundError,
    SaleNotReturnableError,
    ValidationError,
)
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.cashbook import CashbookEntry
from settlement_kernel.models.catalog import VendorStatus, VendorStock
from settlement_kernel.models.sale import Sale
from settlement_kernel.selectors.stock_selector import StockSelector
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.sequence_service import SequenceService
from settlement_modules.inventory import ClosingCount, ReconciliationService
from settlement_modules.sales import SaleLineRequest, SaleRequest, SaleService

from conftest import naive


@pytest.fixture
def reconciliation(session, deterministic_clock, config):
    return ReconciliationService(session, deterministic_clock, config)


@pytest.fixture
def whisky_twenty(create_product, create_vendor, stock_vendor):
    """Whisky (750 ml, 100.00) held by V1 x3 and V2 x17."""
    product = create_product("Whisky", "100.00", volume_ml=750)
    v1 = create_vendor("V1", priority=1)
    v2 = create_vendor("V2", priority=2)
    stock_vendor(v1, product, 3)
    stock_vendor(v2, product, 17)
    return product, v1, v2


class TestShrinkageSale:

    def test_missing_units_drawn_by_priority(
        self, session, reconciliation, organization_id, test_actor_id, whisky_twenty
    ):
        product, v1, v2 = whisky_twenty

        result = reconciliation.reconcile(
            organization_id,
            [ClosingCount(product.id, physical_stock=15)],
            Decimal("300"),
            Decimal("200"),
            test_actor_id,
        )

        sale = result.sale
        assert sale.sale_number == "DISC-000001"
        assert sale.kind == "shrinkage_adjustment"
        assert sale.customer_id is None
        assert sale.total_amount == Decimal("500")
        assert sale.paid_amount == Decimal("500")
        assert sale.due_amount == Decimal("0")
        assert sale.payment_status == "paid"
        assert sale.payment_mode == "split"
        item = sale.items[0]
        assert item.quantity == 5
        assert item.price_per_unit == Decimal("100")
        assert [(a.vendor_id, a.quantity) for a in item.vendor_allocations] == [
            (v1.id, 3),
            (v2.id, 2),
        ]
        assert product.current_stock == 15
        assert product.morning_stock == 15
        assert StockSelector(session).vendor_levels(organization_id, product.id) == {
            v1.id: 0,
            v2.id: 15,
        }
        assert result.total_difference_value == Decimal("500")
        StockSelector(session).assert_aggregate_consistency(organization_id)

    def test_sale_dated_at_closing_time(
        self, reconciliation, organization_id, test_actor_id, whisky_twenty
    ):
        product, _, _ = whisky_twenty

        result = reconciliation.reconcile(
            organization_id,
            [ClosingCount(product.id, physical_stock=19)],
            Decimal("100"),
            Decimal("0"),
            test_actor_id,
        )

        assert naive(result.sale.sale_date) == datetime(2024, 3, 15, 23, 59, 59)
        assert result.sale.payment_mode == "cash"

    def test_deleted_vendor_still_sourced(
        self, session, reconciliation, organization_id, test_actor_id, whisky_twenty
    ):
        product, v1, v2 = whisky_twenty
        v1.status = VendorStatus.DELETED.value
        session.commit()

        result = reconciliation.reconcile(
            organization_id,
            [ClosingCount(product.id, physical_stock=18)],
            Decimal("200"),
            Decimal("0"),
            test_actor_id,
        )

        allocations = result.sale.items[0].vendor_allocations
        assert [(a.vendor_id, a.quantity) for a in allocations] == [(v1.id, 2)]

    def test_surplus_and_exact_counts_only_reset_morning_stock(
        self, reconciliation, organization_id, test_actor_id,
        whisky_twenty, create_product, stock_vendor,
    ):
        whisky, v1, _ = whisky_twenty
        rum = create_product("Rum", "50.00")
        gin = create_product("Gin", "80.00")
        stock_vendor(v1, rum, 4)
        stock_vendor(v1, gin, 6)

        result = reconciliation.reconcile(
            organization_id,
            [
                ClosingCount(rum.id, physical_stock=7),
                ClosingCount(whisky.id, physical_stock=19),
                ClosingCount(gin.id, physical_stock=6),
            ],
            Decimal("100"),
            Decimal("0"),
            test_actor_id,
        )

        assert [i.product_name for i in result.sale.items] == ["Whisky"]
        assert [i.product_name for i in result.closing.items] == ["Whisky"]
        assert rum.current_stock == 4
        assert rum.morning_stock == 7
        assert gin.morning_stock == 6


class TestRollover:

    def test_every_product_moves_to_next_day(
        self, reconciliation, organization_id, test_actor_id,
        whisky_twenty, create_product,
    ):
        product, _, _ = whisky_twenty
        uncounted = create_product("Brandy", "120.00")

        reconciliation.reconcile(
            organization_id,
            [ClosingCount(product.id, physical_stock=19)],
            Decimal("100"),
            Decimal("0"),
            test_actor_id,
        )

        expected = datetime(2024, 3, 16, 0, 0, 1, tzinfo=timezone.utc)
        assert naive(product.morning_stock_last_updated_date) == naive(expected)
        assert naive(uncounted.morning_stock_last_updated_date) == naive(expected)

    def test_other_tenant_untouched(
        self, reconciliation, organization_id, other_organization_id, test_actor_id,
        whisky_twenty, create_product,
    ):
        product, _, _ = whisky_twenty
        foreign = create_product("Vodka", org_id=other_organization_id)

        reconciliation.reconcile(
            organization_id,
            [ClosingCount(product.id, physical_stock=19)],
            Decimal("100"),
            Decimal("0"),
            test_actor_id,
        )

        assert foreign.morning_stock_last_updated_date is None

    def test_uncounted_product_sale_not_returnable_afterwards(
        self, session, deterministic_clock, config, reconciliation, organization_id,
        test_actor_id, whisky_twenty, create_product, stock_vendor,
    ):
        whisky, v1, _ = whisky_twenty
        brandy = create_product("Brandy", "120.00")
        stock_vendor(v1, brandy, 2)
        sales = SaleService(session, deterministic_clock, config)
        brandy_sale = sales.create_sale(
            organization_id,
            SaleRequest(items=(SaleLineRequest(brandy.id, 1),), cash_amount=Decimal("120")),
            test_actor_id,
        )

        reconciliation.reconcile(
            organization_id,
            [ClosingCount(whisky.id, physical_stock=19)],
            Decimal("100"),
            Decimal("0"),
            test_actor_id,
        )

        with pytest.raises(SaleNotReturnableError, match="morning stock date"):
            sales.return_sale(organization_id, brandy_sale.id, test_actor_id)
        assert brandy.current_stock == 1
        assert brandy_sale.is_returned is False

    def test_logs_rollover(
        self, reconciliation, organization_id, test_actor_id, whisky_twenty, captured_logs
    ):
        product, _, _ = whisky_twenty

        reconciliation.reconcile(
            organization_id,
            [ClosingCount(product.id, physical_stock=19)],
            Decimal("100"),
            Decimal("0"),
            test_actor_id,
        )

        messages = [r["message"] for r in captured_logs()]
        assert "morning_stock_rolled_over" in messages
        assert "stock_reconciled" in messages


class TestClosingSnapshot:

    def test_snapshot_and_cashbook(
        self, session, reconciliation, organization_id, test_actor_id, whisky_twenty
    ):
        product, _, _ = whisky_twenty

        result = reconciliation.reconcile(
            organization_id,
            [
                ClosingCount(
                    product.id,
                    physical_stock=15,
                    morning_stock=18,
                    purchases=2,
                    sales=0,
                    discrepancy=5,
                    discrepancy_value=Decimal("500"),
                )
            ],
            Decimal("300"),
            Decimal("200"),
            test_actor_id,
        )

        closing = result.closing
        assert closing.sale_id == result.sale.id
        assert closing.cash_amount == Decimal("300")
        assert closing.online_amount == Decimal("200")
        item = closing.items[0]
        assert (item.system_stock, item.physical_stock, item.closing_stock) == (20, 15, 15)
        assert item.difference == 5
        assert (item.morning_stock, item.purchases, item.sales) == (18, 2, 0)
        assert item.discrepancy_value == Decimal("500")

        entry = session.execute(
            select(CashbookEntry).where(CashbookEntry.reference_id == closing.id)
        ).scalar_one()
        assert entry.source_type == "closing"
        assert (entry.cash_in, entry.online_in) == (Decimal("300"), Decimal("200"))

        trace = AuditorService(session).get_trace(organization_id, "stock_closing", closing.id)
        assert [e.action for e in trace] == [AuditAction.STOCK_RECONCILED.value]

        shape = closing.to_dict()
        assert shape["sale_id"] == str(result.sale.id)
        assert shape["items"][0]["difference"] == 5
        assert Decimal(shape["total_difference_value"]) == Decimal("500")


class TestVolumeSplit:

    def test_split_above_volume_ceiling(
        self, reconciliation, organization_id, test_actor_id, whisky_twenty
    ):
        product, _, _ = whisky_twenty

        result = reconciliation.reconcile(
            organization_id,
            [ClosingCount(product.id, physical_stock=15)],
            Decimal("300"),
            Decimal("200"),
            test_actor_id,
        )

        bills = result.sale.sub_bills
        assert len(bills) == 2
        assert all(b.total_volume_ml <= 2500 for b in bills)
        assert sum(b.total_volume_ml for b in bills) == 3750
        assert sum(b.total_amount for b in bills) == Decimal("500")
        assert sum(b.cash_paid_amount for b in bills) == Decimal("300")
        assert sum(b.online_paid_amount for b in bills) == Decimal("200")

    def test_no_split_within_ceiling(
        self, session, deterministic_clock, config, organization_id, test_actor_id, whisky_twenty
    ):
        product, _, _ = whisky_twenty
        billing = replace(config.billing, volume_ceiling_ml=5000)
        service = ReconciliationService(
            session, deterministic_clock, replace(config, billing=billing)
        )

        result = service.reconcile(
            organization_id,
            [ClosingCount(product.id, physical_stock=15)],
            Decimal("500"),
            Decimal("0"),
            test_actor_id,
        )

        assert result.sale.sub_bills == []


class TestRejections:

    def test_nothing_missing(
        self, session, reconciliation, organization_id, test_actor_id, whisky_twenty
    ):
        product, _, _ = whisky_twenty

        with pytest.raises(NothingToReconcileError) as exc_info:
            reconciliation.reconcile(
                organization_id,
                [ClosingCount(product.id, physical_stock=20)],
                Decimal("0"),
                Decimal("0"),
                test_actor_id,
            )

        assert exc_info.value.products_checked == 1
        assert session.execute(select(func.count()).select_from(Sale)).scalar_one() == 0
        assert product.morning_stock == 0
        assert product.morning_stock_last_updated_date is None

    def test_shortfall_on_later_product_rolls_back_run(
        self, session, reconciliation, organization_id, test_actor_id,
        whisky_twenty, create_product, stock_vendor,
    ):
        whisky, v1, v2 = whisky_twenty
        rum = create_product("Rum", "50.00")
        stock_vendor(v1, rum, 4)
        # vendor row drifted below the product aggregate
        session.execute(
            update(VendorStock)
            .where(VendorStock.vendor_id == v1.id, VendorStock.product_id == rum.id)
            .values(current_stock=1)
        )
        session.commit()

        with pytest.raises(InsufficientStockError) as exc_info:
            reconciliation.reconcile(
                organization_id,
                [
                    ClosingCount(whisky.id, physical_stock=15),
                    ClosingCount(rum.id, physical_stock=0),
                ],
                Decimal("500"),
                Decimal("0"),
                test_actor_id,
            )

        assert exc_info.value.requested == 4
        assert exc_info.value.available == 1
        assert whisky.current_stock == 20
        assert StockSelector(session).vendor_levels(organization_id, whisky.id) == {
            v1.id: 3,
            v2.id: 17,
        }
        assert whisky.morning_stock == 0
        assert whisky.morning_stock_last_updated_date is None
        assert rum.morning_stock_last_updated_date is None
        assert SequenceService(session).current_value(
            organization_id, SequenceService.SHRINKAGE
        ) is None
        assert session.execute(select(func.count()).select_from(Sale)).scalar_one() == 0
        assert session.execute(
            select(func.count()).select_from(CashbookEntry)
        ).scalar_one() == 0

    @pytest.mark.parametrize(
        "counts",
        ["empty", "negative", "duplicate"],
    )
    def test_malformed_counts(
        self, reconciliation, organization_id, test_actor_id, whisky_twenty, counts
    ):
        product, _, _ = whisky_twenty
        closing_counts = {
            "empty": [],
            "negative": [ClosingCount(product.id, physical_stock=-1)],
            "duplicate": [
                ClosingCount(product.id, physical_stock=15),
                ClosingCount(product.id, physical_stock=14),
            ],
        }[counts]

        with pytest.raises(ValidationError):
            reconciliation.reconcile(
                organization_id, closing_counts, Decimal("0"), Decimal("0"), test_actor_id
            )

    def test_product_of_another_tenant(
        self, reconciliation, other_organization_id, test_actor_id, whisky_twenty
    ):
        product, _, _ = whisky_twenty

        with pytest.raises(ProductNotFoundError):
            reconciliation.reconcile(
                other_organization_id,
                [ClosingCount(product.id, physical_stock=1)],
                Decimal("0"),
                Decimal("0"),
                test_actor_id,
            )
