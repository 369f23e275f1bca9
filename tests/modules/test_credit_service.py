"""
Tests for CreditService.

Covers:
- Collection lowers the outstanding balance and is posted to ledger,
  cashbook and audit trail
- A collection may not exceed what is owed
- Cancellation restores the balance once
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from settlement_kernel.exceptions import (
    CustomerNotFoundError,
    PaymentAlreadyCancelledError,
    PaymentExceedsOutstandingError,
    PaymentNotFoundError,
    ValidationError,
)
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.cashbook import CashbookEntry
from settlement_kernel.models.ledger import LedgerEntityType
from settlement_kernel.selectors.ledger_selector import LedgerSelector
from settlement_kernel.services.auditor_service import AuditorService
from settlement_modules.credit import CreditService


@pytest.fixture
def credit_service(session, deterministic_clock):
    return CreditService(session, deterministic_clock)


@pytest.fixture
def indebted_customer(create_customer):
    return create_customer("Ravi", outstanding_balance="1000")


class TestCollect:

    def test_cash_and_online_reduce_outstanding(
        self, session, credit_service, organization_id, test_actor_id,
        indebted_customer,
    ):
        payment = credit_service.collect(
            organization_id,
            indebted_customer.id,
            Decimal("300"),
            Decimal("200"),
            test_actor_id,
            note="March instalment",
        )

        assert payment.amount == Decimal("500")
        assert payment.status == "active"
        assert payment.note == "March instalment"
        assert indebted_customer.outstanding_balance == Decimal("500")
        assert indebted_customer.last_transaction_date is not None

        lines = LedgerSelector(session).entries_for(
            organization_id, LedgerEntityType.CUSTOMER, indebted_customer.id
        )
        assert [(line.debit, line.credit, line.reference_type) for line in lines] == [
            (Decimal("0"), Decimal("500"), "payment")
        ]

        entry = session.execute(
            select(CashbookEntry).where(CashbookEntry.reference_id == payment.id)
        ).scalar_one()
        assert (entry.cash_in, entry.online_in) == (Decimal("300"), Decimal("200"))
        assert entry.source_type == "credit"

    def test_full_settlement(
        self, credit_service, organization_id, test_actor_id, indebted_customer
    ):
        credit_service.collect(
            organization_id, indebted_customer.id, Decimal("1000"), Decimal("0"), test_actor_id
        )

        assert indebted_customer.outstanding_balance == Decimal("0")

    def test_exceeding_outstanding_rejected(
        self, session, credit_service, organization_id, test_actor_id,
        indebted_customer, captured_logs,
    ):
        with pytest.raises(PaymentExceedsOutstandingError) as exc_info:
            credit_service.collect(
                organization_id,
                indebted_customer.id,
                Decimal("800"),
                Decimal("300"),
                test_actor_id,
            )

        assert exc_info.value.amount == Decimal("1100")
        assert exc_info.value.outstanding == Decimal("1000")
        assert indebted_customer.outstanding_balance == Decimal("1000")
        assert LedgerSelector(session).entries_for(
            organization_id, LedgerEntityType.CUSTOMER, indebted_customer.id
        ) == []
        assert any(r["message"] == "payment_exceeds_outstanding" for r in captured_logs())

    @pytest.mark.parametrize(
        "cash, online",
        [("0", "0"), ("-5", "10"), ("10", "-1")],
    )
    def test_invalid_amounts(
        self, credit_service, organization_id, test_actor_id, indebted_customer, cash, online
    ):
        with pytest.raises(ValidationError):
            credit_service.collect(
                organization_id,
                indebted_customer.id,
                Decimal(cash),
                Decimal(online),
                test_actor_id,
            )

    def test_customer_of_another_tenant(
        self, credit_service, other_organization_id, test_actor_id, indebted_customer
    ):
        with pytest.raises(CustomerNotFoundError):
            credit_service.collect(
                other_organization_id,
                indebted_customer.id,
                Decimal("10"),
                Decimal("0"),
                test_actor_id,
            )


class TestCancel:

    @pytest.fixture
    def payment(self, credit_service, organization_id, test_actor_id, indebted_customer):
        return credit_service.collect(
            organization_id,
            indebted_customer.id,
            Decimal("300"),
            Decimal("200"),
            test_actor_id,
        )

    def test_restores_outstanding(
        self, session, credit_service, organization_id, test_actor_id,
        indebted_customer, payment,
    ):
        cancelled = credit_service.cancel(organization_id, payment.id, test_actor_id)

        assert cancelled.is_cancelled
        assert cancelled.cancelled_by_id == test_actor_id
        assert indebted_customer.outstanding_balance == Decimal("1000")

        ledger = LedgerSelector(session)
        lines = ledger.entries_for(
            organization_id, LedgerEntityType.CUSTOMER, indebted_customer.id
        )
        assert [line.reference_type for line in lines] == ["payment", "payment_reversal"]
        assert ledger.verify_chain(
            organization_id, LedgerEntityType.CUSTOMER, indebted_customer.id
        ) == Decimal("0")

        entries = session.execute(
            select(CashbookEntry).where(CashbookEntry.reference_id == payment.id)
        ).scalars().all()
        assert len(entries) == 2
        assert sum(e.cash_in - e.cash_out for e in entries) == Decimal("0")
        assert sum(e.online_in - e.online_out for e in entries) == Decimal("0")

        trace = AuditorService(session).get_trace(organization_id, "credit_payment", payment.id)
        assert [e.action for e in trace] == [
            AuditAction.CREDIT_COLLECTED.value,
            AuditAction.CREDIT_CANCELLED.value,
        ]

    def test_cannot_cancel_twice(
        self, credit_service, organization_id, test_actor_id, indebted_customer, payment
    ):
        credit_service.cancel(organization_id, payment.id, test_actor_id)

        with pytest.raises(PaymentAlreadyCancelledError):
            credit_service.cancel(organization_id, payment.id, test_actor_id)
        assert indebted_customer.outstanding_balance == Decimal("1000")

    def test_unknown_payment(self, credit_service, organization_id, test_actor_id):
        with pytest.raises(PaymentNotFoundError):
            credit_service.cancel(organization_id, uuid4(), test_actor_id)

    def test_cancelled_amount_can_be_collected_again(
        self, credit_service, organization_id, test_actor_id, indebted_customer, payment
    ):
        credit_service.cancel(organization_id, payment.id, test_actor_id)

        credit_service.collect(
            organization_id, indebted_customer.id, Decimal("1000"), Decimal("0"), test_actor_id
        )

        assert indebted_customer.outstanding_balance == Decimal("0")
