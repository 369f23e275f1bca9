"""
Module: settlement_modules.credit.service
Responsibility:
    Collection of customer dues and cancellation of a collection.

Architecture:
    settlement_modules layer -- owns the transaction boundary through
    ``settlement_unit``.  The customer row is locked before the balance is
    read, so two concurrent collections cannot both pass the outstanding
    check.

Invariants:
    - A collection never takes outstanding_balance below zero.
    - Collection and cancellation each post one ledger entry, so the
      customer ledger balance tracks outstanding_balance.
    - A payment row is never deleted; cancelling flips its status once.

Failure modes:
    - ValidationError for a negative part or a non-positive total.
    - CustomerNotFoundError / PaymentNotFoundError.
    - PaymentExceedsOutstandingError, PaymentAlreadyCancelledError.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.types import ZERO
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import (
    PaymentAlreadyCancelledError,
    PaymentExceedsOutstandingError,
    PaymentNotFoundError,
    ValidationError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.cashbook import CashbookSource
from settlement_kernel.models.credit import CreditPayment, CreditPaymentStatus
from settlement_kernel.models.ledger import LedgerEntityType, LedgerReferenceType
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.cashbook_service import CashbookService
from settlement_kernel.services.ledger_service import LedgerService
from settlement_modules._lookups import lock_customer, require_amount
from settlement_services.unit_of_work import settlement_unit

logger = get_logger("modules.credit.service")


class CreditService:
    """
    Entry points for credit settlement.

    Contract:
        Callers supply a live Session and optionally a Clock.  Each public
        method commits on success and rolls back on failure.
    Non-goals:
        - Does not enforce credit limits; those apply at sale time if at all.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._ledger = LedgerService(session)
        self._cashbook = CashbookService(session)
        self._auditor = AuditorService(session, self._clock)

    # =========================================================================
    # Collect
    # =========================================================================

    def collect(
        self,
        organization_id: UUID,
        customer_id: UUID,
        cash_amount,
        online_amount,
        actor_id: UUID,
        credit_date: datetime | None = None,
        note: str | None = None,
    ) -> CreditPayment:
        """Record money received from a customer against their dues."""
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            operation="collect_credit",
        ):
            with settlement_unit(self._session, "collect_credit"):
                payment = self._collect(
                    organization_id,
                    customer_id,
                    cash_amount,
                    online_amount,
                    actor_id,
                    credit_date,
                    note,
                )

            logger.info(
                "credit_collected",
                extra={
                    "payment_id": str(payment.id),
                    "customer_id": str(customer_id),
                    "amount": str(payment.amount),
                },
            )
            return payment

    def _collect(
        self,
        organization_id: UUID,
        customer_id: UUID,
        cash_amount,
        online_amount,
        actor_id: UUID,
        credit_date: datetime | None,
        note: str | None,
    ) -> CreditPayment:
        cash = require_amount("cash_amount", cash_amount)
        online = require_amount("online_amount", online_amount)
        amount = cash + online
        if amount <= ZERO:
            raise ValidationError("amount", "cash plus online must be positive")

        customer = lock_customer(self._session, organization_id, customer_id)
        if amount > customer.outstanding_balance:
            logger.warning(
                "payment_exceeds_outstanding",
                extra={
                    "customer_id": str(customer_id),
                    "amount": str(amount),
                    "outstanding": str(customer.outstanding_balance),
                },
            )
            raise PaymentExceedsOutstandingError(
                str(customer_id), amount, customer.outstanding_balance
            )

        when = credit_date or self._clock.now()
        payment = CreditPayment(
            organization_id=organization_id,
            customer_id=customer.id,
            amount=amount,
            cash_amount=cash,
            online_amount=online,
            note=note,
            credit_date=when,
            status=CreditPaymentStatus.ACTIVE.value,
            created_by_id=actor_id,
        )
        self._session.add(payment)

        customer.outstanding_balance -= amount
        customer.last_transaction_date = when
        customer.updated_by_id = actor_id
        self._session.flush()

        self._ledger.post_entry(
            organization_id=organization_id,
            entity_type=LedgerEntityType.CUSTOMER,
            entity_id=customer.id,
            debit=ZERO,
            credit=amount,
            description=f"Payment from {customer.name}",
            actor_id=actor_id,
            reference_type=LedgerReferenceType.PAYMENT,
            reference_id=payment.id,
        )
        self._cashbook.record(
            organization_id=organization_id,
            entry_date=when,
            source_type=CashbookSource.CREDIT,
            reference_id=payment.id,
            description=f"Credit collected from {customer.name}",
            actor_id=actor_id,
            cash_in=cash,
            online_in=online,
        )
        self._auditor.record(
            organization_id=organization_id,
            action=AuditAction.CREDIT_COLLECTED,
            entity_type="credit_payment",
            entity_id=payment.id,
            actor_id=actor_id,
            payload={
                "customer_id": customer.id,
                "amount": amount,
                "outstanding_after": customer.outstanding_balance,
            },
        )
        return payment

    # =========================================================================
    # Cancel
    # =========================================================================

    def cancel(
        self,
        organization_id: UUID,
        payment_id: UUID,
        actor_id: UUID,
    ) -> CreditPayment:
        """Reverse a collection; the customer owes the amount again."""
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            operation="cancel_credit",
        ):
            with settlement_unit(self._session, "cancel_credit"):
                payment = self._cancel(organization_id, payment_id, actor_id)

            logger.info(
                "credit_cancelled",
                extra={
                    "payment_id": str(payment.id),
                    "customer_id": str(payment.customer_id),
                    "amount": str(payment.amount),
                },
            )
            return payment

    def _cancel(self, organization_id: UUID, payment_id: UUID, actor_id: UUID) -> CreditPayment:
        payment = self._session.execute(
            select(CreditPayment)
            .where(
                CreditPayment.organization_id == organization_id,
                CreditPayment.id == payment_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        if payment.is_cancelled:
            raise PaymentAlreadyCancelledError(str(payment_id))

        customer = lock_customer(self._session, organization_id, payment.customer_id)
        now = self._clock.now()
        customer.outstanding_balance += payment.amount
        customer.updated_by_id = actor_id
        payment.status = CreditPaymentStatus.CANCELLED.value
        payment.cancelled_at = now
        payment.cancelled_by_id = actor_id
        payment.updated_by_id = actor_id
        self._session.flush()

        self._ledger.post_entry(
            organization_id=organization_id,
            entity_type=LedgerEntityType.CUSTOMER,
            entity_id=customer.id,
            debit=payment.amount,
            credit=ZERO,
            description=f"Cancelled payment from {customer.name}",
            actor_id=actor_id,
            reference_type=LedgerReferenceType.PAYMENT_REVERSAL,
            reference_id=payment.id,
        )
        self._cashbook.record(
            organization_id=organization_id,
            entry_date=now,
            source_type=CashbookSource.CREDIT,
            reference_id=payment.id,
            description=f"Cancelled credit collection from {customer.name}",
            actor_id=actor_id,
            cash_out=payment.cash_amount,
            online_out=payment.online_amount,
        )
        self._auditor.record(
            organization_id=organization_id,
            action=AuditAction.CREDIT_CANCELLED,
            entity_type="credit_payment",
            entity_id=payment.id,
            actor_id=actor_id,
            payload={
                "customer_id": customer.id,
                "amount": payment.amount,
                "outstanding_after": customer.outstanding_balance,
            },
        )
        return payment
