"""
LedgerService -- append-only running-balance ledger per customer or vendor.

Responsibility:
    Posts one LedgerEntry at a time, deriving balance_after from the
    entity's most recent entry.  The only writer of ledger_entries.

Architecture position:
    Kernel > Services.  Called by every settlement module that moves money
    owed (sales, purchases, credit, returns).

Invariants enforced:
    - balance_after[n] = balance_after[n-1] + debit - credit (0 before the
      first entry).
    - Posts to one entity are serialized by locking its LedgerHead row
      FOR UPDATE; different entities never contend.
    - No entry is ever updated (ORM listener, db/immutability.py).

Failure modes:
    - ValidationError for a negative debit or credit.
    - IntegrityError on a lost first-post race, retried once under a
      savepoint.

Audit relevance:
    LedgerSelector.verify_chain replays the entries in seq order and must
    reproduce every stored balance_after.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from settlement_kernel.db.types import ZERO, to_decimal
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.ledger import (
    LedgerEntityType,
    LedgerEntry,
    LedgerHead,
    LedgerReferenceType,
)
from settlement_kernel.services.base import BaseService

logger = get_logger("services.ledger")


class LedgerService(BaseService):
    """
    Write side of the customer/vendor ledger.

    Guarantees:
        - Exactly one new row per post_entry() call, flushed but not
          committed.
        - seq is gap-free per entity.

    Non-goals:
        - Does NOT update Customer.outstanding_balance; settlement modules
          move that counter in the same transaction.
    """

    def _lock_head(
        self,
        organization_id: UUID,
        entity_type: LedgerEntityType,
        entity_id: UUID,
        actor_id: UUID,
    ) -> LedgerHead:
        stmt = (
            select(LedgerHead)
            .where(
                LedgerHead.organization_id == organization_id,
                LedgerHead.entity_type == entity_type.value,
                LedgerHead.entity_id == entity_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        head = self.session.execute(stmt).scalar_one_or_none()
        if head is not None:
            return head

        savepoint = self.session.begin_nested()
        try:
            head = LedgerHead(
                organization_id=organization_id,
                entity_type=entity_type.value,
                entity_id=entity_id,
                last_seq=0,
                created_by_id=actor_id,
            )
            self.session.add(head)
            self.session.flush()
            savepoint.commit()
            return head
        except IntegrityError:
            logger.debug(
                "ledger_head_race_retry",
                extra={"entity_type": entity_type.value, "entity_id": str(entity_id)},
            )
            savepoint.rollback()
            return self.session.execute(stmt).scalar_one()

    def last_entry(
        self,
        organization_id: UUID,
        entity_type: LedgerEntityType,
        entity_id: UUID,
    ) -> LedgerEntry | None:
        return self.session.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.organization_id == organization_id,
                LedgerEntry.entity_type == entity_type.value,
                LedgerEntry.entity_id == entity_id,
            )
            .order_by(LedgerEntry.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def post_entry(
        self,
        organization_id: UUID,
        entity_type: LedgerEntityType,
        entity_id: UUID,
        debit: Decimal,
        credit: Decimal,
        description: str,
        actor_id: UUID,
        reference_type: LedgerReferenceType | None = None,
        reference_id: UUID | None = None,
    ) -> LedgerEntry:
        """
        Append one entry and return it.

        Preconditions:
            - debit >= 0 and credit >= 0.
        Postconditions:
            - entry.balance_after = previous balance + debit - credit.
        """
        debit = to_decimal(debit)
        credit = to_decimal(credit)
        if debit < ZERO:
            raise ValidationError("debit", f"must not be negative, got {debit}")
        if credit < ZERO:
            raise ValidationError("credit", f"must not be negative, got {credit}")

        entity_type = LedgerEntityType(entity_type)
        head = self._lock_head(organization_id, entity_type, entity_id, actor_id)

        previous = self.last_entry(organization_id, entity_type, entity_id)
        previous_balance = previous.balance_after if previous is not None else ZERO
        new_balance = previous_balance + debit - credit

        head.last_seq += 1
        entry = LedgerEntry(
            organization_id=organization_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            seq=head.last_seq,
            reference_type=reference_type.value if reference_type else None,
            reference_id=reference_id,
            debit=debit,
            credit=credit,
            balance_after=new_balance,
            description=description,
            created_by_id=actor_id,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_posted",
            extra={
                "entity_type": entity_type.value,
                "entity_id": str(entity_id),
                "seq": entry.seq,
                "debit": str(debit),
                "credit": str(credit),
                "previous_balance": str(previous_balance),
                "balance_after": str(new_balance),
                "reference_type": entry.reference_type,
            },
        )
        return entry
