"""
Module: settlement_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries and running-balance replay.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - verify_chain() replays an entity's entries in seq order and checks
      each stored balance_after against prev + debit - credit.

Failure modes:
    - LedgerChainBrokenError at the first entry whose stored balance_after
      does not match the replay, or whose seq is out of sequence.

Audit relevance:
    This is the check an auditor runs to confirm the ledger was never
    altered after posting.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from settlement_kernel.db.types import ZERO
from settlement_kernel.exceptions import LedgerChainBrokenError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.ledger import LedgerEntityType, LedgerEntry
from settlement_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.ledger")


@dataclass(frozen=True)
class LedgerLine:
    """One ledger entry as read back for replay."""

    seq: int
    debit: Decimal
    credit: Decimal
    balance_after: Decimal
    reference_type: str | None
    reference_id: UUID | None
    description: str


class LedgerSelector(BaseSelector):
    """
    Read side of the customer/vendor ledger.

    Guarantees:
        - entries_for() returns entries in seq (replay) order.
        - All amounts are Decimal.
    """

    def entries_for(
        self,
        organization_id: UUID,
        entity_type: LedgerEntityType,
        entity_id: UUID,
    ) -> list[LedgerLine]:
        rows = self.session.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.organization_id == organization_id,
                LedgerEntry.entity_type == LedgerEntityType(entity_type).value,
                LedgerEntry.entity_id == entity_id,
            )
            .order_by(LedgerEntry.seq)
        ).scalars()
        return [
            LedgerLine(
                seq=row.seq,
                debit=row.debit,
                credit=row.credit,
                balance_after=row.balance_after,
                reference_type=row.reference_type,
                reference_id=row.reference_id,
                description=row.description,
            )
            for row in rows
        ]

    def balance_of(
        self,
        organization_id: UUID,
        entity_type: LedgerEntityType,
        entity_id: UUID,
    ) -> Decimal:
        """Stored balance after the latest entry, or zero."""
        balance = self.session.execute(
            select(LedgerEntry.balance_after)
            .where(
                LedgerEntry.organization_id == organization_id,
                LedgerEntry.entity_type == LedgerEntityType(entity_type).value,
                LedgerEntry.entity_id == entity_id,
            )
            .order_by(LedgerEntry.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return balance if balance is not None else ZERO

    def verify_chain(
        self,
        organization_id: UUID,
        entity_type: LedgerEntityType,
        entity_id: UUID,
    ) -> Decimal:
        """
        Replay the entity's entries and return the final balance.

        Raises:
            LedgerChainBrokenError: at the first mismatching entry.
        """
        entity_type = LedgerEntityType(entity_type)
        running = ZERO
        for expected_seq, line in enumerate(
            self.entries_for(organization_id, entity_type, entity_id), start=1
        ):
            running = running + line.debit - line.credit
            if line.seq != expected_seq or line.balance_after != running:
                logger.critical(
                    "ledger_chain_broken",
                    extra={
                        "entity_type": entity_type.value,
                        "entity_id": str(entity_id),
                        "seq": line.seq,
                        "expected_balance": str(running),
                        "stored_balance": str(line.balance_after),
                    },
                )
                raise LedgerChainBrokenError(
                    entity_type=entity_type.value,
                    entity_id=str(entity_id),
                    seq=line.seq,
                    expected_balance=running,
                    stored_balance=line.balance_after,
                )
        return running
