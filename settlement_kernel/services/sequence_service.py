"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Strictly increasing numbers per (organization, sequence name) for
    document numbers (SAL-000001, PUR-000001, ...) and audit event order.

Invariants enforced:
    - Never max()+1 over the documents; the locked counter row is the sole
      source of truth for the next value.
    - Transactional: the increment is visible only after the caller
      commits.  Rollback returns the value.

Failure modes:
    - IntegrityError on a concurrent first-use race, handled with a
      savepoint rollback and retry.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.sequence import SequenceCounter
from settlement_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceService(BaseService):
    """
    Service for generating transactional sequence numbers.

    Guarantees:
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations for
          the same (organization, name).
        - Gap-free under normal operation.

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    # Well-known sequence names
    SALE = "sale"
    PURCHASE = "purchase"
    SHRINKAGE = "shrinkage"
    SALE_RETURN = "sale_return"
    AUDIT_EVENT = "audit_event"

    def _lock_counter(self, organization_id: UUID, name: str) -> SequenceCounter | None:
        return self.session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.organization_id == organization_id,
                SequenceCounter.name == name,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, organization_id: UUID, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Locks the counter row (creating it on first use), increments it and
        returns the new value.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for this (organization, name).
            - The counter row stays locked until the transaction ends.
        """
        counter = self._lock_counter(organization_id, sequence_name)

        if counter is None:
            # Savepoint so a lost creation race does not roll back the caller
            savepoint = self.session.begin_nested()
            try:
                counter = SequenceCounter(
                    organization_id=organization_id,
                    name=sequence_name,
                    current_value=1,
                )
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._lock_counter(organization_id, sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_document_number(
        self,
        organization_id: UUID,
        sequence_name: str,
        prefix: str,
        width: int = 6,
    ) -> str:
        """Allocate the next value and format it as ``PREFIX-000042``."""
        value = self.next_value(organization_id, sequence_name)
        return f"{prefix}-{value:0{width}d}"

    def current_value(self, organization_id: UUID, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        return self.session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.organization_id == organization_id,
                SequenceCounter.name == sequence_name,
            )
        ).scalar_one_or_none()
