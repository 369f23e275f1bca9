"""
CashbookService -- records cash and online money movements.

Responsibility:
    Appends CashbookEntry rows for collections, payments to vendors,
    reconciliation takings and their reversals.  Flush only.

Invariants enforced:
    - Every amount is non-negative; a reversal records the same amounts on
      the outgoing side rather than negating them.
    - Entries whose four amounts are all zero are not written.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from settlement_kernel.db.types import ZERO, to_decimal
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.cashbook import CashbookEntry, CashbookSource
from settlement_kernel.services.base import BaseService

logger = get_logger("services.cashbook")


class CashbookService(BaseService):

    def record(
        self,
        organization_id: UUID,
        entry_date: datetime,
        source_type: CashbookSource,
        reference_id: UUID,
        description: str,
        actor_id: UUID,
        cash_in: Decimal = ZERO,
        online_in: Decimal = ZERO,
        cash_out: Decimal = ZERO,
        online_out: Decimal = ZERO,
    ) -> CashbookEntry | None:
        amounts = {
            "cash_in": to_decimal(cash_in),
            "online_in": to_decimal(online_in),
            "cash_out": to_decimal(cash_out),
            "online_out": to_decimal(online_out),
        }
        for name, amount in amounts.items():
            if amount < ZERO:
                raise ValidationError(name, f"must not be negative, got {amount}")
        if all(amount == ZERO for amount in amounts.values()):
            return None

        entry = CashbookEntry(
            organization_id=organization_id,
            entry_date=entry_date,
            source_type=CashbookSource(source_type).value,
            reference_id=reference_id,
            description=description,
            created_by_id=actor_id,
            **amounts,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "cashbook_entry_recorded",
            extra={
                "source_type": entry.source_type,
                "reference_id": str(reference_id),
                **{name: str(amount) for name, amount in amounts.items()},
            },
        )
        return entry
