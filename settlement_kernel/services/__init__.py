"""Services for the settlement kernel (write side)."""

from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.cashbook_service import CashbookService
from settlement_kernel.services.ledger_service import LedgerService
from settlement_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditorService",
    "CashbookService",
    "LedgerService",
    "SequenceService",
]
