"""
Inventory Reconciliation Module (``settlement_modules.inventory``).

End-of-day physical counts turned into a shrinkage-adjustment sale, a
closing snapshot and the next day's morning-stock baseline.
"""

from settlement_modules.inventory.models import ClosingCount, ReconciliationResult
from settlement_modules.inventory.service import ReconciliationService

__all__ = ["ClosingCount", "ReconciliationResult", "ReconciliationService"]
