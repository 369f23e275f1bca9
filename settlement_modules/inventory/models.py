"""
Inventory Reconciliation DTOs.

A clerk submits one ClosingCount per product counted at end of day.  The
snapshot figures (morning stock, purchases, sales, discrepancy) are what the
clerk's screen showed and are stored as given; only physical_stock drives
the adjustment.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from settlement_kernel.db.types import ZERO
from settlement_kernel.models.sale import Sale
from settlement_kernel.models.stock_closing import StockClosing


@dataclass(frozen=True)
class ClosingCount:
    product_id: UUID
    physical_stock: int
    morning_stock: int = 0
    purchases: int = 0
    sales: int = 0
    discrepancy: int = 0
    discrepancy_value: Decimal = ZERO


@dataclass(frozen=True)
class ReconciliationResult:
    """The shrinkage sale and the closing snapshot written by one run."""

    sale: Sale
    closing: StockClosing

    @property
    def total_difference_value(self) -> Decimal:
        return self.closing.total_difference_value
