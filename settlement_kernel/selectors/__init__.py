"""Selectors for the settlement kernel (read side)."""

from settlement_kernel.selectors.ledger_selector import LedgerLine, LedgerSelector
from settlement_kernel.selectors.stock_selector import StockSelector
from settlement_kernel.selectors.vendor_selector import VendorInfo, VendorSelector

__all__ = [
    "LedgerLine",
    "LedgerSelector",
    "StockSelector",
    "VendorInfo",
    "VendorSelector",
]
