"""
Purchasing Settlement Module (``settlement_modules.purchasing``).

Vendor stock receipts with VAT/TCS computation and vendor ledger posting,
plus full purchase returns.
"""

from settlement_modules.purchasing.models import PurchaseLineRequest, PurchaseRequest
from settlement_modules.purchasing.service import (
    PurchaseService,
    PurchaseTaxes,
    compute_taxes,
    line_amount,
)

__all__ = [
    "PurchaseLineRequest",
    "PurchaseRequest",
    "PurchaseService",
    "PurchaseTaxes",
    "compute_taxes",
    "line_amount",
]
