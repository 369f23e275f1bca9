"""
Purchase Settlement Requests (``settlement_modules.purchasing.models``).

Frozen request objects accepted by ``PurchaseService``.  Quantities arrive
in the supplier's packing units (carets plus loose bottles); the service
converts them to a flat bottle count.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from settlement_kernel.db.types import ZERO


@dataclass(frozen=True)
class PurchaseLineRequest:
    """One invoice line.

    ``bottles_per_caret`` defaults to the product's packing when omitted.
    """

    product_id: UUID
    price_per_caret: Decimal
    carets: int = 0
    bottles: int = 0
    bottles_per_caret: int | None = None


@dataclass(frozen=True)
class PurchaseRequest:
    vendor_id: UUID
    items: tuple[PurchaseLineRequest, ...]
    paid_amount: Decimal = ZERO
    invoice_number: str | None = None
    notes: str | None = None
    purchase_date: datetime | None = None
