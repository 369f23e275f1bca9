"""
Sale Settlement Requests (``settlement_modules.sales.models``).

Responsibility
--------------
Frozen request objects accepted by ``SaleService``.  They carry the cart
exactly as the caller submitted it; ``SaleService`` validates them and
raises ``ValidationError`` before touching any state, so construction
itself never fails.

Architecture position
---------------------
**Modules layer** -- pure data definitions.  No I/O.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from settlement_kernel.db.types import ZERO
from settlement_kernel.models.sale import DiscountType, PaymentMode


@dataclass(frozen=True)
class SaleLineRequest:
    """One cart line.

    ``price_per_unit`` overrides the product's list price when given.
    ``discount_amount`` is the absolute discount on the whole line.
    Alternatively ``discount_type`` with ``discount_value`` gives the
    discount as entered at the till: a percentage of the line's gross
    amount, or an absolute amount.  The two forms are exclusive.
    """

    product_id: UUID
    quantity: int
    discount_amount: Decimal = ZERO
    price_per_unit: Decimal | None = None
    discount_type: DiscountType | None = None
    discount_value: Decimal = ZERO


@dataclass(frozen=True)
class SaleRequest:
    """A cart to settle.

    Contract:
        ``customer_id`` None means a walk-in sale, which must be paid in
        full.  Whatever ``cash_amount + online_amount`` leaves unpaid is
        the credit part and becomes the customer's due.
    """

    items: tuple[SaleLineRequest, ...]
    customer_id: UUID | None = None
    cash_amount: Decimal = ZERO
    online_amount: Decimal = ZERO
    bill_discount_amount: Decimal = ZERO
    payment_mode: PaymentMode | None = None
    sale_date: datetime | None = None
