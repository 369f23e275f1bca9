"""
Module: settlement_engines.bin_packing
Responsibility:
    Partition an ordered list of sale lines into capacity-bounded bills,
    either by currency value (a cart above the billing ceiling) or by
    physical volume (a shrinkage sale above the volume ceiling), and spread
    a bill discount and a cash/online/credit payment over the bills.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: for every product, the pieces' quantities, discounts and
      totals sum exactly to the original line's.
    - Capacity: no bill exceeds its capacity unless it holds a single unit
      that alone exceeds it.
    - Payment conservation: each payment component sums exactly to the
      original across bills.  Proportional shares are rounded to 2 places
      ROUND_HALF_UP and the LAST bill absorbs the residue.  The same rule
      places the residue of a line's discount on its last piece and the
      residue of the bill discount on the last bill.

Failure modes:
    - ValueError on non-positive capacity, malformed lines, or a bill
      discount larger than the discounted line total.

Audit relevance:
    Every emitted PackedBill becomes a persisted SubBill.  The conservation
    guarantees let an auditor reconcile sub-bills to the parent sale from
    the stored rows alone.

Usage:
    from settlement_engines.bin_packing import BinPackingEngine, PackableLine

    result = BinPackingEngine().split_by_value(
        lines=[PackableLine(product_id=p, product_name="Whisky", quantity=10,
                            price_per_unit=Decimal("40000"))],
        capacity=Decimal("250000"),
    )
    # result.bill_count -> 2 (6 units, then 4 units)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from settlement_engines.tracer import traced_engine
from settlement_kernel.db.types import ZERO, round_money
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.bin_packing")


@dataclass(frozen=True)
class PackableLine:
    """
    One sale line to be placed into bills.

    Contract:
        quantity > 0; price_per_unit, discount_amount and volume_ml are
        non-negative; discount_amount does not exceed the gross amount.
    """

    product_id: UUID | str
    product_name: str
    quantity: int
    price_per_unit: Decimal
    discount_amount: Decimal = ZERO
    volume_ml: int = 0

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"{self.product_name}: quantity must be positive")
        if self.price_per_unit < 0:
            raise ValueError(f"{self.product_name}: price cannot be negative")
        if self.volume_ml < 0:
            raise ValueError(f"{self.product_name}: volume cannot be negative")
        if self.discount_amount < 0 or self.discount_amount > self.gross_amount:
            raise ValueError(
                f"{self.product_name}: discount {self.discount_amount} outside "
                f"0..{self.gross_amount}"
            )

    @property
    def gross_amount(self) -> Decimal:
        return self.price_per_unit * self.quantity

    @property
    def net_amount(self) -> Decimal:
        return self.gross_amount - self.discount_amount

    @property
    def net_unit_price(self) -> Decimal:
        return self.net_amount / self.quantity


@dataclass(frozen=True)
class PackedLine:
    """A (possibly partial) line placed in one bill."""

    product_id: UUID | str
    product_name: str
    quantity: int
    price_per_unit: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    volume_ml: int

    @property
    def gross_amount(self) -> Decimal:
        return self.price_per_unit * self.quantity

    @property
    def total_volume_ml(self) -> int:
        return self.volume_ml * self.quantity


@dataclass(frozen=True)
class PaymentSplit:
    """Cash, online and credit parts of a payment."""

    cash: Decimal = ZERO
    online: Decimal = ZERO
    credit: Decimal = ZERO

    def __post_init__(self) -> None:
        for name in ("cash", "online", "credit"):
            if getattr(self, name) < 0:
                raise ValueError(f"Payment {name} cannot be negative")

    @property
    def total(self) -> Decimal:
        return self.cash + self.online + self.credit


@dataclass(frozen=True)
class PackedBill:
    """
    One capacity-bounded bill.

    Guarantees:
        - sub_total_amount is the gross value of its lines.
        - total_amount = Σ line totals - bill_discount_amount.
    """

    bill_no: int
    lines: tuple[PackedLine, ...]
    sub_total_amount: Decimal
    line_discount_amount: Decimal
    bill_discount_amount: Decimal
    total_amount: Decimal
    total_volume_ml: int
    payment: PaymentSplit = field(default_factory=PaymentSplit)

    @property
    def total_discount_amount(self) -> Decimal:
        return self.line_discount_amount + self.bill_discount_amount

    @property
    def unit_count(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass(frozen=True)
class PackingResult:
    """All bills produced by one split, in bill_no order."""

    bills: tuple[PackedBill, ...]

    @property
    def bill_count(self) -> int:
        return len(self.bills)

    @property
    def is_split(self) -> bool:
        return len(self.bills) > 1

    @property
    def total_amount(self) -> Decimal:
        return sum((bill.total_amount for bill in self.bills), ZERO)

    def quantities_by_product(self) -> dict[UUID | str, int]:
        totals: dict[UUID | str, int] = {}
        for bill in self.bills:
            for line in bill.lines:
                totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
        return totals


def spread_proportionally(
    amount: Decimal,
    weights: Sequence[Decimal],
) -> list[Decimal]:
    """
    Split ``amount`` by ``weights``, rounding to 2 places.

    Shares are equal when every weight is zero.  No running total ever
    exceeds ``amount``, and the last share takes whatever is left, so the
    shares always sum exactly to ``amount``.
    """
    count = len(weights)
    if count == 0:
        return []
    total_weight = sum(weights, ZERO)

    shares: list[Decimal] = []
    allocated = ZERO
    for weight in weights[:-1]:
        if total_weight > 0:
            share = round_money(amount * weight / total_weight)
        else:
            share = round_money(amount / count)
        share = min(share, amount - allocated)
        shares.append(share)
        allocated += share
    shares.append(amount - allocated)
    return shares


class _LinePieces:
    """Cuts one line into pieces, keeping its discount exact.

    Each piece's discount is the rounded cumulative share minus what earlier
    pieces already took, so shares never go negative and the final piece
    lands exactly on the line's discount.
    """

    def __init__(self, line: PackableLine):
        self.line = line
        self.remaining = line.quantity
        self._discount_given = ZERO

    def take(self, quantity: int) -> PackedLine:
        line = self.line
        self.remaining -= quantity
        if self.remaining == 0:
            cumulative = line.discount_amount
        else:
            taken = line.quantity - self.remaining
            cumulative = round_money(line.discount_amount * taken / line.quantity)
        discount = cumulative - self._discount_given
        self._discount_given = cumulative
        return PackedLine(
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=quantity,
            price_per_unit=line.price_per_unit,
            discount_amount=discount,
            total_amount=line.price_per_unit * quantity - discount,
            volume_ml=line.volume_ml,
        )


class BinPackingEngine:
    """
    Greedy bill splitting by value or by volume.

    Contract:
        Pure functions; no I/O.  When everything fits one bill the result
        holds exactly one bill, which callers do not persist as a sub-bill.
    Non-goals:
        - Does not decide whether a split is needed; the sale and
          reconciliation modules compare totals with their ceilings first.
    """

    @traced_engine(
        "bin_packing_value",
        "1.0",
        fingerprint_fields=("lines", "capacity", "bill_discount", "payment"),
    )
    def split_by_value(
        self,
        lines: Sequence[PackableLine],
        capacity: Decimal,
        bill_discount: Decimal = ZERO,
        payment: PaymentSplit | None = None,
    ) -> PackingResult:
        """
        Fill bills in original line order up to ``capacity`` of net value.

        Each line places floor(remaining_capacity / net_unit_price) units in
        the open bill.  An empty bill always takes at least one unit, so a
        unit priced above the capacity gets a bill of its own.  A line with
        a zero net price fits entirely.
        """
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")
        net_total = sum((line.net_amount for line in lines), ZERO)
        if bill_discount < 0 or bill_discount > net_total:
            raise ValueError(
                f"Bill discount {bill_discount} outside 0..{net_total}"
            )

        bins: list[list[PackedLine]] = [[]]
        used = ZERO
        for line in lines:
            pieces = _LinePieces(line)
            unit_price = line.net_unit_price
            while pieces.remaining > 0:
                current = bins[-1]
                free = capacity - used
                if unit_price == 0:
                    fits = pieces.remaining
                else:
                    fits = int(free // unit_price) if free > 0 else 0
                if fits <= 0:
                    if current:
                        bins.append([])
                        used = ZERO
                        continue
                    fits = 1
                piece = pieces.take(min(pieces.remaining, fits))
                current.append(piece)
                used += piece.total_amount

        bins = [b for b in bins if b]
        net_per_bin = [sum((p.total_amount for p in b), ZERO) for b in bins]
        bill_shares = spread_proportionally(bill_discount, net_per_bin)
        result = self._assemble(bins, bill_shares, payment)

        logger.info(
            "bill_split_by_value",
            extra={
                "line_count": len(lines),
                "bill_count": result.bill_count,
                "capacity": str(capacity),
                "total_amount": str(result.total_amount),
            },
        )
        return result

    @traced_engine(
        "bin_packing_volume",
        "1.0",
        fingerprint_fields=("lines", "capacity_ml", "payment"),
    )
    def split_by_volume(
        self,
        lines: Sequence[PackableLine],
        capacity_ml: int,
        payment: PaymentSplit | None = None,
    ) -> PackingResult:
        """
        First-fit decreasing by unit volume.

        Lines are taken largest unit volume first (stable for ties).  Each
        line's units go into every open bill that has room, in bill order;
        what is left opens new bills holding max(1, capacity // volume)
        units.  Zero-volume lines go into the first bill.
        """
        if capacity_ml <= 0:
            raise ValueError(f"Volume capacity must be positive, got {capacity_ml}")

        bins: list[list[PackedLine]] = []
        used: list[int] = []
        for line in sorted(lines, key=lambda line: -line.volume_ml):
            pieces = _LinePieces(line)
            volume = line.volume_ml

            if volume == 0:
                if not bins:
                    bins.append([])
                    used.append(0)
                bins[0].append(pieces.take(pieces.remaining))
                continue

            for index in range(len(bins)):
                if pieces.remaining == 0:
                    break
                fits = (capacity_ml - used[index]) // volume
                if fits <= 0:
                    continue
                piece = pieces.take(min(pieces.remaining, fits))
                bins[index].append(piece)
                used[index] += piece.total_volume_ml

            per_bill = max(1, capacity_ml // volume)
            while pieces.remaining > 0:
                piece = pieces.take(min(pieces.remaining, per_bill))
                bins.append([piece])
                used.append(piece.total_volume_ml)

        result = self._assemble(bins, [ZERO] * len(bins), payment)

        logger.info(
            "bill_split_by_volume",
            extra={
                "line_count": len(lines),
                "bill_count": result.bill_count,
                "capacity_ml": capacity_ml,
            },
        )
        return result

    def distribute_payment(
        self,
        bill_totals: Sequence[Decimal],
        payment: PaymentSplit,
    ) -> list[PaymentSplit]:
        """
        Spread each payment component by each bill's share of the total.

        The last bill absorbs the rounding residue of every component.
        """
        cash = spread_proportionally(payment.cash, bill_totals)
        online = spread_proportionally(payment.online, bill_totals)
        credit = spread_proportionally(payment.credit, bill_totals)
        return [
            PaymentSplit(cash=c, online=o, credit=r)
            for c, o, r in zip(cash, online, credit)
        ]

    def _assemble(
        self,
        bins: list[list[PackedLine]],
        bill_discounts: list[Decimal],
        payment: PaymentSplit | None,
    ) -> PackingResult:
        totals = [
            sum((p.total_amount for p in pieces), ZERO) - discount
            for pieces, discount in zip(bins, bill_discounts)
        ]
        splits = self.distribute_payment(totals, payment or PaymentSplit())

        bills = []
        for bill_no, (pieces, discount, total, split) in enumerate(
            zip(bins, bill_discounts, totals, splits), start=1
        ):
            bills.append(
                PackedBill(
                    bill_no=bill_no,
                    lines=tuple(pieces),
                    sub_total_amount=sum((p.gross_amount for p in pieces), ZERO),
                    line_discount_amount=sum((p.discount_amount for p in pieces), ZERO),
                    bill_discount_amount=discount,
                    total_amount=total,
                    total_volume_ml=sum(p.total_volume_ml for p in pieces),
                    payment=split,
                )
            )
        return PackingResult(bills=tuple(bills))
