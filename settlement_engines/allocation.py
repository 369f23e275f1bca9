"""
Module: settlement_engines.allocation
Responsibility:
    Decide how a requested quantity of one product is drawn from several
    stock sources (vendors), lowest priority number first.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The stateful counterpart
    that applies a decision to VendorStock rows is
    settlement_services.stock_allocation.

Invariants enforced:
    - Conservation: total_drawn + shortfall == requested.
    - No draw exceeds its source's availability, so applying the decision
      can never drive a counter negative.
    - Deterministic order: (priority, str(source_id)).  Equal priorities
      always resolve the same way.
    - Purity: no clock access, no I/O.

Failure modes:
    - ValueError for a non-positive requested quantity.
    - ValueError for a source with negative availability.

Audit relevance:
    The draws become SaleVendorAllocation rows, the only record of whose
    stock a sale or shrinkage adjustment consumed.

Usage:
    from settlement_engines.allocation import StockAllocationEngine, StockSource

    result = StockAllocationEngine().allocate(
        quantity=8,
        sources=[
            StockSource(source_id=v1, label="V1", priority=1, available=5),
            StockSource(source_id=v2, label="V2", priority=2, available=10),
        ],
    )
    # result.draws -> (V1: 5, V2: 3), result.shortfall -> 0
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from settlement_engines.tracer import traced_engine
from settlement_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


@dataclass(frozen=True)
class StockSource:
    """
    One place stock can be drawn from.

    Contract:
        Frozen dataclass; ``available`` is a non-negative unit count.
    Non-goals:
        - Does not know about products; the caller builds one source list
          per product.
    """

    source_id: UUID | str
    label: str
    priority: int
    available: int

    def __post_init__(self) -> None:
        if self.available < 0:
            raise ValueError(
                f"Source {self.label} availability cannot be negative: {self.available}"
            )


@dataclass(frozen=True)
class StockDraw:
    """Units taken from one source."""

    source_id: UUID | str
    label: str
    quantity: int


@dataclass(frozen=True)
class StockAllocationResult:
    """
    Outcome of one allocation run.

    Guarantees:
        - ``total_drawn + shortfall == requested``.
        - ``draws`` are in deduction order and every quantity is positive.
    """

    requested: int
    draws: tuple[StockDraw, ...]
    shortfall: int

    @property
    def total_drawn(self) -> int:
        return sum(draw.quantity for draw in self.draws)

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0

    def quantity_from(self, source_id: UUID | str) -> int:
        return sum(d.quantity for d in self.draws if d.source_id == source_id)


class StockAllocationEngine:
    """
    Priority-ordered greedy stock allocation.

    Contract:
        Pure function of (quantity, sources).  Sources are ordered by
        (priority, str(source_id)); sources with nothing available are
        skipped; each source gives min(remaining, available); iteration
        stops as soon as nothing remains.
    Non-goals:
        - Does not raise on shortfall.  The stock layer decides whether a
          shortfall is an error.
    """

    @staticmethod
    def ordered(sources: Sequence[StockSource]) -> list[StockSource]:
        return sorted(sources, key=lambda s: (s.priority, str(s.source_id)))

    @traced_engine("stock_allocation", "1.0", fingerprint_fields=("quantity", "sources"))
    def allocate(
        self,
        quantity: int,
        sources: Sequence[StockSource],
    ) -> StockAllocationResult:
        if quantity <= 0:
            raise ValueError(f"Quantity to allocate must be positive, got {quantity}")

        remaining = quantity
        draws: list[StockDraw] = []
        for source in self.ordered(sources):
            if remaining == 0:
                break
            if source.available == 0:
                continue
            take = min(remaining, source.available)
            draws.append(
                StockDraw(source_id=source.source_id, label=source.label, quantity=take)
            )
            remaining -= take

        result = StockAllocationResult(
            requested=quantity,
            draws=tuple(draws),
            shortfall=remaining,
        )
        logger.debug(
            "stock_allocation_computed",
            extra={
                "requested": quantity,
                "drawn": result.total_drawn,
                "shortfall": result.shortfall,
                "source_count": len(draws),
            },
        )
        return result
