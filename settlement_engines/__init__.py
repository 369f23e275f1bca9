"""
Module: settlement_engines
Responsibility:
    Re-exports the pure calculation engines used by the settlement modules:
    priority stock allocation and capacity-bounded bill splitting.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import settlement_kernel.db.types and settlement_kernel.logging_config
    only.  MUST NOT import settlement_services or settlement_modules.

Invariants enforced:
    - Engines never read the clock; dates are passed in by callers.
    - Decimal-only arithmetic for money.
    - Identical inputs always produce identical outputs.

Audit relevance:
    Every public engine call emits a SETTLEMENT_ENGINE_TRACE record via
    ``@traced_engine`` with an input fingerprint.

Usage:
    from settlement_engines import BinPackingEngine, StockAllocationEngine
"""

from settlement_engines.allocation import (
    StockAllocationEngine,
    StockAllocationResult,
    StockDraw,
    StockSource,
)
from settlement_engines.bin_packing import (
    BinPackingEngine,
    PackableLine,
    PackedBill,
    PackedLine,
    PackingResult,
    PaymentSplit,
    spread_proportionally,
)
from settlement_engines.tracer import traced_engine

__all__ = [
    "BinPackingEngine",
    "PackableLine",
    "PackedBill",
    "PackedLine",
    "PackingResult",
    "PaymentSplit",
    "StockAllocationEngine",
    "StockAllocationResult",
    "StockDraw",
    "StockSource",
    "spread_proportionally",
    "traced_engine",
]
