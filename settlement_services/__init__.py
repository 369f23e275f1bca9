"""
settlement_services -- stateful services composing engines with a session.

Responsibility:
    The stock layer (the only writer of stock counters) and the
    unit-of-work boundary used by every settlement module.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        settlement_services/ -> settlement_engines/  (allowed)
        settlement_services/ -> settlement_kernel/   (allowed)
        settlement_engines/  -> settlement_services/ (FORBIDDEN)
        settlement_kernel/   -> settlement_services/ (FORBIDDEN)
"""

from settlement_services.stock_allocation import StockAllocationService
from settlement_services.unit_of_work import settlement_unit

__all__ = [
    "StockAllocationService",
    "settlement_unit",
]
