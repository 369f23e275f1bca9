"""
Pure domain layer.

No dependencies on the ORM, the database or I/O.
"""

from settlement_kernel.domain.business_day import (
    at_time_of_day,
    calendar_day,
    next_day_at,
    parse_time_of_day,
)
from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "at_time_of_day",
    "calendar_day",
    "next_day_at",
    "parse_time_of_day",
]
