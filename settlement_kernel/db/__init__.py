"""Database layer - engine, base classes and column types."""

from settlement_kernel.db.base import UUID, Base, TenantScopedBase, TrackedBase, UUIDString
from settlement_kernel.db.engine import create_tables, get_engine, get_session
from settlement_kernel.db.types import Money, Sequence, round_money

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "TenantScopedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Sequence",
    "round_money",
]
