"""
Module: settlement_kernel.models.sequence
Responsibility: ORM persistence for named per-organization counters used for
    document numbers and audit sequence numbers.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_sequence_counter"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Sequence name (e.g., "sale", "purchase", "audit_event")
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
