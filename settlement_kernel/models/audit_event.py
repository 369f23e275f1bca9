"""
Module: settlement_kernel.models.audit_event
Responsibility: ORM persistence for the settlement audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only; no UPDATE or DELETE (db/immutability.py).
    - seq is monotonically increasing per organization, allocated by
      SequenceService.

Audit relevance:
    Every settlement entry point records exactly one AuditEvent inside its
    own transaction, so an event exists if and only if the settlement
    committed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable settlement actions."""

    SALE_CREATED = "sale_created"
    SALE_RETURNED = "sale_returned"
    PURCHASE_CREATED = "purchase_created"
    PURCHASE_RETURNED = "purchase_returned"
    STOCK_RECONCILED = "stock_reconciled"
    CREDIT_COLLECTED = "credit_collected"
    CREDIT_CANCELLED = "credit_cancelled"


class AuditEvent(Base):
    """
    Audit record of one committed settlement.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        UniqueConstraint("organization_id", "seq", name="uq_audit_seq"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditEvent #{self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"
