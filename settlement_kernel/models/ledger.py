"""
Module: settlement_kernel.models.ledger
Responsibility: ORM persistence for the per-entity running-balance ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: LedgerEntry rows are never updated or deleted
      (db/immutability.py).
    - Running balance: for one (organization, entity_type, entity_id),
      entry n has balance_after = balance_after[n-1] + debit - credit, with
      0 before the first entry.  seq is 1, 2, 3, ... per entity and is the
      replay order.
    - One LedgerHead per entity.  Posting locks it FOR UPDATE, which
      serializes concurrent posts to the same entity.

Failure modes:
    - IntegrityError on a duplicate (entity, seq): two writers raced past
      the head lock, which the lock prevents on PostgreSQL.
    - ImmutabilityViolationError on any UPDATE/DELETE of an entry.

Audit relevance:
    Replaying entries in seq order and recomputing prev + debit - credit must
    reproduce every stored balance_after (LedgerSelector.verify_chain).
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TenantScopedBase, UUIDString


class LedgerEntityType(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"


class LedgerReferenceType(str, Enum):
    """Business document an entry was posted for."""

    SALE = "sale"
    SALE_RETURN = "sale_return"
    PURCHASE = "purchase"
    PURCHASE_RETURN = "purchase_return"
    PAYMENT = "payment"
    PAYMENT_REVERSAL = "payment_reversal"
    CLOSING_ADJUSTMENT = "closing_adjustment"


class LedgerEntry(TenantScopedBase):
    """
    One immutable journal row for a customer or vendor.

    Guarantees:
        - debit >= 0 and credit >= 0.
        - balance_after is the running balance after this row.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "entity_type", "entity_id", "seq",
            name="uq_ledger_entity_seq",
        ),
        Index("idx_ledger_reference", "organization_id", "reference_type", "reference_id"),
    )

    entity_type: Mapped[LedgerEntityType] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    debit: Mapped[Decimal] = mapped_column(nullable=False)
    credit: Mapped[Decimal] = mapped_column(nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.entity_type}:{self.entity_id} #{self.seq} "
            f"dr={self.debit} cr={self.credit} bal={self.balance_after}>"
        )


class LedgerHead(TenantScopedBase):
    """Lock target and sequence counter for one entity's ledger."""

    __tablename__ = "ledger_heads"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "entity_type", "entity_id", name="uq_ledger_head"
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
