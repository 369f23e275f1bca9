"""
AuditorService -- append-only audit trail of committed settlements.

Responsibility:
    Records one AuditEvent per settlement inside the settlement's own
    transaction, and answers trace queries for a single entity.

Architecture position:
    Kernel > Services.  Called last by every settlement module entry point.

Invariants enforced:
    - seq is allocated through SequenceService (locked counter row), never
      max()+1.
    - Audit events are append-only (ORM listener).

Failure modes:
    - TypeError if a payload value cannot be represented in JSON.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.services.base import BaseService
from settlement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.auditor")


def _jsonable(value: Any) -> Any:
    """Convert Decimal/UUID/datetime/enum values for a JSON column."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    raise TypeError(f"Cannot record {type(value).__name__} in an audit payload")


class AuditorService(BaseService):
    """
    Service for the settlement audit trail.

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def record(
        self,
        organization_id: UUID,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Append one audit event and flush it.

        Postconditions:
            - The event's seq is greater than every earlier seq of the
              organization.
        """
        seq = self._sequence_service.next_value(
            organization_id, SequenceService.AUDIT_EVENT
        )
        audit_event = AuditEvent(
            organization_id=organization_id,
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=_jsonable(payload or {}),
        )
        self.session.add(audit_event)
        self.session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    def get_trace(
        self,
        organization_id: UUID,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """All events for one entity in seq order."""
        return list(
            self.session.execute(
                select(AuditEvent)
                .where(
                    AuditEvent.organization_id == organization_id,
                    AuditEvent.entity_type == entity_type,
                    AuditEvent.entity_id == entity_id,
                )
                .order_by(AuditEvent.seq)
            ).scalars()
        )
