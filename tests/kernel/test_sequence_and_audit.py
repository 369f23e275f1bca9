"""
Tests for SequenceService and AuditorService.

Covers:
- Monotonic, gap-free counters per (organization, name)
- Document number formatting
- Audit events take increasing seq values and JSON-safe payloads
"""

from decimal import Decimal
from uuid import uuid4

from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.sequence_service import SequenceService


class TestSequenceService:

    def test_first_value_is_one(self, session, organization_id):
        service = SequenceService(session)

        assert service.current_value(organization_id, SequenceService.SALE) is None
        assert service.next_value(organization_id, SequenceService.SALE) == 1
        assert service.current_value(organization_id, SequenceService.SALE) == 1

    def test_values_are_gap_free(self, session, organization_id):
        service = SequenceService(session)

        values = [service.next_value(organization_id, SequenceService.SALE) for _ in range(5)]

        assert values == [1, 2, 3, 4, 5]

    def test_counters_are_per_name_and_tenant(
        self, session, organization_id, other_organization_id
    ):
        service = SequenceService(session)
        service.next_value(organization_id, SequenceService.SALE)
        service.next_value(organization_id, SequenceService.SALE)

        assert service.next_value(organization_id, SequenceService.PURCHASE) == 1
        assert service.next_value(other_organization_id, SequenceService.SALE) == 1

    def test_document_number(self, session, organization_id):
        service = SequenceService(session)

        assert service.next_document_number(
            organization_id, SequenceService.SHRINKAGE, "DISC", 6
        ) == "DISC-000001"
        assert service.next_document_number(
            organization_id, SequenceService.SHRINKAGE, "DISC", 3
        ) == "DISC-002"

    def test_counter_survives_commit(self, session, organization_id):
        service = SequenceService(session)
        service.next_value(organization_id, SequenceService.SALE_RETURN)
        session.commit()

        assert service.next_value(organization_id, SequenceService.SALE_RETURN) == 2


class TestAuditorService:

    def test_events_are_sequenced(
        self, session, organization_id, test_actor_id, deterministic_clock
    ):
        auditor = AuditorService(session, deterministic_clock)
        first = auditor.record(
            organization_id, AuditAction.SALE_CREATED, "sale", uuid4(), test_actor_id
        )
        second = auditor.record(
            organization_id, AuditAction.SALE_RETURNED, "sale", uuid4(), test_actor_id
        )

        assert (first.seq, second.seq) == (1, 2)
        assert first.action == "sale_created"

    def test_payload_is_json_safe(
        self, session, organization_id, test_actor_id, deterministic_clock
    ):
        auditor = AuditorService(session, deterministic_clock)
        entity = uuid4()
        event = auditor.record(
            organization_id,
            AuditAction.CREDIT_COLLECTED,
            "credit_payment",
            entity,
            test_actor_id,
            payload={
                "customer_id": entity,
                "amount": Decimal("500.00"),
                "at": deterministic_clock.now(),
            },
        )
        session.commit()

        assert event.payload["customer_id"] == str(entity)
        assert event.payload["amount"] == "500.00"
        assert event.payload["at"] == deterministic_clock.now().isoformat()

    def test_trace_for_entity(
        self, session, organization_id, test_actor_id, deterministic_clock
    ):
        auditor = AuditorService(session, deterministic_clock)
        entity = uuid4()
        auditor.record(organization_id, AuditAction.SALE_CREATED, "sale", entity, test_actor_id)
        auditor.record(organization_id, AuditAction.SALE_CREATED, "sale", uuid4(), test_actor_id)
        auditor.record(organization_id, AuditAction.SALE_RETURNED, "sale", entity, test_actor_id)

        trace = auditor.get_trace(organization_id, "sale", entity)

        assert [e.action for e in trace] == ["sale_created", "sale_returned"]
