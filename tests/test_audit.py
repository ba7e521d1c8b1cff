"""
Test suite for the hash-chained audit trail
"""

import pytest

from credit_engine.audit import AuditTrail, AuditEventType
from credit_engine.storage import InMemoryStorage


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


class TestAuditTrail:
    """Test event logging and chain verification"""

    def test_events_are_chained(self, audit_trail):
        first = audit_trail.log_event(AuditEventType.CREDIT_CREATED, "credit", "credit-1",
                                      {"amount": "USD 1,200.00"}, user_id="user-1")
        second = audit_trail.log_event(AuditEventType.CREDIT_PAYMENT_APPLIED, "credit", "credit-1",
                                       {"amount": "USD 106.62"}, user_id="user-1")

        assert first.sequence == 1
        assert second.sequence == 2
        assert first.previous_hash == ""
        assert second.previous_hash == first.current_hash
        assert audit_trail.verify_integrity()["valid"]

    def test_queries(self, audit_trail):
        audit_trail.log_event(AuditEventType.CREDIT_CREATED, "credit", "credit-1")
        audit_trail.log_event(AuditEventType.CREDIT_CREATED, "credit", "credit-2")
        audit_trail.log_event(AuditEventType.INSTALLMENT_SETTLED, "credit", "credit-1")

        events = audit_trail.get_events_for_entity("credit", "credit-1")
        assert [e.event_type for e in events] == [
            AuditEventType.CREDIT_CREATED, AuditEventType.INSTALLMENT_SETTLED
        ]
        assert len(audit_trail.get_events_by_type(AuditEventType.CREDIT_CREATED)) == 2

    def test_tampering_detected(self, audit_trail, storage):
        """Editing a stored event breaks its hash"""
        event = audit_trail.log_event(AuditEventType.CREDIT_CREATED, "credit", "credit-1",
                                      {"amount": "USD 1,200.00"})
        audit_trail.log_event(AuditEventType.CREDIT_CLOSED, "credit", "credit-1")

        record = storage.load("audit_events", event.id)
        record["metadata"]["amount"] = "USD 1.00"
        storage.save("audit_events", event.id, record)

        result = audit_trail.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_chain_continues_across_instances(self, audit_trail, storage):
        """A new trail over the same storage appends to the existing chain"""
        last = audit_trail.log_event(AuditEventType.CREDIT_CREATED, "credit", "credit-1")

        reopened = AuditTrail(storage)
        event = reopened.log_event(AuditEventType.CREDIT_DEFAULTED, "credit", "credit-1")

        assert event.sequence == last.sequence + 1
        assert event.previous_hash == last.current_hash
        assert reopened.verify_integrity()["total_events"] == 2

    def test_disabled_trail_records_nothing(self, storage):
        trail = AuditTrail(storage, enabled=False)

        assert trail.log_event(AuditEventType.CREDIT_CREATED, "credit", "credit-1") is None
        assert storage.count("audit_events") == 0
