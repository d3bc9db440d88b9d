"""Tests for the audit stream and dead-letter store."""

from unittest.mock import patch

import pytest
from azure.core.exceptions import AzureError

from payment_gateway_core.constants import AuditEventStatus, AuditEventType, AuditSeverity, Provider
from payment_gateway_core.db import AuditEvent
from payment_gateway_core.exceptions import NotFoundError
from payment_gateway_core.services import AuditService

SEND = "payment_gateway_core.services.audit_service.send_message_to_queue_direct"


@pytest.fixture
def queued_config(app_config):
    app_config.features.enable_audit_queue = True
    app_config.queue.connection_string = "UseDevelopmentStorage=true"
    return app_config


class TestRecord:
    @patch(SEND)
    def test_persists_open_event(self, mock_send, db_session, audit_service):
        event = audit_service.record(
            AuditEventType.SECURITY_REJECTION,
            "Callback from disallowed source",
            provider=Provider.MPESA,
            source_address="203.0.113.9",
            payload={"Body": {}},
            severity=AuditSeverity.CRITICAL,
        )
        db_session.rollback()

        stored = db_session.get(AuditEvent, event.id)
        assert stored.event_type == "security_rejection"
        assert stored.severity == "critical"
        assert stored.provider == "mpesa"
        assert stored.source_address == "203.0.113.9"
        assert stored.payload == {"Body": {}}
        assert stored.status == AuditEventStatus.OPEN.value
        assert stored.replay_count == 0
        mock_send.assert_not_called()

    def test_without_commit_joins_callers_transaction(self, db_session, audit_service):
        audit_service.record(AuditEventType.DUPLICATE_CALLBACK, "Duplicate", commit=False)
        db_session.rollback()

        assert db_session.query(AuditEvent).count() == 0

    @patch(SEND)
    def test_mirrors_to_queue_when_enabled(self, mock_send, db_session, queued_config):
        service = AuditService(db_session, queued_config)

        event = service.record(AuditEventType.AMOUNT_MISMATCH, "Amount mismatch", correlation_id="ws_CO_1")

        connection_string, queue_name, message = mock_send.call_args.args
        assert connection_string == "UseDevelopmentStorage=true"
        assert queue_name == "payment-audit"
        assert message["id"] == event.id
        assert message["correlation_id"] == "ws_CO_1"
        assert "payload" not in message

    @patch(SEND)
    def test_queue_failure_keeps_event(self, mock_send, db_session, queued_config):
        mock_send.side_effect = AzureError("queue unavailable")
        service = AuditService(db_session, queued_config)

        event = service.record(AuditEventType.PROCESSING_FAILURE, "Boom")

        assert db_session.get(AuditEvent, event.id) is not None


class TestLifecycle:
    def test_get_unknown(self, audit_service):
        with pytest.raises(NotFoundError):
            audit_service.get("missing")

    def test_list_open_filters_by_type(self, audit_service):
        failure = audit_service.record(AuditEventType.PROCESSING_FAILURE, "Boom")
        audit_service.record(AuditEventType.MALFORMED_CALLBACK, "Bad JSON")
        resolved = audit_service.record(AuditEventType.PROCESSING_FAILURE, "Old")
        audit_service.mark_resolved(resolved.id)

        events = audit_service.list_open(AuditEventType.PROCESSING_FAILURE)

        assert [e.id for e in events] == [failure.id]
        assert len(audit_service.list_open()) == 2

    def test_failed_replay_keeps_event_open(self, audit_service):
        event = audit_service.record(AuditEventType.PROCESSING_FAILURE, "Boom")

        audit_service.mark_replayed(event.id, succeeded=False)
        replayed = audit_service.mark_replayed(event.id)

        assert replayed.replay_count == 2
        assert replayed.status == AuditEventStatus.REPLAYED.value
