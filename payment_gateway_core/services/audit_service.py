"""
Audit stream and dead-letter store for callback processing.

Callback failures are never surfaced to the provider, so this is where an
operator finds them. Events carry the raw payload, which is what
``WebhookGuard.replay`` re-runs.
"""

from typing import Any, Dict, List, Optional

from azure.core.exceptions import AzureError
from sqlalchemy.orm import Session

from ..config import AppConfig
from ..constants import AuditEventStatus, AuditEventType, AuditSeverity, Provider
from ..db.db_audit_models import AuditEvent
from ..exceptions import not_found
from ..utils.queue_utils import send_message_to_queue_direct
from .base_service import SessionService

SEVERITY_LOG_METHOD = {
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.CRITICAL: "error",
}


class AuditService(SessionService):
    def __init__(self, session: Session, config: AppConfig):
        super().__init__(session)
        self.config = config

    def record(
        self,
        event_type: AuditEventType,
        message: str,
        provider: Optional[Provider] = None,
        correlation_id: Optional[str] = None,
        source_address: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        severity: AuditSeverity = AuditSeverity.WARNING,
        commit: bool = True,
    ) -> AuditEvent:
        """
        Persist an audit event, log it, and mirror it to the audit queue.

        Args:
            commit: Commit the session straight away. Pass False to make the
                event part of the caller's unit of work.
        """
        event_type = AuditEventType(event_type)
        severity = AuditSeverity(severity)

        event = AuditEvent(
            event_type=event_type.value,
            severity=severity.value,
            provider=Provider(provider).value if provider else None,
            correlation_id=correlation_id,
            source_address=source_address,
            error_message=message,
            payload=payload,
            status=AuditEventStatus.OPEN.value,
            replay_count=0,
        )
        self.session.add(event)
        if commit:
            self.session.commit()
        else:
            self.session.flush()

        log = getattr(self.logger, SEVERITY_LOG_METHOD[severity])
        log(
            f"Audit event: {message}",
            extra={
                "audit_event_id": event.id,
                "event_type": event_type.value,
                "severity": severity.value,
                "provider": event.provider,
                "source_address": source_address,
            },
        )

        self._mirror(event)
        return event

    def _mirror(self, event: AuditEvent) -> None:
        if not self.config.features.enable_audit_queue or not self.config.queue.connection_string:
            return
        try:
            send_message_to_queue_direct(
                self.config.queue.connection_string,
                self.config.queue.audit_queue_name,
                {
                    "id": event.id,
                    "event_type": event.event_type,
                    "severity": event.severity,
                    "provider": event.provider,
                    "correlation_id": event.correlation_id,
                    "source_address": event.source_address,
                    "error_message": event.error_message,
                    "created_at": event.created_at,
                },
            )
        except (AzureError, ValueError) as e:
            # The database row is the record of truth; the queue is a convenience
            self.logger.error(
                "Failed to mirror audit event to queue",
                extra={"audit_event_id": event.id, "error": str(e)},
            )

    def get(self, event_id: str) -> AuditEvent:
        event = self.session.get(AuditEvent, event_id)
        if event is None:
            raise not_found("AuditEvent", event_id=event_id)
        return event

    def list_open(self, event_type: Optional[AuditEventType] = None) -> List[AuditEvent]:
        query = self.session.query(AuditEvent).filter(
            AuditEvent.status == AuditEventStatus.OPEN.value
        )
        if event_type is not None:
            query = query.filter(AuditEvent.event_type == AuditEventType(event_type).value)
        return query.order_by(AuditEvent.created_at).all()

    def mark_replayed(self, event_id: str, succeeded: bool = True) -> AuditEvent:
        """Count a replay attempt; a successful one closes the event."""
        event = self.get(event_id)
        event.replay_count = (event.replay_count or 0) + 1
        if succeeded:
            event.status = AuditEventStatus.REPLAYED.value
        self.session.commit()
        return event

    def mark_resolved(self, event_id: str) -> AuditEvent:
        event = self.get(event_id)
        event.status = AuditEventStatus.RESOLVED.value
        self.session.commit()
        self.logger.info("Audit event resolved", extra={"audit_event_id": event.id})
        return event
