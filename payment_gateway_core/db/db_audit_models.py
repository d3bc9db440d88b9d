"""
Audit stream / dead-letter model.

Every callback outcome that an operator may need to look at lands here,
including the raw payload so that failed reconciliations can be replayed.
"""

from sqlalchemy import Column, Index, Integer, String, Text

from ..constants import AuditEventStatus, AuditSeverity
from .db_base import JSON, TimestampMixin, UUIDMixin
from .db_config import Base


class AuditEvent(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "payment_audit_events"

    event_type = Column(String(40), nullable=False)
    severity = Column(String(20), nullable=False, default=AuditSeverity.INFO.value)
    provider = Column(String(20), nullable=True)
    correlation_id = Column(String(100), nullable=True, index=True)
    source_address = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=AuditEventStatus.OPEN.value)
    replay_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_audit_event_type_status", "event_type", "status"),)
