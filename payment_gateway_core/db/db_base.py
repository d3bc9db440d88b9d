"""
Base column types and mixins shared by the gateway models.

Keeps cross-database compatibility (SQLite for tests, PostgreSQL in
production) and nothing else; models carry no business logic.
"""

import json
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import Column, DateTime, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator

from ..constants import MONEY_QUANTUM


def utc_now():
    """Return current UTC time with timezone info attached."""
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_money(value) -> Decimal:
    """Coerce a number to a two-decimal Decimal."""
    if isinstance(value, Decimal):
        return value.quantize(MONEY_QUANTUM)
    return Decimal(str(value)).quantize(MONEY_QUANTUM)


class JSON(TypeDecorator):
    """Cross-database JSON type for SQLite/PostgreSQL compatibility."""

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return to_jsonable_python(value)
        return json.dumps(to_jsonable_python(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return value
        return json.loads(value)


class Money(TypeDecorator):
    """Fixed-point money column. Always yields two-decimal Decimals."""

    impl = Numeric(12, 2)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_money(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return to_money(value)


class TimestampMixin:
    """Simple mixin for created_at/updated_at timestamps."""

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class UUIDMixin:
    """Simple mixin for UUID primary keys."""

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
