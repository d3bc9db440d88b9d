"""
Provider credential model.

Just the data structure. Secrets live in ``encrypted_secrets`` as one
AES-GCM sealed JSON document; everything else is safe to show a landlord.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text

from ..constants import ProviderEnvironment
from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class ProviderCredential(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "provider_credentials"

    landlord_id = Column(String(36), nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    environment = Column(String(20), nullable=False, default=ProviderEnvironment.SANDBOX.value)

    encrypted_secrets = Column(Text, nullable=False)

    # Public-safe fields
    shortcode = Column(String(20), nullable=True)
    till_number = Column(String(20), nullable=True)
    shortcode_type = Column(String(20), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    last_verified_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_credential_lookup", "landlord_id", "provider", unique=True),)
