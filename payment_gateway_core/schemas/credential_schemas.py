"""
Pydantic schemas for provider credentials.

Defines the secret fields each provider needs and the metadata-only view that
is safe to hand back to callers.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..constants import Provider, ProviderEnvironment, ShortcodeType
from ..exceptions import ValidationError


class BaseSecretSchema(BaseModel):
    """Base schema for all provider secrets."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="forbid",
    )


class MpesaSecrets(BaseSecretSchema):
    """Safaricom Daraja secrets."""

    consumer_key: str = Field(..., min_length=10)
    consumer_secret: str = Field(..., min_length=10)
    passkey: str = Field(..., min_length=20)


class JengaSecrets(BaseSecretSchema):
    """Jenga API secrets. ``signing_key`` overrides the instance-wide RSA key."""

    api_key: str = Field(..., min_length=10)
    consumer_secret: str = Field(..., min_length=10)
    merchant_code: str = Field(..., min_length=3)
    signing_key: Optional[str] = Field(None, description="PEM encoded RSA private key")

    @field_validator("signing_key")
    @classmethod
    def validate_pem(cls, v):
        """Only accept PEM armoured keys."""
        if v and "PRIVATE KEY" not in v:
            raise ValueError("signing_key must be a PEM encoded private key")
        return v


class KcbSecrets(BaseSecretSchema):
    """KCB Buni secrets."""

    consumer_key: str = Field(..., min_length=10)
    consumer_secret: str = Field(..., min_length=10)


SECRET_SCHEMAS: Dict[Provider, Type[BaseSecretSchema]] = {
    Provider.MPESA: MpesaSecrets,
    Provider.JENGA: JengaSecrets,
    Provider.KCB: KcbSecrets,
}


class CredentialSave(BaseModel):
    """Input for saving a provider configuration."""

    model_config = ConfigDict(str_strip_whitespace=True)

    environment: ProviderEnvironment = ProviderEnvironment.SANDBOX
    shortcode: Optional[str] = Field(None, min_length=5, max_length=20)
    till_number: Optional[str] = Field(None, max_length=20)
    shortcode_type: Optional[ShortcodeType] = None
    secrets: Dict[str, Any]

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v):
        return ProviderEnvironment.normalize(v) if isinstance(v, str) else v


class CredentialMetadata(BaseModel):
    """The only view of a stored credential that ever leaves the vault."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    landlord_id: str
    provider: Provider
    environment: ProviderEnvironment
    shortcode: Optional[str] = None
    till_number: Optional[str] = None
    shortcode_type: Optional[str] = None
    is_active: bool
    is_verified: bool
    last_verified_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def validate_secrets(provider: Provider, secrets: Dict[str, Any]) -> BaseSecretSchema:
    """
    Validate a provider's secret fields.

    Raises:
        ValidationError: With the offending field names, never their values
    """
    schema = SECRET_SCHEMAS[Provider(provider)]
    try:
        return schema(**secrets)
    except PydanticValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise ValidationError(
            f"Invalid {Provider(provider).value} credentials",
            field=",".join(fields) or None,
            provider=Provider(provider).value,
        ) from None
