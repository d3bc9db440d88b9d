"""
Credential vault for per-landlord provider configurations.

The vault is the only component that ever sees plaintext secrets, and it
only hands them to provider adapters for the duration of a single call.
Anything returned towards a UI is a CredentialMetadata, never a secret.
"""

import json
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..config import AppConfig
from ..constants import Provider, ProviderEnvironment
from ..db.db_base import utc_now
from ..db.db_credential_models import ProviderCredential
from ..exceptions import ConfigError, ErrorCode, ServiceError, ValidationError
from ..schemas.credential_schemas import CredentialMetadata, CredentialSave, validate_secrets
from ..utils.encryption_utils import decrypt_value, encrypt_value, load_key
from .base_service import SessionService


class CredentialVault(SessionService):
    """
    Stores and decrypts provider credentials.

    Secrets are sealed with AES-256-GCM under the instance key from the
    injected configuration, with the landlord and provider bound in as
    associated data so a blob cannot be moved to another row.
    """

    def __init__(self, session: Session, config: AppConfig):
        super().__init__(session)
        self.config = config

    def _key(self) -> bytes:
        return load_key(self.config.security.encryption_key)

    @staticmethod
    def _associated_data(landlord_id: str, provider: Provider) -> bytes:
        return f"{landlord_id}:{Provider(provider).value}".encode("utf-8")

    def _find(self, landlord_id: str, provider: Provider) -> Optional[ProviderCredential]:
        return (
            self.session.query(ProviderCredential)
            .filter(
                ProviderCredential.landlord_id == landlord_id,
                ProviderCredential.provider == Provider(provider).value,
            )
            .first()
        )

    def decrypt(self, landlord_id: str, provider: Provider) -> Dict[str, Any]:
        """
        Get the plaintext configuration for one adapter call.

        Args:
            landlord_id: Landlord whose configuration to load
            provider: Provider to load

        Returns:
            Dict of secret fields plus environment, shortcode, till_number and
            shortcode_type

        Raises:
            ConfigError: If no active configuration exists or the stored
                secrets cannot be read at all
        """
        provider = Provider(provider)
        credential = self._find(landlord_id, provider)
        if credential is None or not credential.is_active:
            raise ConfigError(
                f"{provider.value} is not configured for this landlord",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                landlord_id=landlord_id,
                provider=provider.value,
            )

        plaintext = decrypt_value(
            self._key(),
            credential.encrypted_secrets,
            self._associated_data(landlord_id, provider),
        )
        if plaintext is None:
            # Rows written before encryption was introduced hold plain JSON
            self.logger.warning(
                "Stored credentials are not encrypted, reading as plaintext",
                extra={"credential_id": credential.id, "provider": provider.value},
            )
            plaintext = credential.encrypted_secrets

        try:
            secrets = json.loads(plaintext)
        except (TypeError, ValueError) as e:
            raise ConfigError(
                f"Stored {provider.value} credentials are unreadable",
                credential_id=credential.id,
                provider=provider.value,
                cause=e,
            ) from e

        self.logger.info(
            "Credential access granted",
            extra={
                "credential_id": credential.id,
                "landlord_id": landlord_id,
                "provider": provider.value,
                "environment": credential.environment,
            },
        )

        return {
            **secrets,
            "environment": credential.environment,
            "shortcode": credential.shortcode,
            "till_number": credential.till_number,
            "shortcode_type": credential.shortcode_type,
            "is_verified": credential.is_verified,
        }

    def save(
        self,
        landlord_id: str,
        provider: Provider,
        secrets: Dict[str, Any],
        environment: str = ProviderEnvironment.SANDBOX.value,
        shortcode: Optional[str] = None,
        till_number: Optional[str] = None,
        shortcode_type: Optional[str] = None,
    ) -> CredentialMetadata:
        """
        Validate, encrypt and upsert a provider configuration.

        Every call re-encrypts with a fresh nonce, reactivates the row and
        clears the verification flag.

        Returns:
            Non-sensitive metadata only

        Raises:
            ValidationError: If the secrets or public fields are invalid
            ConfigError: If the instance key is missing or malformed
        """
        provider = Provider(provider)
        try:
            request = CredentialSave(
                environment=environment,
                shortcode=shortcode,
                till_number=till_number,
                shortcode_type=shortcode_type,
                secrets=secrets,
            )
        except PydanticValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            raise ValidationError(
                f"Invalid {provider.value} configuration",
                field=",".join(fields) or None,
                provider=provider.value,
            ) from None
        validated = validate_secrets(provider, request.secrets)

        sealed = encrypt_value(
            self._key(),
            validated.model_dump_json(exclude_none=True),
            self._associated_data(landlord_id, provider),
        )

        credential = self._find(landlord_id, provider)
        created = credential is None
        if created:
            credential = ProviderCredential(landlord_id=landlord_id, provider=provider.value)
            self.session.add(credential)

        credential.encrypted_secrets = sealed
        credential.environment = request.environment.value
        credential.shortcode = request.shortcode
        credential.till_number = request.till_number
        credential.shortcode_type = request.shortcode_type.value if request.shortcode_type else None
        credential.is_active = True
        credential.is_verified = False
        credential.last_verified_at = None

        try:
            self.session.flush()
        except Exception as e:
            raise ServiceError(
                "Failed to store credentials",
                error_code=ErrorCode.DATABASE_ERROR,
                operation="save_credentials",
                landlord_id=landlord_id,
                provider=provider.value,
                cause=e,
            ) from e

        self.logger.info(
            "Credentials stored" if created else "Credentials updated",
            extra={
                "credential_id": credential.id,
                "landlord_id": landlord_id,
                "provider": provider.value,
                "environment": credential.environment,
                "secret_fields": sorted(validated.model_dump(exclude_none=True).keys()),
            },
        )
        return CredentialMetadata.model_validate(credential)

    def deactivate(self, landlord_id: str, provider: Provider) -> bool:
        """Retire a configuration. Returns False if there was nothing active."""
        credential = self._find(landlord_id, provider)
        if credential is None or not credential.is_active:
            return False
        credential.is_active = False
        self.session.flush()
        self.logger.info(
            "Credentials deactivated",
            extra={"credential_id": credential.id, "provider": Provider(provider).value},
        )
        return True

    def mark_verified(self, landlord_id: str, provider: Provider) -> CredentialMetadata:
        """Record that a token exchange succeeded with the stored secrets."""
        credential = self._find(landlord_id, provider)
        if credential is None:
            raise ConfigError(
                f"{Provider(provider).value} is not configured for this landlord",
                landlord_id=landlord_id,
                provider=Provider(provider).value,
            )
        credential.is_verified = True
        credential.last_verified_at = utc_now()
        self.session.flush()
        return CredentialMetadata.model_validate(credential)

    def get_metadata(self, landlord_id: str, provider: Provider) -> Optional[CredentialMetadata]:
        credential = self._find(landlord_id, provider)
        return CredentialMetadata.model_validate(credential) if credential else None
