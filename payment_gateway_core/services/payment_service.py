"""
Push-payment initiation.

Resolves who is being paid, loads that landlord's provider configuration,
asks the provider to prompt the payer's phone and records a pending
transaction. Nothing is written unless the provider accepted the request.
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..config import AppConfig
from ..constants import MAX_PAYMENT_AMOUNT, Provider, TransactionStatus
from ..db.db_invoice_models import Invoice
from ..db.db_property_models import Lease, Property, Unit
from ..exceptions import ErrorCode, ValidationError, not_found
from ..providers import ProviderAdapter, get_adapter
from ..schemas.credential_schemas import CredentialMetadata
from ..schemas.payment_schemas import InitiationResult
from ..utils.phone_utils import mask_phone, normalize_phone
from .base_service import SessionService
from .credential_vault import CredentialVault
from .transaction_ledger import TransactionLedger


class PaymentService(SessionService):
    """Initiates push payments against the configured providers."""

    def __init__(
        self,
        session: Session,
        config: AppConfig,
        vault: Optional[CredentialVault] = None,
        ledger: Optional[TransactionLedger] = None,
        adapters: Optional[Dict[Provider, ProviderAdapter]] = None,
    ):
        super().__init__(session)
        self.config = config
        self.vault = vault or CredentialVault(session, config)
        self.ledger = ledger or TransactionLedger(session)
        self.adapters = adapters or {}

    def adapter_for(self, provider: Provider) -> ProviderAdapter:
        provider = Provider(provider)
        if provider not in self.adapters:
            self.adapters[provider] = get_adapter(provider, self.config)
        return self.adapters[provider]

    def resolve_landlord(self, invoice: Invoice) -> Optional[str]:
        """Follow invoice -> lease -> unit -> property to the owning landlord."""
        row = (
            self.session.query(Property.owner_id)
            .join(Unit, Unit.property_id == Property.id)
            .join(Lease, Lease.unit_id == Unit.id)
            .filter(Lease.id == invoice.lease_id)
            .first()
        )
        return row[0] if row else None

    @staticmethod
    def _parse_amount(amount) -> Decimal:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(
                "Amount is not a number", field="amount", value=str(amount), cause=e
            ) from e
        if not value.is_finite() or value <= 0:
            raise ValidationError(
                "Amount must be greater than zero", field="amount", value=str(amount)
            )
        if value >= MAX_PAYMENT_AMOUNT:
            raise ValidationError(
                "Amount exceeds the push payment limit",
                field="amount",
                value=str(amount),
                limit=str(MAX_PAYMENT_AMOUNT),
            )
        return value

    def initiate_payment(
        self,
        provider: Provider,
        phone: str,
        amount,
        invoice_id: Optional[str] = None,
        landlord_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        payment_type: str = "rent",
        description: Optional[str] = None,
    ) -> InitiationResult:
        """
        Send a push-payment prompt and record it as pending.

        Raises:
            ValidationError: Bad amount or phone, or no landlord could be resolved
            NotFoundError: Unknown invoice
            ConfigError: Provider not configured for the landlord, or bad signing key
            ProviderAuthError: Token exchange failed
            ProviderTimeoutError: Provider did not answer in time
            ProviderRejectedError: Provider declined the request
        """
        provider = Provider(provider)
        value = self._parse_amount(amount)

        invoice = None
        if invoice_id:
            invoice = self.session.get(Invoice, invoice_id)
            if invoice is None:
                raise not_found("Invoice", invoice_id=invoice_id)
            landlord_id = landlord_id or self.resolve_landlord(invoice)
            tenant_id = tenant_id or invoice.tenant_id

        if not landlord_id:
            raise ValidationError(
                "Unable to resolve the landlord for this payment",
                field="landlord_id",
                error_code=ErrorCode.MISSING_REQUIRED,
                invoice_id=invoice_id,
            )

        credentials = self.vault.decrypt(landlord_id, provider)
        canonical_phone = normalize_phone(phone)

        initiation = self.adapter_for(provider).initiate(
            credentials,
            canonical_phone,
            value,
            invoice_ref=invoice.invoice_number if invoice is not None else None,
            description=description,
        )
        was_verified = credentials.get("is_verified")
        del credentials
        if initiation.submitted_amount is not None:
            # The callback will report what the provider charged, not what was asked
            value = initiation.submitted_amount

        with self.transaction():
            transaction = self.ledger.record_pending(
                initiation,
                phone_number=canonical_phone,
                amount=value,
                invoice_id=invoice_id,
                tenant_id=tenant_id,
                landlord_id=landlord_id,
                payment_type=payment_type,
                currency=self.config.reconciliation.currency,
            )
            if not was_verified:
                # A completed push proves the stored secrets work
                self.vault.mark_verified(landlord_id, provider)

        self.logger.info(
            "Push payment initiated",
            extra={
                "transaction_id": transaction.id,
                "provider": provider.value,
                "phone": mask_phone(canonical_phone),
                "amount": value,
                "invoice_id": invoice_id,
            },
        )

        return InitiationResult(
            transaction_id=transaction.id,
            provider=provider,
            checkout_request_id=transaction.checkout_request_id,
            merchant_request_id=transaction.merchant_request_id,
            phone_number=canonical_phone,
            amount=transaction.amount,
            currency=transaction.currency,
            status=TransactionStatus.PENDING.value,
            provider_metadata=initiation.provider_metadata,
        )

    def verify_credentials(self, landlord_id: str, provider: Provider) -> CredentialMetadata:
        """
        Check stored credentials with a token exchange and flag them verified.

        Raises:
            ConfigError: Provider not configured
            ProviderAuthError: The provider refused the credentials
            ProviderTimeoutError: The token endpoint did not answer in time
        """
        provider = Provider(provider)
        credentials = self.vault.decrypt(landlord_id, provider)
        self.adapter_for(provider).get_access_token(credentials)
        del credentials

        with self.transaction():
            metadata = self.vault.mark_verified(landlord_id, provider)
        self.logger.info(
            "Provider credentials verified",
            extra={"landlord_id": landlord_id, "provider": provider.value},
        )
        return metadata
