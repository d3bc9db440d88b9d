from .callback_schemas import CallbackResult, CallbackVariant, detect_variant, parse_callback
from .credential_schemas import (
    CredentialMetadata,
    CredentialSave,
    JengaSecrets,
    KcbSecrets,
    MpesaSecrets,
    validate_secrets,
)
from .payment_schemas import (
    AllocationResult,
    CallbackResponse,
    CreditApplicationResult,
    InitiationResult,
    PaymentNotification,
    ProviderInitiation,
    ReconciliationResult,
)

__all__ = [
    "AllocationResult",
    "CallbackResponse",
    "CallbackResult",
    "CallbackVariant",
    "CreditApplicationResult",
    "CredentialMetadata",
    "CredentialSave",
    "InitiationResult",
    "JengaSecrets",
    "KcbSecrets",
    "MpesaSecrets",
    "PaymentNotification",
    "ProviderInitiation",
    "ReconciliationResult",
    "detect_variant",
    "parse_callback",
    "validate_secrets",
]
