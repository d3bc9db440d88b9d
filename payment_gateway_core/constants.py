"""
Constants and enums for the payment gateway core.

This module centralizes the magic strings shared by the providers, the
ledgers and the webhook handlers so that every layer agrees on spelling.
"""

from decimal import Decimal
from enum import Enum


class Provider(str, Enum):
    """Supported push-payment providers."""

    MPESA = "mpesa"
    JENGA = "jenga"
    KCB = "kcb"


class ProviderEnvironment(str, Enum):
    """Provider API environments."""

    SANDBOX = "sandbox"
    PRODUCTION = "production"

    @classmethod
    def normalize(cls, value: str) -> "ProviderEnvironment":
        """Anything mentioning "prod" is production, everything else is sandbox."""
        if value and "prod" in str(value).lower():
            return cls.PRODUCTION
        return cls.SANDBOX


class TransactionStatus(str, Enum):
    """Push-payment transaction states. Only PENDING is non-terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class InvoiceStatus(str, Enum):
    """Invoice states the core may observe or derive."""

    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentStatus(str, Enum):
    """Payment record states."""

    COMPLETED = "completed"


class CreditSourceType(str, Enum):
    """Origins of a tenant credit."""

    OVERPAYMENT = "overpayment"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    MANUAL = "manual"


class ShortcodeType(str, Enum):
    """M-Pesa shortcode flavours."""

    PAYBILL = "paybill"
    TILL_SAFARICOM = "till_safaricom"
    TILL_KOPOKOPO = "till_kopokopo"


class AuditEventType(str, Enum):
    """Audit stream event types."""

    SECURITY_REJECTION = "security_rejection"
    AMOUNT_MISMATCH = "amount_mismatch"
    RECONCILIATION_GAP = "reconciliation_gap"
    PROCESSING_FAILURE = "processing_failure"
    DUPLICATE_CALLBACK = "duplicate_callback"
    MALFORMED_CALLBACK = "malformed_callback"
    CREDENTIAL_SAVED = "credential_saved"
    CREDENTIAL_DEACTIVATED = "credential_deactivated"


class AuditEventStatus(str, Enum):
    """Lifecycle of an audit / dead-letter event."""

    OPEN = "open"
    REPLAYED = "replayed"
    RESOLVED = "resolved"


class AuditSeverity(str, Enum):
    """Audit event severities."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class QueueName(str, Enum):
    """Azure Storage queue names used by the gateway."""

    LOGS = "logs-queue"
    AUDIT = "payment-audit"
    NOTIFICATIONS = "payment-notifications"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Environment variable names read by AppConfig.from_env()."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    ENCRYPTION_KEY = "PAYMENT_ENCRYPTION_KEY"
    TRUSTED_PROXY_HOPS = "TRUSTED_PROXY_HOPS"
    CALLBACK_BASE_URL = "CALLBACK_BASE_URL"
    PROVIDER_HTTP_TIMEOUT = "PROVIDER_HTTP_TIMEOUT"
    MPESA_ALLOWED_NETWORKS = "MPESA_ALLOWED_NETWORKS"
    JENGA_ALLOWED_NETWORKS = "JENGA_ALLOWED_NETWORKS"
    KCB_ALLOWED_NETWORKS = "KCB_ALLOWED_NETWORKS"
    JENGA_PRIVATE_KEY = "JENGA_PRIVATE_KEY"
    KCB_ORG_SHORTCODE = "KCB_ORG_SHORTCODE"
    ENABLE_LOGS_QUEUE = "ENABLE_LOGS_QUEUE"
    ENABLE_AUDIT_QUEUE = "ENABLE_AUDIT_QUEUE"
    ENABLE_NOTIFICATIONS = "ENABLE_NOTIFICATIONS"


# Safaricom Daraja callback source ranges
SAFARICOM_CALLBACK_NETWORKS = (
    "196.201.212.0/24",
    "196.201.214.0/24",
    "196.201.215.0/24",
    "196.201.216.0/24",
    "196.216.152.0/24",
    "41.84.87.0/24",
)

PROVIDER_BASE_URLS = {
    Provider.MPESA: {
        ProviderEnvironment.PRODUCTION: "https://api.safaricom.co.ke",
        ProviderEnvironment.SANDBOX: "https://sandbox.safaricom.co.ke",
    },
    Provider.JENGA: {
        ProviderEnvironment.PRODUCTION: "https://api.finserve.africa",
        ProviderEnvironment.SANDBOX: "https://uat.finserve.africa",
    },
    Provider.KCB: {
        ProviderEnvironment.PRODUCTION: "https://buni.kcbgroup.com",
        ProviderEnvironment.SANDBOX: "https://uat.buni.kcbgroup.com",
    },
}

PAYMENT_METHOD_LABELS = {
    Provider.MPESA: "M-Pesa",
    Provider.JENGA: "Jenga",
    Provider.KCB: "KCB",
}

DEFAULT_CURRENCY = "KES"
DEFAULT_COUNTRY_CODE = "KE"
DEFAULT_AMOUNT_TOLERANCE = Decimal("0.01")
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
DEFAULT_KCB_ORG_SHORTCODE = "522522"
MONEY_QUANTUM = Decimal("0.01")

# Push amounts must stay strictly below this ceiling
MAX_PAYMENT_AMOUNT = Decimal("1000000")
