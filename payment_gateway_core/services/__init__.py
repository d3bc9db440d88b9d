"""Service layer for the payment gateway."""

from .allocation_engine import AllocationEngine
from .audit_service import AuditService
from .base_service import SessionService
from .credential_vault import CredentialVault
from .credit_ledger import CreditLedger
from .notification_service import NotificationDispatcher
from .payment_service import PaymentService
from .reconciliation_service import ReconciliationService
from .transaction_ledger import TransactionLedger
from .webhook_guard import WebhookGuard

__all__ = [
    "AllocationEngine",
    "AuditService",
    "CredentialVault",
    "CreditLedger",
    "NotificationDispatcher",
    "PaymentService",
    "ReconciliationService",
    "SessionService",
    "TransactionLedger",
    "WebhookGuard",
]
