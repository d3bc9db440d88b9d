"""
SQLAlchemy models for the payment gateway core.

This module provides a common entry point for all models.
"""

from .db_base import JSON, Money, TimestampMixin, UUIDMixin, as_utc, to_money, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    get_development_config,
    get_production_config,
    import_all_models,
    initialize_db,
)
from .db_audit_models import AuditEvent
from .db_credential_models import ProviderCredential
from .db_credit_models import CreditApplication, TenantCredit
from .db_invoice_models import Invoice, Payment, PaymentAllocation
from .db_property_models import Lease, Property, Unit
from .db_transaction_models import PaymentTransaction

__all__ = [
    # Base definitions
    "Base",
    "JSON",
    "Money",
    "TimestampMixin",
    "UUIDMixin",
    "as_utc",
    "to_money",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "get_development_config",
    "get_production_config",
    "import_all_models",
    "initialize_db",
    # Models
    "AuditEvent",
    "CreditApplication",
    "Invoice",
    "Lease",
    "Payment",
    "PaymentAllocation",
    "PaymentTransaction",
    "Property",
    "ProviderCredential",
    "TenantCredit",
    "Unit",
]
