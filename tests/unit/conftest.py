"""
Unit test conftest.py - Component-specific fixtures.

This module provides fixtures specific to unit testing:
- Service fixtures bound to the test session
- Mocks for the notification and Azure queues (only where needed)
- Invoice and stored-credential test data
"""

from unittest.mock import Mock

import pytest

from payment_gateway_core.constants import Provider
from payment_gateway_core.services import (
    AllocationEngine,
    AuditService,
    CredentialVault,
    CreditLedger,
    NotificationDispatcher,
    ReconciliationService,
    TransactionLedger,
    WebhookGuard,
)
from tests.fixtures.factories import InvoiceFactory, LeaseFactory
from tests.fixtures.provider_data import MPESA_SECRETS

# ==================== SERVICE FIXTURES ====================


@pytest.fixture(scope="function")
def vault(db_session, app_config):
    return CredentialVault(db_session, app_config)


@pytest.fixture(scope="function")
def transaction_ledger(db_session):
    return TransactionLedger(db_session)


@pytest.fixture(scope="function")
def credit_ledger(db_session):
    return CreditLedger(db_session)


@pytest.fixture(scope="function")
def allocation_engine(db_session, credit_ledger):
    return AllocationEngine(db_session, credit_ledger=credit_ledger)


@pytest.fixture(scope="function")
def reconciliation_service(db_session, allocation_engine, credit_ledger):
    return ReconciliationService(
        db_session, allocation_engine=allocation_engine, credit_ledger=credit_ledger
    )


@pytest.fixture(scope="function")
def audit_service(db_session, app_config):
    return AuditService(db_session, app_config)


@pytest.fixture(scope="function")
def notifier():
    """Notification dispatcher that records instead of queueing."""
    dispatcher = Mock(spec=NotificationDispatcher)
    dispatcher.dispatch.return_value = True
    return dispatcher


@pytest.fixture(scope="function")
def webhook_guard(
    db_session,
    app_config,
    transaction_ledger,
    allocation_engine,
    reconciliation_service,
    audit_service,
    notifier,
):
    return WebhookGuard(
        db_session,
        app_config,
        ledger=transaction_ledger,
        allocation_engine=allocation_engine,
        reconciliation=reconciliation_service,
        audit=audit_service,
        notifier=notifier,
    )


# ==================== DATA FIXTURES ====================


@pytest.fixture(scope="function")
def lease(db_session):
    return LeaseFactory.create()


@pytest.fixture(scope="function")
def invoice(lease):
    """A 10,000 KES invoice with nothing allocated."""
    return InvoiceFactory.create(lease=lease)


@pytest.fixture(scope="function")
def tenant_id(lease):
    return lease.tenant_id


@pytest.fixture(scope="function")
def landlord_id(lease):
    return lease.unit.property.owner_id


@pytest.fixture(scope="function")
def mpesa_credentials(db_session, vault, landlord_id):
    """Paybill M-Pesa configuration stored for the invoice's landlord."""
    metadata = vault.save(
        landlord_id, Provider.MPESA, MPESA_SECRETS, environment="sandbox", shortcode="174379"
    )
    db_session.commit()
    return metadata


# ==================== MOCK FIXTURES (ONLY WHEN NECESSARY) ====================


@pytest.fixture(scope="function")
def mock_azure_queue_client():
    """
    Mock Azure Queue Client for testing queue operations.

    Only use this when testing queue-dependent functionality
    without requiring actual Azure infrastructure.
    """
    mock_client = Mock()
    mock_client.send_message.return_value = Mock(id="test_message_id")
    return mock_client
