"""Tests for the payment notification dispatcher."""

from decimal import Decimal
from unittest.mock import patch

import pytest
from azure.core.exceptions import ServiceRequestError

from payment_gateway_core.constants import Provider
from payment_gateway_core.schemas import PaymentNotification
from payment_gateway_core.services import NotificationDispatcher

SEND = "payment_gateway_core.services.notification_service.send_message_to_queue_direct"


@pytest.fixture
def notification():
    return PaymentNotification(
        payment_id="pay-1",
        tenant_id="tenant-1",
        invoice_id="inv-1",
        amount=Decimal("10000.00"),
        receipt="QKR1234567",
        provider=Provider.MPESA,
        invoice_status="paid",
    )


@pytest.fixture
def enabled_config(app_config):
    app_config.features.enable_notifications = True
    app_config.queue.connection_string = "UseDevelopmentStorage=true"
    return app_config


@patch(SEND)
def test_disabled_by_default(mock_send, app_config, notification):
    dispatcher = NotificationDispatcher(app_config)

    assert dispatcher.enabled is False
    assert dispatcher.dispatch(notification) is False
    mock_send.assert_not_called()


@patch(SEND)
def test_flag_without_connection_string(mock_send, app_config, notification):
    app_config.features.enable_notifications = True

    assert NotificationDispatcher(app_config).dispatch(notification) is False
    mock_send.assert_not_called()


@patch(SEND)
def test_dispatch_serializes_notification(mock_send, enabled_config, notification):
    assert NotificationDispatcher(enabled_config).dispatch(notification) is True

    _, queue_name, message = mock_send.call_args.args
    assert queue_name == "payment-notifications"
    assert message["event"] == "payment_completed"
    assert message["amount"] == "10000.00"
    assert message["provider"] == "mpesa"
    assert message["receipt"] == "QKR1234567"


@patch(SEND)
def test_queue_errors_are_reported_not_raised(mock_send, enabled_config, notification):
    mock_send.side_effect = ServiceRequestError("connection refused")

    assert NotificationDispatcher(enabled_config).dispatch(notification) is False
