"""
Tests for WebhookGuard.

Covers the allow-list, idempotent delivery, amount checks, reconciliation
gaps and dead-letter replay. Everything runs against the real services;
only the notification dispatcher is a mock.
"""

import json
from datetime import date, timedelta
from types import SimpleNamespace
from decimal import Decimal
from unittest.mock import patch

import pytest

from payment_gateway_core.constants import (
    AuditEventStatus,
    AuditEventType,
    InvoiceStatus,
    Provider,
    TransactionStatus,
)
from payment_gateway_core.db import (
    AuditEvent,
    Invoice,
    Payment,
    PaymentAllocation,
    PaymentTransaction,
    TenantCredit,
)
from payment_gateway_core.exceptions import ValidationError
from tests.fixtures.factories import (
    InvoiceFactory,
    PaymentTransactionFactory,
    jenga_ipn_callback,
    mpesa_stk_callback,
)

SAFARICOM_ADDRESS = "196.201.214.10"
JENGA_ADDRESS = "10.20.0.5"
FORGED_ADDRESS = "203.0.113.9"


def audit_events(db_session, event_type):
    return db_session.query(AuditEvent).filter_by(event_type=event_type.value).all()


@pytest.fixture
def pending(invoice):
    """Pending 10,000 KES M-Pesa push for the invoice."""
    return PaymentTransactionFactory.for_invoice(invoice, landlord_id=invoice.lease.unit.property.owner_id)


class TestOriginCheck:
    def test_forged_source_is_rejected_without_mutation(self, db_session, webhook_guard, pending, notifier):
        response = webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(pending), FORGED_ADDRESS)

        assert response.status_code == 403
        assert response.body == {"ResultCode": 1, "ResultDesc": "Rejected"}
        assert response.outcome == "rejected"
        assert db_session.get(PaymentTransaction, pending.id).status == TransactionStatus.PENDING.value
        assert db_session.query(Payment).count() == 0
        notifier.dispatch.assert_not_called()

        (event,) = audit_events(db_session, AuditEventType.SECURITY_REJECTION)
        assert event.severity == "critical"
        assert event.source_address == FORGED_ADDRESS
        assert event.payload["Body"]["stkCallback"]["CheckoutRequestID"] == pending.checkout_request_id

    @pytest.mark.parametrize("address", [None, "", "not-an-ip"])
    def test_missing_source_is_rejected(self, webhook_guard, pending, address):
        response = webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(pending), address)

        assert response.status_code == 403

    def test_allow_lists_are_per_provider(self, webhook_guard, pending):
        # A Jenga range does not authorize an M-Pesa callback
        response = webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(pending), JENGA_ADDRESS)

        assert response.status_code == 403


class TestMalformed:
    @pytest.mark.parametrize("raw", ["{not json", b"", {}, {"Body": {"stkCallback": {"ResultCode": 0}}}])
    def test_malformed_body_is_acknowledged(self, db_session, webhook_guard, raw):
        response = webhook_guard.handle(Provider.MPESA, raw, SAFARICOM_ADDRESS)

        assert response.status_code == 200
        assert response.body["ResultCode"] == 0
        assert response.outcome == "malformed"
        assert len(audit_events(db_session, AuditEventType.MALFORMED_CALLBACK)) == 1


class TestCompletion:
    def test_success_creates_payment_and_allocation(self, db_session, webhook_guard, pending, invoice, notifier):
        response = webhook_guard.handle(
            Provider.MPESA, mpesa_stk_callback(pending, receipt="QKR7654321"), SAFARICOM_ADDRESS
        )

        assert response.status_code == 200
        assert response.outcome == "completed"

        transaction = db_session.get(PaymentTransaction, pending.id)
        assert transaction.status == TransactionStatus.COMPLETED.value
        assert transaction.receipt_number == "QKR7654321"

        payment = db_session.query(Payment).one()
        assert payment.amount == Decimal("10000.00")
        assert payment.payment_method == "M-Pesa"
        assert payment.transaction_id == "QKR7654321"
        assert payment.payment_reference == pending.checkout_request_id
        assert payment.payment_transaction_id == pending.id
        assert payment.tenant_id == invoice.tenant_id

        assert db_session.query(PaymentAllocation).one().amount == Decimal("10000.00")
        assert db_session.get(Invoice, invoice.id).status == InvoiceStatus.PAID.value

        notification = notifier.dispatch.call_args.args[0]
        assert notification.payment_id == payment.id
        assert notification.receipt == "QKR7654321"
        assert notification.invoice_status == InvoiceStatus.PAID.value

    def test_raw_bytes_body(self, db_session, webhook_guard, pending):
        raw = json.dumps(mpesa_stk_callback(pending)).encode("utf-8")

        response = webhook_guard.handle(Provider.MPESA, raw, SAFARICOM_ADDRESS)

        assert response.outcome == "completed"

    def test_duplicate_delivery_is_idempotent(self, db_session, webhook_guard, pending, notifier):
        callback = mpesa_stk_callback(pending)

        first = webhook_guard.handle(Provider.MPESA, callback, SAFARICOM_ADDRESS)
        second = webhook_guard.handle(Provider.MPESA, callback, SAFARICOM_ADDRESS)

        assert first.outcome == "completed"
        assert second.outcome == "duplicate"
        assert second.status_code == 200
        assert db_session.query(Payment).count() == 1
        assert db_session.query(PaymentAllocation).count() == 1
        assert notifier.dispatch.call_count == 1
        (event,) = audit_events(db_session, AuditEventType.DUPLICATE_CALLBACK)
        assert event.severity == "info"

    def test_concurrent_delivery_loses_the_conditional_transition(
        self, db_session, webhook_guard, transaction_ledger, pending, notifier
    ):
        # What a second worker saw when it read the row before the first one committed
        stale = SimpleNamespace(
            id=pending.id,
            status=TransactionStatus.PENDING.value,
            amount=pending.amount,
            invoice_id=pending.invoice_id,
            tenant_id=pending.tenant_id,
            landlord_id=pending.landlord_id,
            provider=pending.provider,
            checkout_request_id=pending.checkout_request_id,
            merchant_request_id=pending.merchant_request_id,
            phone_number=pending.phone_number,
        )
        callback = mpesa_stk_callback(pending)

        first = webhook_guard.handle(Provider.MPESA, callback, SAFARICOM_ADDRESS)
        with patch.object(transaction_ledger, "find_by_correlation", return_value=stale):
            second = webhook_guard.handle(Provider.MPESA, callback, SAFARICOM_ADDRESS)

        assert first.outcome == "completed"
        assert second.outcome == "duplicate"
        assert second.status_code == 200
        assert db_session.query(Payment).count() == 1
        assert db_session.query(PaymentAllocation).count() == 1
        assert notifier.dispatch.call_count == 1
        assert db_session.get(PaymentTransaction, pending.id).status == TransactionStatus.COMPLETED.value

    def test_failure_after_completion_does_not_overwrite(self, db_session, webhook_guard, pending):
        webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(pending), SAFARICOM_ADDRESS)

        response = webhook_guard.handle(
            Provider.MPESA, mpesa_stk_callback(pending, result_code=1032), SAFARICOM_ADDRESS
        )

        assert response.outcome == "duplicate"
        assert db_session.get(PaymentTransaction, pending.id).status == TransactionStatus.COMPLETED.value

    def test_overpayment_credit_is_swept_to_next_invoice(self, db_session, webhook_guard, invoice, lease):
        later = InvoiceFactory.create(
            lease=lease, amount=Decimal("5000"), due_date=date.today() + timedelta(days=37)
        )
        transaction = PaymentTransactionFactory.for_invoice(invoice, amount=Decimal("12000.00"))

        response = webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(transaction), SAFARICOM_ADDRESS)

        assert response.outcome == "completed"
        credit = db_session.query(TenantCredit).one()
        assert credit.amount == Decimal("2000.00")
        assert credit.balance == Decimal("0.00")
        assert db_session.get(Invoice, invoice.id).status == InvoiceStatus.PAID.value
        assert db_session.get(Invoice, later.id).status == InvoiceStatus.PARTIALLY_PAID.value

    def test_jenga_ipn_matched_by_order_reference(self, db_session, webhook_guard, invoice):
        transaction = PaymentTransactionFactory.for_invoice(
            invoice,
            provider=Provider.JENGA.value,
            checkout_request_id="PAY1A2B3",
            merchant_request_id="OR9Z8Y7",
        )

        response = webhook_guard.handle(
            Provider.JENGA, jenga_ipn_callback("OR9Z8Y7", "10000.00"), JENGA_ADDRESS
        )

        assert response.outcome == "completed"
        payment = db_session.query(Payment).one()
        assert payment.payment_method == "Jenga"
        assert payment.transaction_id == "JNG0001"
        assert payment.payment_transaction_id == transaction.id


class TestNonCompletion:
    def test_failed_callback(self, db_session, webhook_guard, pending, notifier):
        response = webhook_guard.handle(
            Provider.MPESA, mpesa_stk_callback(pending, result_code=1032), SAFARICOM_ADDRESS
        )

        assert response.outcome == "failed"
        transaction = db_session.get(PaymentTransaction, pending.id)
        assert transaction.status == TransactionStatus.FAILED.value
        assert transaction.result_code == "1032"
        assert db_session.query(Payment).count() == 0
        notifier.dispatch.assert_not_called()

    def test_amount_mismatch_keeps_transaction_pending(self, db_session, webhook_guard, pending):
        response = webhook_guard.handle(
            Provider.MPESA, mpesa_stk_callback(pending, amount=Decimal("9000")), SAFARICOM_ADDRESS
        )

        assert response.status_code == 200
        assert response.outcome == "amount_mismatch"
        assert db_session.get(PaymentTransaction, pending.id).status == TransactionStatus.PENDING.value
        assert db_session.query(Payment).count() == 0
        assert len(audit_events(db_session, AuditEventType.AMOUNT_MISMATCH)) == 1

    def test_amount_within_tolerance_is_accepted(self, webhook_guard, pending):
        response = webhook_guard.handle(
            Provider.MPESA, mpesa_stk_callback(pending, amount=Decimal("10000.01")), SAFARICOM_ADDRESS
        )

        assert response.outcome == "completed"

    def test_unknown_transaction_is_recorded_as_gap(self, db_session, webhook_guard):
        stranger = PaymentTransactionFactory.build(checkout_request_id="ws_CO_UNKNOWN")

        response = webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(stranger), SAFARICOM_ADDRESS)

        assert response.outcome == "reconciliation_gap"
        transaction = db_session.query(PaymentTransaction).one()
        assert transaction.checkout_request_id == "ws_CO_UNKNOWN"
        assert transaction.status == TransactionStatus.COMPLETED.value
        assert transaction.details["created_from_callback"] is True
        assert db_session.query(Payment).count() == 0
        assert db_session.query(PaymentAllocation).count() == 0
        assert len(audit_events(db_session, AuditEventType.RECONCILIATION_GAP)) == 1

    def test_tenantless_completion_is_audited(self, db_session, webhook_guard, notifier):
        transaction = PaymentTransactionFactory.create()

        response = webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(transaction), SAFARICOM_ADDRESS)

        assert response.outcome == "completed"
        assert db_session.query(Payment).count() == 0
        assert len(audit_events(db_session, AuditEventType.RECONCILIATION_GAP)) == 1
        notifier.dispatch.assert_not_called()


class TestDeadLetters:
    def test_processing_failure_rolls_back_and_replays(
        self, db_session, webhook_guard, allocation_engine, pending, invoice
    ):
        with patch.object(allocation_engine, "allocate", side_effect=RuntimeError("database went away")):
            response = webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(pending), SAFARICOM_ADDRESS)

        assert response.status_code == 200
        assert response.outcome == "failed"
        assert db_session.get(PaymentTransaction, pending.id).status == TransactionStatus.PENDING.value
        assert db_session.query(Payment).count() == 0

        (event,) = audit_events(db_session, AuditEventType.PROCESSING_FAILURE)
        assert event.correlation_id == pending.checkout_request_id

        replayed = webhook_guard.replay(event.id)

        assert replayed.outcome == "completed"
        assert db_session.query(Payment).count() == 1
        assert db_session.get(Invoice, invoice.id).status == InvoiceStatus.PAID.value
        event = db_session.get(AuditEvent, event.id)
        assert event.status == AuditEventStatus.REPLAYED.value
        assert event.replay_count == 1

    def test_failed_replay_stays_open(self, db_session, webhook_guard, allocation_engine, pending):
        with patch.object(allocation_engine, "allocate", side_effect=RuntimeError("still down")):
            webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(pending), SAFARICOM_ADDRESS)
            (event,) = audit_events(db_session, AuditEventType.PROCESSING_FAILURE)

            response = webhook_guard.replay(event.id)

        assert response.outcome == "failed"
        event = db_session.get(AuditEvent, event.id)
        assert event.status == AuditEventStatus.OPEN.value
        assert event.replay_count == 1

    def test_sweep_failure_is_replayable(self, db_session, webhook_guard, reconciliation_service, pending):
        with patch.object(reconciliation_service, "reconcile_tenant", side_effect=RuntimeError("lock timeout")):
            response = webhook_guard.handle(Provider.MPESA, mpesa_stk_callback(pending), SAFARICOM_ADDRESS)

        # The payment itself committed before the sweep ran
        assert response.outcome == "completed"
        assert db_session.query(Payment).count() == 1

        (event,) = audit_events(db_session, AuditEventType.PROCESSING_FAILURE)
        assert event.payload["stage"] == "reconciliation"

        assert webhook_guard.replay(event.id).outcome == "reconciled"

    def test_only_open_processing_failures_replay(self, db_session, webhook_guard, audit_service):
        other = audit_service.record(AuditEventType.MALFORMED_CALLBACK, "Bad JSON")

        with pytest.raises(ValidationError):
            webhook_guard.replay(other.id)

        failure = audit_service.record(AuditEventType.PROCESSING_FAILURE, "Boom", payload={})
        audit_service.mark_resolved(failure.id)

        with pytest.raises(ValidationError):
            webhook_guard.replay(failure.id)
