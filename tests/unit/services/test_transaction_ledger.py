"""Tests for the push-payment transaction ledger."""

from datetime import timedelta
from decimal import Decimal

import pytest

from payment_gateway_core.constants import Provider, TransactionStatus
from payment_gateway_core.db import PaymentTransaction
from payment_gateway_core.db.db_base import utc_now
from payment_gateway_core.exceptions import DuplicateError, ErrorCode, ValidationError
from payment_gateway_core.schemas import CallbackResult, ProviderInitiation
from tests.fixtures.factories import PaymentTransactionFactory


def initiation(checkout="ws_CO_1", merchant="29115-1", provider=Provider.MPESA):
    return ProviderInitiation(
        provider=provider,
        checkout_request_id=checkout,
        merchant_request_id=merchant,
        provider_metadata={"customer_message": "Success"},
    )


class TestRecordPending:
    def test_records_pending_row(self, db_session, transaction_ledger, invoice):
        transaction = transaction_ledger.record_pending(
            initiation(),
            phone_number="254712345678",
            amount=Decimal("1500"),
            invoice_id=invoice.id,
            tenant_id=invoice.tenant_id,
            landlord_id="landlord-1",
            details={"source": "portal"},
        )
        db_session.commit()

        stored = transaction_ledger.get(transaction.id)
        assert stored.status == TransactionStatus.PENDING.value
        assert stored.amount == Decimal("1500.00")
        assert stored.currency == "KES"
        assert stored.details == {"customer_message": "Success", "source": "portal"}

    def test_reused_checkout_id_is_a_duplicate(self, db_session, transaction_ledger):
        transaction_ledger.record_pending(initiation(), "254712345678", Decimal("10"))
        db_session.commit()

        with pytest.raises(DuplicateError):
            transaction_ledger.record_pending(initiation(), "254712345678", Decimal("10"))

    def test_same_checkout_id_on_another_provider_is_allowed(self, db_session, transaction_ledger):
        transaction_ledger.record_pending(initiation(), "254712345678", Decimal("10"))
        transaction_ledger.record_pending(
            initiation(provider=Provider.KCB), "254712345678", Decimal("10")
        )
        db_session.commit()

        assert db_session.query(PaymentTransaction).count() == 2


class TestFindByCorrelation:
    def test_matches_checkout_or_merchant_id(self, transaction_ledger):
        transaction = PaymentTransactionFactory.create(
            checkout_request_id="PAY123", merchant_request_id="OR123", provider="jenga"
        )

        assert transaction_ledger.find_by_correlation(Provider.JENGA, ["PAY123"]).id == transaction.id
        assert transaction_ledger.find_by_correlation(Provider.JENGA, ["INV-1", "OR123"]).id == transaction.id

    def test_provider_scoped(self, transaction_ledger):
        PaymentTransactionFactory.create(checkout_request_id="PAY123", provider="jenga")

        assert transaction_ledger.find_by_correlation(Provider.KCB, ["PAY123"]) is None

    def test_empty_ids(self, transaction_ledger):
        assert transaction_ledger.find_by_correlation(Provider.MPESA, []) is None
        assert transaction_ledger.find_by_correlation(Provider.MPESA, ["", None]) is None


class TestTransition:
    def test_first_transition_wins(self, db_session, transaction_ledger):
        transaction = PaymentTransactionFactory.create()

        assert transaction_ledger.transition(
            transaction.id, TransactionStatus.COMPLETED, result_code="0", receipt="QKR1"
        )
        db_session.commit()

        stored = transaction_ledger.get(transaction.id)
        assert stored.status == TransactionStatus.COMPLETED.value
        assert stored.receipt_number == "QKR1"
        assert stored.completed_at is not None

    def test_terminal_rows_are_never_rewritten(self, db_session, transaction_ledger):
        transaction = PaymentTransactionFactory.create()
        transaction_ledger.transition(transaction.id, TransactionStatus.FAILED, result_code="1032")
        db_session.commit()

        assert not transaction_ledger.transition(
            transaction.id, TransactionStatus.COMPLETED, result_code="0", receipt="QKR1"
        )
        db_session.commit()

        stored = transaction_ledger.get(transaction.id)
        assert stored.status == TransactionStatus.FAILED.value
        assert stored.result_code == "1032"
        assert stored.receipt_number is None

    def test_failed_transition_drops_receipt(self, transaction_ledger):
        transaction = PaymentTransactionFactory.create()

        transaction_ledger.transition(transaction.id, TransactionStatus.FAILED, receipt="ignored")

        assert transaction_ledger.get(transaction.id).receipt_number is None

    def test_cannot_transition_back_to_pending(self, transaction_ledger):
        transaction = PaymentTransactionFactory.create()

        with pytest.raises(ValidationError) as exc_info:
            transaction_ledger.transition(transaction.id, TransactionStatus.PENDING)

        assert exc_info.value.error_code == ErrorCode.INVALID_STATE_TRANSITION

    def test_unknown_id_does_not_win(self, transaction_ledger):
        assert not transaction_ledger.transition("missing", TransactionStatus.COMPLETED)


class TestRecordFromCallback:
    def test_creates_terminal_row_without_invoice(self, db_session, transaction_ledger):
        result = CallbackResult(
            provider=Provider.MPESA,
            correlation_ids=["ws_CO_unknown", "29115-9"],
            success=True,
            result_code="0",
            amount=Decimal("700"),
            receipt="QKR9",
        )

        transaction = transaction_ledger.record_from_callback(result)
        db_session.commit()

        assert transaction.status == TransactionStatus.COMPLETED.value
        assert transaction.invoice_id is None
        assert transaction.tenant_id is None
        assert transaction.merchant_request_id == "29115-9"
        assert transaction.details["created_from_callback"] is True

    def test_failed_callback_without_amount(self, transaction_ledger):
        result = CallbackResult(
            provider=Provider.KCB, correlation_ids=["ws_CO_x"], success=False, result_code="1"
        )

        transaction = transaction_ledger.record_from_callback(result)

        assert transaction.status == TransactionStatus.FAILED.value
        assert transaction.amount == Decimal("0.00")


class TestListStalePending:
    def test_only_old_pending_rows(self, transaction_ledger):
        old = PaymentTransactionFactory.create(created_at=utc_now() - timedelta(hours=2))
        PaymentTransactionFactory.create()
        PaymentTransactionFactory.create(
            created_at=utc_now() - timedelta(hours=2), status=TransactionStatus.FAILED.value
        )

        stale = transaction_ledger.list_stale_pending(timedelta(hours=1))

        assert [t.id for t in stale] == [old.id]
