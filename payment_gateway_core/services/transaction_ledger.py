"""
Transaction ledger for push-payment attempts.

A transaction is created ``pending`` when a push is accepted by the provider
and moves exactly once to ``completed`` or ``failed``. The move is a single
conditional UPDATE, never a read followed by a write, so concurrent
callbacks for the same correlation id cannot both win.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..constants import DEFAULT_CURRENCY, Provider, TransactionStatus
from ..db.db_base import to_money, utc_now
from ..db.db_transaction_models import PaymentTransaction
from ..exceptions import ErrorCode, ServiceError, ValidationError, duplicate
from ..schemas.callback_schemas import CallbackResult
from ..schemas.payment_schemas import ProviderInitiation
from .base_service import SessionService

TERMINAL_STATUSES = (TransactionStatus.COMPLETED, TransactionStatus.FAILED)


class TransactionLedger(SessionService):
    """Authoritative record of push-payment attempts."""

    def get(self, transaction_id: str) -> Optional[PaymentTransaction]:
        return self.session.get(PaymentTransaction, transaction_id)

    def record_pending(
        self,
        initiation: ProviderInitiation,
        phone_number: str,
        amount: Decimal,
        invoice_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        landlord_id: Optional[str] = None,
        payment_type: str = "rent",
        currency: str = DEFAULT_CURRENCY,
        details: Optional[Dict[str, Any]] = None,
    ) -> PaymentTransaction:
        """
        Persist a pending transaction keyed by the initiation's correlation ids.

        Raises:
            DuplicateError: If the provider reused a checkout request id
        """
        transaction = PaymentTransaction(
            provider=Provider(initiation.provider).value,
            checkout_request_id=initiation.checkout_request_id,
            merchant_request_id=initiation.merchant_request_id,
            phone_number=phone_number,
            amount=to_money(amount),
            currency=currency,
            invoice_id=invoice_id,
            tenant_id=tenant_id,
            landlord_id=landlord_id,
            payment_type=payment_type,
            status=TransactionStatus.PENDING.value,
            details={**initiation.provider_metadata, **(details or {})},
        )
        self.session.add(transaction)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise duplicate(
                "PaymentTransaction",
                cause=e,
                provider=transaction.provider,
                checkout_request_id=transaction.checkout_request_id,
            ) from e

        self.logger.info(
            "Pending transaction recorded",
            extra={
                "transaction_id": transaction.id,
                "provider": transaction.provider,
                "checkout_request_id": transaction.checkout_request_id,
                "amount": transaction.amount,
            },
        )
        return transaction

    def find_by_correlation(
        self, provider: Provider, correlation_ids: Sequence[str]
    ) -> Optional[PaymentTransaction]:
        """Find a transaction whose request-side or provider-side id matches any given id."""
        ids = [cid for cid in correlation_ids if cid]
        if not ids:
            return None
        return (
            self.session.query(PaymentTransaction)
            .filter(
                PaymentTransaction.provider == Provider(provider).value,
                or_(
                    PaymentTransaction.checkout_request_id.in_(ids),
                    PaymentTransaction.merchant_request_id.in_(ids),
                ),
            )
            .order_by(PaymentTransaction.created_at)
            .first()
        )

    def transition(
        self,
        transaction_id: str,
        status: TransactionStatus,
        result_code: Optional[str] = None,
        result_desc: Optional[str] = None,
        receipt: Optional[str] = None,
    ) -> bool:
        """
        Move a pending transaction to a terminal state.

        Returns:
            True if this call performed the transition, False if the row was
            no longer pending (another writer already won)
        """
        status = TransactionStatus(status)
        if status not in TERMINAL_STATUSES:
            raise ValidationError(
                f"Cannot transition a transaction to {status.value}",
                field="status",
                error_code=ErrorCode.INVALID_STATE_TRANSITION,
            )

        now = utc_now()
        try:
            updated = (
                self.session.query(PaymentTransaction)
                .filter(
                    PaymentTransaction.id == transaction_id,
                    PaymentTransaction.status == TransactionStatus.PENDING.value,
                )
                .update(
                    {
                        PaymentTransaction.status: status.value,
                        PaymentTransaction.result_code: result_code,
                        PaymentTransaction.result_desc: (result_desc or "")[:255] or None,
                        PaymentTransaction.receipt_number: (
                            receipt if status == TransactionStatus.COMPLETED else None
                        ),
                        PaymentTransaction.completed_at: now,
                        PaymentTransaction.updated_at: now,
                    },
                    synchronize_session="evaluate",
                )
            )
        except Exception as e:
            raise ServiceError(
                "Failed to transition transaction",
                error_code=ErrorCode.DATABASE_ERROR,
                operation="transition",
                transaction_id=transaction_id,
                cause=e,
            ) from e

        won = updated == 1
        self.logger.info(
            "Transaction transitioned" if won else "Transaction already terminal, transition skipped",
            extra={"transaction_id": transaction_id, "status": status.value, "won": won},
        )
        return won

    def record_from_callback(self, result: CallbackResult) -> PaymentTransaction:
        """
        Write a terminal transaction straight from a callback nobody initiated here.

        The row has no invoice or tenant and is flagged for manual
        reconciliation. A concurrent insert of the same correlation id raises
        DuplicateError; the caller is expected to roll back.
        """
        status = TransactionStatus.COMPLETED if result.success else TransactionStatus.FAILED
        transaction = PaymentTransaction(
            provider=Provider(result.provider).value,
            checkout_request_id=result.correlation_id,
            merchant_request_id=result.correlation_ids[1] if len(result.correlation_ids) > 1 else None,
            phone_number=result.phone,
            amount=to_money(result.amount or 0),
            status=status.value,
            result_code=result.result_code,
            result_desc=(result.result_desc or "")[:255] or None,
            receipt_number=result.receipt if result.success else None,
            completed_at=utc_now(),
            details={
                "created_from_callback": True,
                "correlation_ids": list(result.correlation_ids),
                "transaction_date": result.transaction_date,
            },
        )
        self.session.add(transaction)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise duplicate(
                "PaymentTransaction",
                cause=e,
                provider=transaction.provider,
                checkout_request_id=transaction.checkout_request_id,
            ) from e

        self.logger.warning(
            "Transaction created from callback without a pending record",
            extra={
                "transaction_id": transaction.id,
                "provider": transaction.provider,
                "checkout_request_id": transaction.checkout_request_id,
                "status": transaction.status,
            },
        )
        return transaction

    def list_stale_pending(self, older_than: timedelta) -> List[PaymentTransaction]:
        """Pending rows older than the given age, for the external expiry job."""
        cutoff = utc_now() - older_than
        return (
            self.session.query(PaymentTransaction)
            .filter(
                PaymentTransaction.status == TransactionStatus.PENDING.value,
                PaymentTransaction.created_at < cutoff,
            )
            .order_by(PaymentTransaction.created_at)
            .all()
        )
