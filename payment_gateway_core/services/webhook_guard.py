"""
Webhook ingress guard for provider callbacks.

Providers deliver callbacks at least once, possibly in parallel, from
addresses we do not control. The guard:

1. rejects any source outside the provider's CIDR allow-list (HTTP 403),
2. parses the body into a CallbackResult, acknowledging malformed bodies,
3. matches the callback to its pending transaction and transitions it with a
   conditional update,
4. on completion creates the Payment, runs the allocation waterfall, sweeps
   the tenant and queues a notification.

Apart from the 403, the provider always gets a 200. Internal failures are
rolled back and kept as replayable ``processing_failure`` audit events.
"""

import json
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from sqlalchemy.orm import Session

from ..config import AppConfig
from ..constants import (
    PAYMENT_METHOD_LABELS,
    AuditEventStatus,
    AuditEventType,
    AuditSeverity,
    PaymentStatus,
    Provider,
    TransactionStatus,
)
from ..db.db_base import to_money, utc_now
from ..db.db_invoice_models import Invoice, Payment
from ..db.db_transaction_models import PaymentTransaction
from ..exceptions import (
    DuplicateError,
    ErrorCode,
    SecurityRejection,
    ValidationError,
    clear_correlation_id,
    set_correlation_id,
)
from ..schemas.callback_schemas import CallbackResult, parse_callback
from ..schemas.payment_schemas import AllocationResult, CallbackResponse, PaymentNotification
from ..utils.network_utils import is_address_allowed
from .allocation_engine import AllocationEngine
from .audit_service import AuditService
from .base_service import SessionService
from .credit_ledger import CreditLedger
from .notification_service import NotificationDispatcher
from .reconciliation_service import ReconciliationService
from .transaction_ledger import TransactionLedger

RECONCILIATION_STAGE = "reconciliation"
REJECTED_BODY = {"ResultCode": 1, "ResultDesc": "Rejected"}
MAX_RAW_PAYLOAD_CHARS = 4000


class WebhookGuard(SessionService):
    def __init__(
        self,
        session: Session,
        config: AppConfig,
        ledger: Optional[TransactionLedger] = None,
        allocation_engine: Optional[AllocationEngine] = None,
        reconciliation: Optional[ReconciliationService] = None,
        audit: Optional[AuditService] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        super().__init__(session)
        self.config = config
        self.ledger = ledger or TransactionLedger(session, logger=self.logger)
        credit_ledger = CreditLedger(session, logger=self.logger)
        self.allocation_engine = allocation_engine or AllocationEngine(
            session, credit_ledger=credit_ledger, logger=self.logger
        )
        self.reconciliation = reconciliation or ReconciliationService(
            session, allocation_engine=self.allocation_engine, credit_ledger=credit_ledger
        )
        self.audit = audit or AuditService(session, config)
        self.notifier = notifier or NotificationDispatcher(config)

    # ==================== ENTRY POINTS ====================

    def handle(
        self,
        provider: Provider,
        raw_callback: Union[Dict[str, Any], str, bytes, None],
        source_address: Optional[str],
    ) -> CallbackResponse:
        """
        Process one callback delivery.

        Returns:
            403 for a source outside the allow-list, 200 for everything else
        """
        provider = Provider(provider)
        networks = self.config.provider(provider).allowed_networks

        if not is_address_allowed(source_address, networks):
            rejection = SecurityRejection(
                f"{provider.value} callback from unauthorized source",
                source_address=source_address,
                provider=provider.value,
            )
            self.audit.record(
                AuditEventType.SECURITY_REJECTION,
                rejection.message,
                provider=provider,
                source_address=source_address,
                payload=self._storable(raw_callback),
                severity=AuditSeverity.CRITICAL,
            )
            return CallbackResponse(
                status_code=rejection.status_code, body=dict(REJECTED_BODY), outcome="rejected"
            )

        payload = self._decode(raw_callback)
        try:
            result = parse_callback(provider, payload)
        except ValidationError as e:
            self.audit.record(
                AuditEventType.MALFORMED_CALLBACK,
                e.message,
                provider=provider,
                source_address=source_address,
                payload=self._storable(raw_callback),
                severity=AuditSeverity.WARNING,
            )
            return CallbackResponse(outcome="malformed")

        set_correlation_id(result.correlation_id)
        try:
            return self._apply(result, payload, source_address)
        except Exception as e:
            # The provider is owed a 200 regardless; the failure becomes a dead letter
            self.session.rollback()
            self.logger.exception(
                "Callback processing failed",
                extra={"provider": provider.value, "error": str(e)},
            )
            self.audit.record(
                AuditEventType.PROCESSING_FAILURE,
                f"Callback processing failed: {e}",
                provider=provider,
                correlation_id=result.correlation_id,
                source_address=source_address,
                payload=payload,
                severity=AuditSeverity.CRITICAL,
            )
            return CallbackResponse(outcome="failed")
        finally:
            clear_correlation_id()

    def replay(self, event_id: str) -> CallbackResponse:
        """
        Re-run a dead-lettered callback or sweep.

        The source was validated when the event was first recorded, so the
        allow-list is not consulted again.

        Raises:
            NotFoundError: Unknown event
            ValidationError: The event is not a replayable, open processing failure
        """
        event = self.audit.get(event_id)
        if event.event_type != AuditEventType.PROCESSING_FAILURE.value:
            raise ValidationError(
                "Only processing failures can be replayed",
                field="event_id",
                error_code=ErrorCode.BUSINESS_RULE_VIOLATION,
                event_type=event.event_type,
            )
        if event.status != AuditEventStatus.OPEN.value:
            raise ValidationError(
                "Audit event is not open",
                field="event_id",
                error_code=ErrorCode.INVALID_STATE_TRANSITION,
                status=event.status,
            )

        payload = event.payload or {}
        if event.correlation_id:
            set_correlation_id(event.correlation_id)
        try:
            if payload.get("stage") == RECONCILIATION_STAGE:
                with self.transaction():
                    self.reconciliation.reconcile_tenant(payload["tenant_id"])
                response = CallbackResponse(outcome="reconciled")
            else:
                result = parse_callback(Provider(event.provider), payload)
                response = self._apply(result, payload, event.source_address)
        except Exception as e:
            self.session.rollback()
            self.logger.exception(
                "Replay failed",
                extra={"audit_event_id": event_id, "error": str(e)},
            )
            self.audit.mark_replayed(event_id, succeeded=False)
            return CallbackResponse(outcome="failed")
        finally:
            clear_correlation_id()

        self.audit.mark_replayed(event_id, succeeded=True)
        self.logger.info(
            "Audit event replayed",
            extra={"audit_event_id": event_id, "outcome": response.outcome},
        )
        return response

    # ==================== CALLBACK PROCESSING ====================

    def _apply(
        self, result: CallbackResult, payload: Dict[str, Any], source_address: Optional[str]
    ) -> CallbackResponse:
        transaction = self.ledger.find_by_correlation(result.provider, result.correlation_ids)

        if transaction is None:
            return self._record_gap(result, payload, source_address)

        if transaction.status != TransactionStatus.PENDING.value:
            self.audit.record(
                AuditEventType.DUPLICATE_CALLBACK,
                "Callback for a transaction that is already terminal",
                provider=result.provider,
                correlation_id=result.correlation_id,
                source_address=source_address,
                severity=AuditSeverity.INFO,
            )
            return CallbackResponse(outcome="duplicate")

        if result.success and not self._amount_matches(transaction.amount, result.amount):
            mismatch = ValidationError(
                "Callback amount does not match the requested amount",
                field="amount",
                error_code=ErrorCode.AMOUNT_MISMATCH,
                transaction_id=transaction.id,
                expected=str(transaction.amount),
                reported=str(result.amount),
            )
            self.audit.record(
                AuditEventType.AMOUNT_MISMATCH,
                mismatch.message,
                provider=result.provider,
                correlation_id=result.correlation_id,
                source_address=source_address,
                payload=payload,
                severity=AuditSeverity.CRITICAL,
            )
            return CallbackResponse(outcome="amount_mismatch")

        status = TransactionStatus.COMPLETED if result.success else TransactionStatus.FAILED
        payment = None
        allocation = None

        # Lock held through commit so no other writer sees this invoice half-allocated
        with self.allocation_engine.serialized(transaction.invoice_id):
            with self.transaction():
                won = self.ledger.transition(
                    transaction.id,
                    status,
                    result_code=result.result_code,
                    result_desc=result.result_desc,
                    receipt=result.receipt,
                )
                if won and status == TransactionStatus.COMPLETED:
                    payment = self._create_payment(transaction, result, source_address)
                    if payment is not None:
                        allocation = self.allocation_engine.allocate(payment)

        if not won:
            return CallbackResponse(outcome="duplicate")

        if payment is not None:
            self._sweep(payment.tenant_id, result)
            self._notify(payment, result, transaction, allocation)

        return CallbackResponse(outcome=status.value)

    def _record_gap(
        self, result: CallbackResult, payload: Dict[str, Any], source_address: Optional[str]
    ) -> CallbackResponse:
        """Keep a callback nobody initiated here, without allocating it."""
        try:
            with self.transaction():
                transaction = self.ledger.record_from_callback(result)
                self.audit.record(
                    AuditEventType.RECONCILIATION_GAP,
                    "Callback had no pending transaction; recorded for manual reconciliation",
                    provider=result.provider,
                    correlation_id=result.correlation_id,
                    source_address=source_address,
                    payload=payload,
                    severity=AuditSeverity.WARNING,
                    commit=False,
                )
        except DuplicateError:
            # A concurrent delivery of the same callback got there first
            return CallbackResponse(outcome="duplicate")

        self.logger.warning(
            "Reconciliation gap recorded",
            extra={"transaction_id": transaction.id, "status": transaction.status},
        )
        return CallbackResponse(outcome="reconciliation_gap")

    def _create_payment(
        self,
        transaction: PaymentTransaction,
        result: CallbackResult,
        source_address: Optional[str],
    ) -> Optional[Payment]:
        invoice = self.session.get(Invoice, transaction.invoice_id) if transaction.invoice_id else None
        tenant_id = transaction.tenant_id or (invoice.tenant_id if invoice is not None else None)
        if not tenant_id:
            self.audit.record(
                AuditEventType.RECONCILIATION_GAP,
                "Completed transaction has no tenant; payment needs manual matching",
                provider=result.provider,
                correlation_id=result.correlation_id,
                source_address=source_address,
                payload={"transaction_id": transaction.id},
                severity=AuditSeverity.WARNING,
                commit=False,
            )
            return None

        payment = Payment(
            tenant_id=tenant_id,
            lease_id=invoice.lease_id if invoice is not None else None,
            invoice_id=transaction.invoice_id,
            landlord_id=transaction.landlord_id,
            payment_transaction_id=transaction.id,
            amount=to_money(result.amount) if result.amount is not None else transaction.amount,
            payment_method=PAYMENT_METHOD_LABELS[Provider(transaction.provider)],
            transaction_id=result.receipt,
            payment_reference=transaction.checkout_request_id,
            status=PaymentStatus.COMPLETED.value,
            payment_date=utc_now(),
        )
        self.session.add(payment)
        self.session.flush()

        self.logger.info(
            "Payment recorded",
            extra={
                "payment_id": payment.id,
                "transaction_id": transaction.id,
                "amount": payment.amount,
                "receipt": payment.transaction_id,
            },
        )
        return payment

    def _sweep(self, tenant_id: str, result: CallbackResult) -> None:
        """Tenant sweep in its own transaction; a failure here leaves the payment intact."""
        try:
            with self.transaction():
                self.reconciliation.reconcile_tenant(tenant_id)
        except Exception as e:
            self.logger.exception(
                "Reconciliation sweep failed",
                extra={"tenant_id": tenant_id, "error": str(e)},
            )
            self.audit.record(
                AuditEventType.PROCESSING_FAILURE,
                f"Reconciliation sweep failed: {e}",
                provider=result.provider,
                correlation_id=result.correlation_id,
                payload={"stage": RECONCILIATION_STAGE, "tenant_id": tenant_id},
                severity=AuditSeverity.CRITICAL,
            )

    def _notify(
        self,
        payment: Payment,
        result: CallbackResult,
        transaction: PaymentTransaction,
        allocation: Optional[AllocationResult],
    ) -> None:
        self.notifier.dispatch(
            PaymentNotification(
                payment_id=payment.id,
                tenant_id=payment.tenant_id,
                landlord_id=payment.landlord_id,
                invoice_id=payment.invoice_id,
                amount=payment.amount,
                currency=transaction.currency,
                receipt=payment.transaction_id,
                phone_number=result.phone or transaction.phone_number,
                provider=result.provider,
                invoice_status=allocation.invoice_status if allocation else None,
                credit_amount=allocation.overpayment_amount if allocation else Decimal("0.00"),
            )
        )

    # ==================== HELPERS ====================

    def _amount_matches(self, expected: Decimal, reported: Optional[Decimal]) -> bool:
        if reported is None:
            return False
        tolerance = self.config.reconciliation.amount_tolerance
        return abs(to_money(expected) - to_money(reported)) <= tolerance

    @staticmethod
    def _decode(raw_callback: Union[Dict[str, Any], str, bytes, None]) -> Any:
        if isinstance(raw_callback, (bytes, bytearray)):
            raw_callback = raw_callback.decode("utf-8", errors="replace")
        if isinstance(raw_callback, str):
            try:
                return json.loads(raw_callback)
            except ValueError:
                return None
        return raw_callback

    @classmethod
    def _storable(cls, raw_callback: Union[Dict[str, Any], str, bytes, None]) -> Optional[Dict[str, Any]]:
        decoded = cls._decode(raw_callback)
        if isinstance(decoded, dict):
            return decoded
        if raw_callback is None:
            return None
        return {"raw": str(raw_callback)[:MAX_RAW_PAYLOAD_CHARS]}
