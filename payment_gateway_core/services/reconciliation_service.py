"""
Tenant reconciliation sweep.

Matches a tenant's unallocated payment remainders and available credits to
their open invoices. Every quantity is recomputed from the ledgers on each
run, so running the sweep again after it has settled changes nothing.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..constants import CreditSourceType, InvoiceStatus, PaymentStatus
from ..db.db_base import to_money
from ..db.db_invoice_models import Invoice, Payment
from ..schemas.payment_schemas import ReconciliationResult
from .allocation_engine import AllocationEngine
from .base_service import SessionService
from .credit_ledger import CreditLedger
from .invoice_balance import outstanding_for


class ReconciliationService(SessionService):
    def __init__(
        self,
        session: Session,
        allocation_engine: Optional[AllocationEngine] = None,
        credit_ledger: Optional[CreditLedger] = None,
    ):
        super().__init__(session)
        self.credit_ledger = credit_ledger or CreditLedger(session, logger=self.logger)
        self.allocation_engine = allocation_engine or AllocationEngine(
            session, credit_ledger=self.credit_ledger, logger=self.logger
        )

    def open_invoices(self, tenant_id: str) -> List[Invoice]:
        """Invoices with something outstanding, oldest due date first (undated last)."""
        invoices = (
            self.session.query(Invoice)
            .filter(
                Invoice.tenant_id == tenant_id,
                Invoice.status != InvoiceStatus.PAID.value,
            )
            .order_by(Invoice.due_date.is_(None), Invoice.due_date, Invoice.created_at)
            .all()
        )
        return [invoice for invoice in invoices if outstanding_for(self.session, invoice) > 0]

    def _completed_payments(self, tenant_id: str) -> List[Payment]:
        return (
            self.session.query(Payment)
            .filter(
                Payment.tenant_id == tenant_id,
                Payment.status == PaymentStatus.COMPLETED.value,
            )
            .order_by(Payment.payment_date, Payment.created_at)
            .all()
        )

    def reconcile_tenant(self, tenant_id: str) -> ReconciliationResult:
        """
        Settle a tenant's ledgers.

        1. Each completed payment's unaccounted remainder is spread over open
           invoices; whatever is left with no open invoice becomes credit.
        2. Each available credit, oldest first, is applied to open invoices.

        Flushes only; the caller owns the transaction.
        """
        result = ReconciliationResult(tenant_id=tenant_id)

        for payment in self._completed_payments(tenant_id):
            remaining = self.allocation_engine.unallocated_amount(payment)
            if remaining <= 0:
                continue

            for invoice in self.open_invoices(tenant_id):
                applied = self.allocation_engine.apply_to_invoice(payment, invoice.id, remaining)
                if applied > 0:
                    result.payments_allocated += 1
                    result.payment_amount_allocated += applied
                    remaining -= applied
                if remaining <= 0:
                    break

            if remaining > 0:
                self.credit_ledger.create_credit(
                    tenant_id=tenant_id,
                    landlord_id=payment.landlord_id,
                    amount=remaining,
                    source_type=CreditSourceType.OVERPAYMENT,
                    source_payment_id=payment.id,
                    description="Unallocated payment remainder",
                )
                result.credits_created += 1
                result.credit_amount_created += to_money(remaining)

        for credit in self.credit_ledger.list_available(tenant_id):
            for invoice in self.open_invoices(tenant_id):
                if to_money(credit.balance) <= 0:
                    break
                applied = self.credit_ledger.apply_credit(
                    credit.id, invoice.id, notes="Applied by reconciliation"
                )
                result.credits_applied += 1
                result.credit_amount_applied += applied.applied_amount

        self.logger.info(
            "Tenant reconciliation finished",
            extra={
                "tenant_id": tenant_id,
                "payments_allocated": result.payments_allocated,
                "credits_created": result.credits_created,
                "credits_applied": result.credits_applied,
                "changed": result.changed,
            },
        )
        return result
