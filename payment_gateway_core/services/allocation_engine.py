"""
Allocation engine: turns a confirmed payment into invoice allocations and credit.

The waterfall for a payment with a target invoice:

1. outstanding = invoice.amount - sum(allocations)
2. allocation = min(payment, outstanding)
3. overpayment = payment - allocation, captured as an overpayment credit

Both writes happen in the caller's transaction, so a payment is never left
partly allocated with its remainder lost.
"""

from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..constants import CreditSourceType
from ..db.db_base import to_money
from ..db.db_credit_models import TenantCredit
from ..db.db_invoice_models import Invoice, Payment, PaymentAllocation
from ..exceptions import ErrorCode, ValidationError, not_found
from ..schemas.payment_schemas import AllocationResult
from ..utils.logger import ContextAwareLogger
from . import invoice_balance
from .base_service import SessionService
from .credit_ledger import CreditLedger

ZERO = Decimal("0.00")


class AllocationEngine(SessionService):
    """Waterfall allocation of payments to invoices."""

    def __init__(
        self,
        session: Session,
        credit_ledger: Optional[CreditLedger] = None,
        logger: Optional[ContextAwareLogger] = None,
    ):
        super().__init__(session, logger)
        self.credit_ledger = credit_ledger or CreditLedger(session, logger=self.logger)

    @contextmanager
    def serialized(self, invoice_id: Optional[str]) -> Iterator[None]:
        """
        Serialize writers for one invoice within this process.

        Callers hold it across their whole unit of work, through commit, so
        the row lock and the process lock cover the same span.
        """
        if not invoice_id:
            yield
            return
        with invoice_balance.serialized(invoice_id):
            yield

    def outstanding_amount(self, invoice_id: str) -> Decimal:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise not_found("Invoice", invoice_id=invoice_id)
        return invoice_balance.outstanding_for(self.session, invoice)

    @staticmethod
    def derive_invoice_status(invoice: Invoice, allocated: Decimal) -> Optional[str]:
        return invoice_balance.derive_invoice_status(invoice, allocated)

    def unallocated_amount(self, payment: Payment) -> Decimal:
        """
        Part of a payment not yet accounted for.

        Payment amount minus its allocations minus the overpayment credits it
        already produced.
        """
        allocated = (
            self.session.query(func.coalesce(func.sum(PaymentAllocation.amount), 0))
            .filter(PaymentAllocation.payment_id == payment.id)
            .scalar()
        )
        credited = (
            self.session.query(func.coalesce(func.sum(TenantCredit.amount), 0))
            .filter(
                TenantCredit.source_payment_id == payment.id,
                TenantCredit.source_type == CreditSourceType.OVERPAYMENT.value,
            )
            .scalar()
        )
        return max(to_money(payment.amount) - to_money(allocated) - to_money(credited), ZERO)

    def apply_to_invoice(self, payment: Payment, invoice_id: str, limit: Decimal) -> Decimal:
        """
        Allocate up to ``limit`` of a payment to one invoice without creating credit.

        Returns the amount actually allocated, possibly zero.
        """
        with invoice_balance.serialized(invoice_id):
            invoice = invoice_balance.lock_invoice(self.session, invoice_id)
            amount = min(to_money(limit), invoice_balance.outstanding_for(self.session, invoice))
            if amount <= 0:
                return ZERO
            self.session.add(
                PaymentAllocation(payment_id=payment.id, invoice_id=invoice.id, amount=amount)
            )
            invoice_balance.refresh_invoice_status(self.session, invoice)
            return amount

    def allocate(self, payment: Payment, invoice_id: Optional[str] = None) -> AllocationResult:
        """
        Run the waterfall for a payment.

        Args:
            payment: A persisted, completed payment
            invoice_id: Target invoice; defaults to the payment's own invoice

        Returns:
            AllocationResult where allocation_amount + overpayment_amount equals
            the part of the payment not previously accounted for

        Raises:
            ValidationError: If the payment amount is not positive
            NotFoundError: If the target invoice does not exist
        """
        if payment.amount is None or to_money(payment.amount) <= 0:
            raise ValidationError(
                "Payment amount must be positive",
                field="amount",
                error_code=ErrorCode.VALIDATION_FAILED,
                payment_id=payment.id,
            )

        target = invoice_id or payment.invoice_id
        if not target:
            self.logger.info(
                "Payment has no target invoice, left for reconciliation",
                extra={"payment_id": payment.id, "tenant_id": payment.tenant_id},
            )
            return AllocationResult(payment_id=payment.id, unallocated=True)

        with invoice_balance.serialized(target):
            invoice = invoice_balance.lock_invoice(self.session, target)
            available = self.unallocated_amount(payment)
            outstanding = invoice_balance.outstanding_for(self.session, invoice)

            allocation_amount = min(available, outstanding)
            overpayment_amount = available - allocation_amount

            allocation = None
            if allocation_amount > 0:
                allocation = PaymentAllocation(
                    payment_id=payment.id, invoice_id=invoice.id, amount=allocation_amount
                )
                self.session.add(allocation)

            credit = None
            if overpayment_amount > 0:
                credit = self.credit_ledger.create_credit(
                    tenant_id=payment.tenant_id,
                    landlord_id=payment.landlord_id,
                    amount=overpayment_amount,
                    source_type=CreditSourceType.OVERPAYMENT,
                    source_payment_id=payment.id,
                    description=f"Overpayment on invoice {invoice.invoice_number}",
                )

            status = invoice_balance.refresh_invoice_status(self.session, invoice)
            remaining = invoice_balance.outstanding_for(self.session, invoice)

        self.logger.info(
            "Payment allocated",
            extra={
                "payment_id": payment.id,
                "invoice_id": invoice.id,
                "allocation_amount": allocation_amount,
                "overpayment_amount": overpayment_amount,
                "invoice_status": status,
                "outstanding_amount": remaining,
            },
        )
        return AllocationResult(
            payment_id=payment.id,
            invoice_id=invoice.id,
            allocation_amount=allocation_amount,
            overpayment_amount=overpayment_amount,
            allocation_id=allocation.id if allocation is not None else None,
            credit_id=credit.id if credit is not None else None,
            invoice_status=status,
            outstanding_amount=remaining,
        )
