"""
Credit ledger for tenant overpayments and manual adjustments.

Credits are append-only: consuming one writes a CreditApplication plus the
matching PaymentAllocation and lowers ``balance``. ``amount`` is never
touched, so the original grant always remains visible.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, or_

from ..constants import CreditSourceType
from ..db.db_base import as_utc, to_money, utc_now
from ..db.db_credit_models import CreditApplication, TenantCredit
from ..db.db_invoice_models import PaymentAllocation
from ..exceptions import ErrorCode, ValidationError, not_found
from ..schemas.payment_schemas import CreditApplicationResult
from .base_service import SessionService
from .invoice_balance import lock_invoice, outstanding_for, refresh_invoice_status, serialized


class CreditLedger(SessionService):
    """Creates and consumes tenant credits."""

    def create_credit(
        self,
        tenant_id: str,
        landlord_id: Optional[str],
        amount: Decimal,
        source_type: CreditSourceType = CreditSourceType.OVERPAYMENT,
        source_payment_id: Optional[str] = None,
        description: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> TenantCredit:
        """
        Grant a credit with ``balance == amount``.

        Raises:
            ValidationError: If the amount is not positive
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError(
                "Credit amount must be positive", field="amount", value=str(amount)
            )

        credit = TenantCredit(
            tenant_id=tenant_id,
            landlord_id=landlord_id,
            source_payment_id=source_payment_id,
            amount=amount,
            balance=amount,
            source_type=CreditSourceType(source_type).value,
            description=description,
            expires_at=expires_at,
        )
        self.session.add(credit)
        self.session.flush()

        self.logger.info(
            "Tenant credit created",
            extra={
                "credit_id": credit.id,
                "tenant_id": tenant_id,
                "amount": amount,
                "source_type": credit.source_type,
                "source_payment_id": source_payment_id,
            },
        )
        return credit

    def _available_query(self, tenant_id: str):
        return self.session.query(TenantCredit).filter(
            TenantCredit.tenant_id == tenant_id,
            TenantCredit.balance > 0,
            or_(TenantCredit.expires_at.is_(None), TenantCredit.expires_at > utc_now()),
        )

    def list_available(self, tenant_id: str) -> List[TenantCredit]:
        """Unexpired credits with a positive balance, oldest first."""
        return self._available_query(tenant_id).order_by(TenantCredit.created_at).all()

    def get_balance(self, tenant_id: str) -> Decimal:
        total = (
            self._available_query(tenant_id)
            .with_entities(func.coalesce(func.sum(TenantCredit.balance), 0))
            .scalar()
        )
        return to_money(total)

    def apply_credit(
        self,
        credit_id: str,
        invoice_id: str,
        amount: Optional[Decimal] = None,
        applied_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CreditApplicationResult:
        """
        Consume a credit against an invoice.

        Applies ``min(requested, balance, outstanding)``; with no amount the
        whole balance is offered.

        Raises:
            NotFoundError: Unknown credit or invoice
            ValidationError: Credit belongs to another tenant, has expired,
                or there is nothing to apply
        """
        with serialized(invoice_id):
            credit = (
                self.session.query(TenantCredit)
                .filter(TenantCredit.id == credit_id)
                .with_for_update()
                .one_or_none()
            )
            if credit is None:
                raise not_found("TenantCredit", credit_id=credit_id)

            invoice = lock_invoice(self.session, invoice_id)
            if credit.tenant_id != invoice.tenant_id:
                raise ValidationError(
                    "Credit belongs to a different tenant",
                    field="credit_id",
                    error_code=ErrorCode.BUSINESS_RULE_VIOLATION,
                    credit_id=credit_id,
                    invoice_id=invoice_id,
                )
            if credit.expires_at is not None and as_utc(credit.expires_at) <= utc_now():
                raise ValidationError(
                    "Credit has expired",
                    field="credit_id",
                    error_code=ErrorCode.BUSINESS_RULE_VIOLATION,
                    credit_id=credit_id,
                )

            balance = to_money(credit.balance)
            outstanding = outstanding_for(self.session, invoice)
            requested = to_money(amount) if amount is not None else balance
            applied = min(requested, balance, outstanding)
            if applied <= 0:
                raise ValidationError(
                    "Nothing to apply",
                    field="amount",
                    error_code=ErrorCode.BUSINESS_RULE_VIOLATION,
                    balance=str(balance),
                    outstanding=str(outstanding),
                    requested=str(requested),
                )

            application = CreditApplication(
                credit_id=credit.id,
                invoice_id=invoice.id,
                amount=applied,
                applied_by=applied_by,
                notes=notes,
            )
            self.session.add(application)
            self.session.flush()

            self.session.add(
                PaymentAllocation(
                    payment_id=None,
                    invoice_id=invoice.id,
                    amount=applied,
                    credit_application_id=application.id,
                )
            )
            credit.balance = balance - applied
            status = refresh_invoice_status(self.session, invoice)

            remaining_outstanding = outstanding - applied
            self.logger.info(
                "Credit applied",
                extra={
                    "credit_id": credit.id,
                    "invoice_id": invoice.id,
                    "applied_amount": applied,
                    "remaining_credit": credit.balance,
                    "invoice_status": status,
                },
            )
            return CreditApplicationResult(
                credit_id=credit.id,
                invoice_id=invoice.id,
                applied_amount=applied,
                remaining_credit=to_money(credit.balance),
                remaining_outstanding=remaining_outstanding,
                invoice_status=status,
                application_id=application.id,
            )
