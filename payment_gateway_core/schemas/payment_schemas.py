"""
Result and message schemas for the payment flows.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..constants import DEFAULT_CURRENCY, Provider


class ProviderInitiation(BaseModel):
    """What a provider adapter hands back after a push request is accepted."""

    provider: Provider
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    # Amount actually submitted, when the provider cannot take the exact figure
    submitted_amount: Optional[Decimal] = None
    provider_metadata: Dict[str, Any] = Field(default_factory=dict)


class InitiationResult(BaseModel):
    """Returned to the UI after a pending transaction has been recorded."""

    transaction_id: str
    provider: Provider
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    phone_number: str
    amount: Decimal
    currency: str = DEFAULT_CURRENCY
    status: str
    message: str = "Payment request sent. Check your phone to complete the payment."
    provider_metadata: Dict[str, Any] = Field(default_factory=dict)


class AllocationResult(BaseModel):
    """Outcome of one waterfall allocation."""

    payment_id: str
    invoice_id: Optional[str] = None
    allocation_amount: Decimal = Decimal("0.00")
    overpayment_amount: Decimal = Decimal("0.00")
    allocation_id: Optional[str] = None
    credit_id: Optional[str] = None
    invoice_status: Optional[str] = None
    outstanding_amount: Optional[Decimal] = None
    unallocated: bool = False


class CreditApplicationResult(BaseModel):
    credit_id: str
    invoice_id: str
    applied_amount: Decimal
    remaining_credit: Decimal
    remaining_outstanding: Decimal
    invoice_status: str
    application_id: Optional[str] = None


class ReconciliationResult(BaseModel):
    """Summary of one tenant sweep."""

    tenant_id: str
    payments_allocated: int = 0
    payment_amount_allocated: Decimal = Decimal("0.00")
    credits_created: int = 0
    credit_amount_created: Decimal = Decimal("0.00")
    credits_applied: int = 0
    credit_amount_applied: Decimal = Decimal("0.00")

    @property
    def changed(self) -> bool:
        return bool(self.payments_allocated or self.credits_created or self.credits_applied)


class CallbackResponse(BaseModel):
    """HTTP answer for a provider callback."""

    status_code: int = 200
    body: Dict[str, Any] = Field(default_factory=lambda: {"ResultCode": 0, "ResultDesc": "Accepted"})
    outcome: str = "accepted"


class PaymentNotification(BaseModel):
    """Message placed on the notification queue after a completed payment."""

    event: str = "payment_completed"
    payment_id: str
    tenant_id: str
    landlord_id: Optional[str] = None
    invoice_id: Optional[str] = None
    amount: Decimal
    currency: str = DEFAULT_CURRENCY
    receipt: Optional[str] = None
    phone_number: Optional[str] = None
    provider: Provider
    invoice_status: Optional[str] = None
    credit_amount: Decimal = Decimal("0.00")
