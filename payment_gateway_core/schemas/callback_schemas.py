"""
Provider callback payloads as a tagged union.

Each provider's webhook body is parsed into one variant of ``CallbackVariant``
and then normalized into a provider-agnostic ``CallbackResult``. Nothing
downstream of the webhook guard sees a raw payload.
"""

from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..constants import Provider
from ..exceptions import ErrorCode, ValidationError
from ..utils.phone_utils import normalize_phone


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _to_phone(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    try:
        return normalize_phone(str(value))
    except ValidationError:
        return str(value)


class CallbackResult(BaseModel):
    """Provider-agnostic outcome of a push payment."""

    provider: Provider
    correlation_ids: List[str] = Field(..., min_length=1)
    success: bool
    result_code: str
    result_desc: Optional[str] = None
    amount: Optional[Decimal] = None
    receipt: Optional[str] = None
    phone: Optional[str] = None
    transaction_date: Optional[str] = None

    @property
    def correlation_id(self) -> str:
        return self.correlation_ids[0]


class _CallbackModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ==================== M-PESA / KCB STK ====================


class CallbackItem(_CallbackModel):
    Name: str
    Value: Any = None


class StkCallbackMetadata(_CallbackModel):
    Item: List[CallbackItem] = Field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {item.Name: item.Value for item in self.Item}


class StkCallback(_CallbackModel):
    MerchantRequestID: Optional[str] = None
    CheckoutRequestID: str = Field(..., min_length=1)
    ResultCode: Union[int, str]
    ResultDesc: Optional[str] = None
    CallbackMetadata: Optional[StkCallbackMetadata] = None


class StkCallbackBody(_CallbackModel):
    stkCallback: StkCallback


class _StkCallbackPayload(_CallbackModel):
    Body: StkCallbackBody

    def _stk_result(self, provider: Provider) -> CallbackResult:
        stk = self.Body.stkCallback
        metadata = stk.CallbackMetadata.as_dict() if stk.CallbackMetadata else {}
        success = str(stk.ResultCode) == "0"
        ids = [stk.CheckoutRequestID]
        if stk.MerchantRequestID:
            ids.append(stk.MerchantRequestID)
        return CallbackResult(
            provider=provider,
            correlation_ids=ids,
            success=success,
            result_code=str(stk.ResultCode),
            result_desc=stk.ResultDesc,
            amount=_to_decimal(metadata.get("Amount")) if success else None,
            receipt=metadata.get("MpesaReceiptNumber") if success else None,
            phone=_to_phone(metadata.get("PhoneNumber")) if success else None,
            transaction_date=(
                str(metadata["TransactionDate"]) if metadata.get("TransactionDate") else None
            ),
        )


class MpesaStkCallback(_StkCallbackPayload):
    variant: Literal["mpesa_stk"] = "mpesa_stk"

    def to_result(self) -> CallbackResult:
        return self._stk_result(Provider.MPESA)


class KcbStkCallback(_StkCallbackPayload):
    variant: Literal["kcb_stk"] = "kcb_stk"

    def to_result(self) -> CallbackResult:
        return self._stk_result(Provider.KCB)


# ==================== KCB C2B ====================


class KcbC2BCallback(_CallbackModel):
    """Customer-initiated paybill confirmation. Always a success notice."""

    variant: Literal["kcb_c2b"] = "kcb_c2b"
    TransID: str = Field(..., min_length=1)
    TransAmount: Union[Decimal, str, int, float]
    MSISDN: Optional[str] = None
    BillRefNumber: Optional[str] = None
    TransTime: Optional[str] = None

    def to_result(self) -> CallbackResult:
        ids = [self.TransID]
        if self.BillRefNumber:
            ids.append(self.BillRefNumber)
        return CallbackResult(
            provider=Provider.KCB,
            correlation_ids=ids,
            success=True,
            result_code="0",
            result_desc="C2B confirmation",
            amount=_to_decimal(self.TransAmount),
            receipt=self.TransID,
            phone=_to_phone(self.MSISDN),
            transaction_date=self.TransTime,
        )


# ==================== JENGA IPN ====================


class JengaCustomer(_CallbackModel):
    name: Optional[str] = None
    mobileNumber: Optional[str] = None
    reference: Optional[str] = None


class JengaTransaction(_CallbackModel):
    reference: str = Field(..., min_length=1)
    billNumber: Optional[str] = None
    orderReference: Optional[str] = None
    amount: Union[Decimal, str, int, float, None] = None
    status: str
    paymentMode: Optional[str] = None
    remarks: Optional[str] = None
    date: Optional[str] = None


class JengaBank(_CallbackModel):
    reference: Optional[str] = None
    transactionType: Optional[str] = None
    account: Optional[str] = None


class JengaIpnCallback(_CallbackModel):
    variant: Literal["jenga_ipn"] = "jenga_ipn"
    callbackType: str = Field(..., min_length=1)
    transaction: JengaTransaction
    customer: Optional[JengaCustomer] = None
    bank: Optional[JengaBank] = None

    def to_result(self) -> CallbackResult:
        txn = self.transaction
        success = txn.status.upper() == "SUCCESS"
        ids = [ref for ref in (txn.orderReference, txn.billNumber, txn.reference) if ref]
        # Preserve order, drop repeats
        ids = list(dict.fromkeys(ids))
        return CallbackResult(
            provider=Provider.JENGA,
            correlation_ids=ids,
            success=success,
            result_code="0" if success else txn.status,
            result_desc=txn.remarks or txn.status,
            amount=_to_decimal(txn.amount) if success else None,
            receipt=(self.bank.reference if self.bank and self.bank.reference else txn.reference)
            if success
            else None,
            phone=_to_phone(self.customer.mobileNumber) if self.customer else None,
            transaction_date=txn.date,
        )


CallbackVariant = Annotated[
    Union[MpesaStkCallback, KcbStkCallback, KcbC2BCallback, JengaIpnCallback],
    Field(discriminator="variant"),
]

_callback_adapter = TypeAdapter(CallbackVariant)


def detect_variant(provider: Provider, payload: Dict[str, Any]) -> Optional[str]:
    """Pick the variant tag for a raw payload, or None when the root fields are absent."""
    provider = Provider(provider)
    if not isinstance(payload, dict):
        return None
    if provider == Provider.MPESA and "Body" in payload:
        return "mpesa_stk"
    if provider == Provider.KCB:
        if "Body" in payload:
            return "kcb_stk"
        if "TransID" in payload:
            return "kcb_c2b"
    if provider == Provider.JENGA and "callbackType" in payload and "transaction" in payload:
        return "jenga_ipn"
    return None


def parse_callback(provider: Provider, payload: Dict[str, Any]) -> CallbackResult:
    """
    Parse a raw callback body into a CallbackResult.

    Raises:
        ValidationError: If the payload does not match the provider's structure
    """
    variant = detect_variant(provider, payload)
    if variant is None:
        raise ValidationError(
            "Callback is missing its root fields",
            error_code=ErrorCode.MISSING_REQUIRED,
            provider=Provider(provider).value,
        )
    try:
        parsed = _callback_adapter.validate_python({**payload, "variant": variant})
    except PydanticValidationError as e:
        raise ValidationError(
            "Callback structure is invalid",
            error_code=ErrorCode.INVALID_FORMAT,
            provider=Provider(provider).value,
            variant=variant,
            errors=[".".join(str(p) for p in err["loc"]) for err in e.errors()],
        ) from None
    return parsed.to_result()
