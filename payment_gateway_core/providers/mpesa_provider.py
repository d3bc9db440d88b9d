"""
Safaricom Daraja (M-Pesa Express) adapter.
"""

import base64
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from ..constants import Provider, ShortcodeType
from ..exceptions import ConfigError, ProviderRejectedError, ValidationError
from ..schemas.payment_schemas import ProviderInitiation
from ..utils.phone_utils import mask_phone
from .base_provider import ProviderAdapter

STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
TILL_SHORTCODE_TYPES = {ShortcodeType.TILL_SAFARICOM.value, ShortcodeType.TILL_KOPOKOPO.value}


def stk_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


class MpesaAdapter(ProviderAdapter):
    provider = Provider.MPESA
    token_path = "/oauth/v1/generate"
    token_method = "GET"

    def _client_credentials(self, credentials: Dict[str, Any]) -> tuple:
        return credentials["consumer_key"], credentials["consumer_secret"]

    def build_payload(
        self,
        credentials: Dict[str, Any],
        phone: str,
        amount: Decimal,
        invoice_ref: Optional[str],
        description: Optional[str],
        timestamp: str,
    ) -> Dict[str, Any]:
        """Assemble the processrequest body. Tills pay as buy-goods, everything else as paybill."""
        shortcode = credentials.get("shortcode")
        if not shortcode:
            raise ConfigError(
                "M-Pesa shortcode is not configured",
                provider=self.provider.value,
            )

        is_till = credentials.get("shortcode_type") in TILL_SHORTCODE_TYPES
        party_b = (credentials.get("till_number") or shortcode) if is_till else shortcode

        # Daraja only accepts whole shillings
        whole_amount = int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if whole_amount < 1:
            raise ValidationError(
                "M-Pesa amount rounds to less than one shilling",
                field="amount",
                value=str(amount),
            )

        return {
            "BusinessShortCode": shortcode,
            "Password": stk_password(shortcode, credentials["passkey"], timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerBuyGoodsOnline" if is_till else "CustomerPayBillOnline",
            "Amount": whole_amount,
            "PartyA": phone,
            "PartyB": party_b,
            "PhoneNumber": phone,
            "CallBackURL": self.config.callback_url,
            "AccountReference": f"INV-{invoice_ref}" if invoice_ref else "PAYMENT",
            "TransactionDesc": description or "Rent payment",
        }

    def initiate(
        self,
        credentials: Dict[str, Any],
        phone: str,
        amount: Decimal,
        invoice_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ProviderInitiation:
        timestamp = stk_timestamp()
        payload = self.build_payload(credentials, phone, amount, invoice_ref, description, timestamp)
        token = self.get_access_token(credentials)

        self.logger.info(
            "Sending M-Pesa STK push",
            extra={
                "phone": mask_phone(phone),
                "amount": payload["Amount"],
                "transaction_type": payload["TransactionType"],
            },
        )

        response = self._request(
            "POST",
            f"{self.base_url(credentials.get('environment'))}{STK_PUSH_PATH}",
            "STK push",
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            json=payload,
        )
        body = self._json(response)

        if (
            not response.ok
            or str(body.get("ResponseCode")) != "0"
            or not body.get("CheckoutRequestID")
        ):
            raise ProviderRejectedError(
                body.get("errorMessage")
                or body.get("ResponseDescription")
                or "M-Pesa declined the STK push",
                provider=self.provider.value,
                provider_code=str(body.get("ResponseCode") or body.get("errorCode") or response.status_code),
                http_status=response.status_code,
            )

        return ProviderInitiation(
            provider=self.provider,
            checkout_request_id=body["CheckoutRequestID"],
            merchant_request_id=body.get("MerchantRequestID"),
            submitted_amount=Decimal(payload["Amount"]),
            provider_metadata={
                "response_description": body.get("ResponseDescription"),
                "customer_message": body.get("CustomerMessage"),
                "transaction_type": payload["TransactionType"],
                "account_reference": payload["AccountReference"],
            },
        )
