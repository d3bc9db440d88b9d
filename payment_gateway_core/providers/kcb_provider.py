"""
KCB Buni STK push adapter.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from ..constants import Provider
from ..exceptions import ConfigError, ProviderRejectedError
from ..schemas.payment_schemas import ProviderInitiation
from ..utils.phone_utils import mask_phone
from .base_provider import ProviderAdapter, format_amount, generate_reference

STK_PUSH_PATH = "/mm/api/request/1.0.0/stkpush"


class KcbAdapter(ProviderAdapter):
    provider = Provider.KCB
    token_path = "/token"

    def _client_credentials(self, credentials: Dict[str, Any]) -> tuple:
        return credentials["consumer_key"], credentials["consumer_secret"]

    def initiate(
        self,
        credentials: Dict[str, Any],
        phone: str,
        amount: Decimal,
        invoice_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ProviderInitiation:
        till_number = credentials.get("till_number") or credentials.get("shortcode")
        if not till_number:
            raise ConfigError("KCB till number is not configured", provider=self.provider.value)

        merchant_request_id = generate_reference("KCB")
        bill_number = invoice_ref or merchant_request_id
        token = self.get_access_token(credentials)

        payload = {
            "phoneNumber": phone,
            "amount": format_amount(amount),
            # Shared paybill: the till number prefixes the account reference
            "invoiceNumber": f"{till_number}-{bill_number}",
            "sharedShortCode": True,
            "orgShortCode": self.config.org_shortcode,
            "callbackUrl": self.config.callback_url,
            "transactionDescription": description or f"Rent payment - {bill_number}",
        }

        self.logger.info(
            "Sending KCB STK push",
            extra={
                "merchant_request_id": merchant_request_id,
                "invoice_number": payload["invoiceNumber"],
                "phone": mask_phone(phone),
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

        if not response.ok:
            raise ProviderRejectedError(
                body.get("message") or body.get("error") or "KCB declined the STK push",
                provider=self.provider.value,
                provider_code=str(body.get("ResponseCode") or response.status_code),
                http_status=response.status_code,
            )

        checkout_request_id = (
            body.get("CheckoutRequestID") or body.get("checkoutRequestID") or merchant_request_id
        )
        return ProviderInitiation(
            provider=self.provider,
            checkout_request_id=checkout_request_id,
            merchant_request_id=merchant_request_id,
            provider_metadata={
                "invoice_number": payload["invoiceNumber"],
                "response_code": body.get("ResponseCode", "0"),
                "response_description": body.get("ResponseDescription", "Request accepted"),
            },
        )
