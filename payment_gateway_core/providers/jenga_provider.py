"""
Jenga (Finserve / Equity) checkout adapter.

Every push request is signed with RSA-SHA256 over
``orderReference + currency + msisdn + amount``.
"""

import base64
from decimal import Decimal
from typing import Any, Dict, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..constants import DEFAULT_COUNTRY_CODE, DEFAULT_CURRENCY, Provider
from ..exceptions import ConfigError, ProviderRejectedError
from ..schemas.payment_schemas import ProviderInitiation
from ..utils.phone_utils import mask_phone
from .base_provider import ProviderAdapter, format_amount, generate_reference

STK_PUSH_PATH = "/api-checkout/mpesa-stk-push/v3.0/init"


def load_signing_key(pem: Optional[str]) -> rsa.RSAPrivateKey:
    """
    Parse a PEM RSA private key.

    Raises:
        ConfigError: If the key is missing, unparsable or not RSA
    """
    if not pem:
        raise ConfigError("Jenga signing key is not configured", provider=Provider.JENGA.value)
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigError(
            "Jenga signing key is malformed", provider=Provider.JENGA.value, cause=e
        ) from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigError("Jenga signing key must be an RSA key", provider=Provider.JENGA.value)
    return key


def sign_request(key: rsa.RSAPrivateKey, order_reference: str, phone: str, amount: str) -> str:
    data = f"{order_reference}{DEFAULT_CURRENCY}{phone}{amount}".encode("utf-8")
    signature = key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


class JengaAdapter(ProviderAdapter):
    provider = Provider.JENGA
    token_path = "/authentication/api/v3/authenticate/merchant"

    def _client_credentials(self, credentials: Dict[str, Any]) -> tuple:
        return credentials["api_key"], credentials["consumer_secret"]

    def initiate(
        self,
        credentials: Dict[str, Any],
        phone: str,
        amount: Decimal,
        invoice_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ProviderInitiation:
        # Resolve the key first so a bad key never costs a token round trip
        key = load_signing_key(credentials.get("signing_key") or self.config.private_key)

        order_reference = generate_reference("OR")
        payment_reference = generate_reference("PAY")
        bill_number = invoice_ref or order_reference
        amount_text = format_amount(amount)
        signature = sign_request(key, order_reference, phone, amount_text)

        token = self.get_access_token(credentials)

        payload = {
            "order": {
                "orderReference": order_reference,
                "orderAmount": amount_text,
                "orderCurrency": DEFAULT_CURRENCY,
                "source": "APICHECKOUT",
                "countryCode": DEFAULT_COUNTRY_CODE,
                "description": description or f"Payment for {bill_number}",
            },
            "customer": {
                "phoneNumber": phone,
            },
            "payment": {
                "paymentReference": payment_reference,
                "paymentCurrency": DEFAULT_CURRENCY,
                "channel": "MOBILE",
                "service": "MPESA",
                "provider": "JENGA",
                "callbackUrl": self.config.callback_url,
                "details": {"msisdn": phone, "paymentAmount": amount_text},
            },
        }

        self.logger.info(
            "Sending Jenga STK push",
            extra={
                "order_reference": order_reference,
                "payment_reference": payment_reference,
                "phone": mask_phone(phone),
            },
        )

        response = self._request(
            "POST",
            f"{self.base_url(credentials.get('environment'))}{STK_PUSH_PATH}",
            "STK push",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Signature": signature,
            },
            json=payload,
        )
        body = self._json(response)

        if not response.ok or body.get("status") is False:
            raise ProviderRejectedError(
                body.get("message") or "Jenga declined the STK push",
                provider=self.provider.value,
                provider_code=str(body.get("code") or response.status_code),
                http_status=response.status_code,
            )

        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        return ProviderInitiation(
            provider=self.provider,
            checkout_request_id=payment_reference,
            merchant_request_id=order_reference,
            provider_metadata={
                "order_reference": order_reference,
                "payment_reference": payment_reference,
                "bill_number": bill_number,
                "jenga_invoice_number": data.get("invoiceNumber"),
                "response_code": body.get("code"),
                "response_message": body.get("message"),
            },
        )
