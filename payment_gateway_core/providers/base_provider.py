"""
Base class for push-payment provider adapters.

An adapter is stateless apart from its configuration: credentials arrive per
call from the vault and are dropped when the call returns, so one adapter
instance is safe to share between concurrent initiations.
"""

import base64
import random
import string
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from ..config import ProviderConfig
from ..constants import PROVIDER_BASE_URLS, Provider, ProviderEnvironment
from ..exceptions import ErrorCode, ProviderAuthError, ProviderError, ProviderTimeoutError
from ..schemas.payment_schemas import ProviderInitiation
from ..utils.logger import get_logger


def format_amount(amount: Decimal) -> str:
    """Render an amount the way the providers expect it: no trailing zeros."""
    amount = Decimal(amount)
    if amount == amount.to_integral_value():
        return str(int(amount))
    return format(amount.normalize(), "f")


def generate_reference(prefix: str) -> str:
    """Locally generated correlation id: prefix, epoch millis, five random characters."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"{prefix}{int(time.time() * 1000)}{suffix}"


def basic_auth_header(key: str, secret: str) -> str:
    encoded = base64.b64encode(f"{key}:{secret}".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


class ProviderAdapter(ABC):
    """
    Common contract for M-Pesa, Jenga and KCB.

    Subclasses describe their token endpoint and build the push payload; the
    HTTP plumbing, timeouts and error mapping live here.
    """

    provider: Provider
    token_path: str
    token_method: str = "POST"

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.logger = get_logger()

    def base_url(self, environment: Optional[str]) -> str:
        """Resolve the API host for a credential's environment."""
        return PROVIDER_BASE_URLS[self.provider][
            ProviderEnvironment.normalize(environment or "")
        ]

    def _request(self, method: str, url: str, operation: str, **kwargs) -> requests.Response:
        """
        Issue one HTTP call with the configured timeout.

        Raises:
            ProviderTimeoutError: On timeout or when the host is unreachable
            ProviderError: For any other transport failure
        """
        try:
            return requests.request(method, url, timeout=self.config.http_timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise ProviderTimeoutError(
                f"{self.provider.value} {operation} did not complete in time",
                provider=self.provider.value,
                operation=operation,
                timeout=self.config.http_timeout,
                cause=e,
            ) from e
        except requests.RequestException as e:
            raise ProviderError(
                f"{self.provider.value} {operation} request failed",
                provider=self.provider.value,
                error_code=ErrorCode.CONNECTION_ERROR,
                operation=operation,
                cause=e,
            ) from e

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @abstractmethod
    def _client_credentials(self, credentials: Dict[str, Any]) -> tuple:
        """Return the (key, secret) pair used for the token request."""

    def get_access_token(self, credentials: Dict[str, Any]) -> str:
        """
        Exchange the stored key and secret for a short-lived bearer token.

        Raises:
            ProviderAuthError: Non-2xx answer or no token in the body
            ProviderTimeoutError: The token endpoint did not answer in time
        """
        key, secret = self._client_credentials(credentials)
        url = f"{self.base_url(credentials.get('environment'))}{self.token_path}"
        grant = {"grant_type": "client_credentials"}
        # Daraja takes the grant on the query string, everyone else as a form body
        body_kwargs = {"params": grant} if self.token_method == "GET" else {"data": grant}

        response = self._request(
            self.token_method,
            url,
            "token request",
            headers={
                "Authorization": basic_auth_header(key, secret),
                "Content-Type": "application/x-www-form-urlencoded",
            },
            **body_kwargs,
        )

        if not response.ok:
            raise ProviderAuthError(
                f"{self.provider.value} rejected the token request",
                provider=self.provider.value,
                http_status=response.status_code,
            )

        body = self._json(response)
        token = body.get("access_token") or body.get("accessToken")
        if not token:
            raise ProviderAuthError(
                f"{self.provider.value} token response carried no access token",
                provider=self.provider.value,
            )
        return token

    @abstractmethod
    def initiate(
        self,
        credentials: Dict[str, Any],
        phone: str,
        amount: Decimal,
        invoice_ref: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ProviderInitiation:
        """
        Submit a push-payment request.

        Args:
            credentials: Plaintext configuration from the vault
            phone: Canonical phone number
            amount: Amount in KES
            invoice_ref: Invoice number shown to the payer
            description: Free text shown on the handset prompt

        Returns:
            The correlation identifiers issued for this request
        """
