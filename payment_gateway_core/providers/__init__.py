"""Push-payment provider adapters."""

from typing import Dict, Type

from ..config import AppConfig
from ..constants import Provider
from .base_provider import ProviderAdapter, basic_auth_header, format_amount, generate_reference
from .jenga_provider import JengaAdapter
from .kcb_provider import KcbAdapter
from .mpesa_provider import MpesaAdapter

ADAPTERS: Dict[Provider, Type[ProviderAdapter]] = {
    Provider.MPESA: MpesaAdapter,
    Provider.JENGA: JengaAdapter,
    Provider.KCB: KcbAdapter,
}


def get_adapter(provider: Provider, config: AppConfig) -> ProviderAdapter:
    """Build the adapter for a provider with its slice of the app configuration."""
    provider = Provider(provider)
    return ADAPTERS[provider](config.provider(provider))


__all__ = [
    "ADAPTERS",
    "JengaAdapter",
    "KcbAdapter",
    "MpesaAdapter",
    "ProviderAdapter",
    "basic_auth_header",
    "format_amount",
    "generate_reference",
    "get_adapter",
]
