"""Utility modules for the payment gateway core."""

from .encryption_utils import decrypt_value, encrypt_value, generate_key, load_key
from .logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    CorrelationContextFilter,
    configure_logging,
    get_logger,
)
from .network_utils import extract_client_address, is_address_allowed
from .phone_utils import mask_phone, normalize_phone
from .queue_utils import send_message_to_queue_direct

__all__ = [
    # Encryption utilities
    "encrypt_value",
    "decrypt_value",
    "generate_key",
    "load_key",
    # Logging utilities
    "ContextAwareLogger",
    "CorrelationContextFilter",
    "AzureQueueHandler",
    "configure_logging",
    "get_logger",
    # Network / phone helpers
    "extract_client_address",
    "is_address_allowed",
    "normalize_phone",
    "mask_phone",
    # Queue utilities
    "send_message_to_queue_direct",
]
