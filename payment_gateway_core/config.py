"""
Configuration for the payment gateway core.

The configuration is a plain Pydantic model built once at the edge (the
function app) and handed to the vault, the provider adapters and the
services through their constructors. Only ``AppConfig.from_env()`` touches
the process environment.
"""

import ipaddress
import os
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_AMOUNT_TOLERANCE,
    DEFAULT_CURRENCY,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_KCB_ORG_SHORTCODE,
    SAFARICOM_CALLBACK_NETWORKS,
    EnvironmentVariable,
    LogLevel,
    Provider,
    QueueName,
)


def _env_list(name: EnvironmentVariable, default: Optional[List[str]] = None) -> List[str]:
    """Read a comma separated environment variable into a list."""
    raw = os.getenv(name.value)
    if raw is None:
        return list(default or [])
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_flag(name: EnvironmentVariable, default: bool = False) -> bool:
    return os.getenv(name.value, str(default)).lower() == "true"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default=LogLevel.INFO.value, description="Logging level")

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class QueueConfig(BaseModel):
    """Azure Storage queue configuration."""

    connection_string: str = Field(default="", description="Azure Storage connection string")
    logs_queue_name: str = Field(default=QueueName.LOGS.value)
    audit_queue_name: str = Field(default=QueueName.AUDIT.value)
    notification_queue_name: str = Field(default=QueueName.NOTIFICATIONS.value)


class FeatureFlags(BaseModel):
    """Feature flags for optional outputs."""

    enable_logs_queue: bool = Field(default=False, description="Ship logs to the logs queue")
    enable_audit_queue: bool = Field(
        default=False, description="Mirror audit events to the audit queue"
    )
    enable_notifications: bool = Field(
        default=True, description="Dispatch payment notifications"
    )


class SecurityConfig(BaseModel):
    """Instance-wide secrets and callback trust settings."""

    encryption_key: Optional[str] = Field(
        default=None, description="AES-256 key, base64 encoded (32 raw bytes)"
    )
    trusted_proxy_hops: int = Field(
        default=1,
        ge=0,
        description="Reverse proxies in front of the callback endpoints that append to X-Forwarded-For",
    )


class ProviderConfig(BaseModel):
    """Settings shared by every provider adapter and callback endpoint."""

    callback_url: str = Field(default="", description="Public callback URL for this provider")
    allowed_networks: List[str] = Field(
        default_factory=list, description="CIDR ranges allowed to deliver callbacks"
    )
    http_timeout: float = Field(default=DEFAULT_HTTP_TIMEOUT_SECONDS, gt=0)

    @field_validator("allowed_networks")
    def validate_networks(cls, v: List[str]) -> List[str]:
        """Reject malformed CIDR ranges at load time."""
        for network in v:
            ipaddress.ip_network(network, strict=False)
        return v


class MpesaConfig(ProviderConfig):
    """M-Pesa (Daraja) settings."""

    allowed_networks: List[str] = Field(
        default_factory=lambda: list(SAFARICOM_CALLBACK_NETWORKS)
    )


class JengaConfig(ProviderConfig):
    """Jenga settings. The private key signs every push request."""

    private_key: Optional[str] = Field(default=None, description="PEM encoded RSA private key")


class KcbConfig(ProviderConfig):
    """KCB Buni settings."""

    org_shortcode: str = Field(default=DEFAULT_KCB_ORG_SHORTCODE)


class ReconciliationConfig(BaseModel):
    """Settlement matching rules."""

    amount_tolerance: Decimal = Field(default=DEFAULT_AMOUNT_TOLERANCE, ge=0)
    currency: str = Field(default=DEFAULT_CURRENCY)


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(default="development", description="Application environment")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    mpesa: MpesaConfig = Field(default_factory=MpesaConfig)
    jenga: JengaConfig = Field(default_factory=JengaConfig)
    kcb: KcbConfig = Field(default_factory=KcbConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)

    def provider(self, provider: Provider) -> ProviderConfig:
        """Get the settings block for a provider."""
        return {
            Provider.MPESA: self.mpesa,
            Provider.JENGA: self.jenga,
            Provider.KCB: self.kcb,
        }[Provider(provider)]

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        callback_base = os.getenv(EnvironmentVariable.CALLBACK_BASE_URL.value, "").rstrip("/")
        timeout = float(
            os.getenv(
                EnvironmentVariable.PROVIDER_HTTP_TIMEOUT.value, str(DEFAULT_HTTP_TIMEOUT_SECONDS)
            )
        )

        def callback(path: str) -> str:
            return f"{callback_base}/api/callbacks/{path}" if callback_base else ""

        return cls(
            environment=os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
            logging=LoggingConfig(
                level=os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value)
            ),
            queue=QueueConfig(
                connection_string=os.getenv(
                    EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""
                )
            ),
            features=FeatureFlags(
                enable_logs_queue=_env_flag(EnvironmentVariable.ENABLE_LOGS_QUEUE),
                enable_audit_queue=_env_flag(EnvironmentVariable.ENABLE_AUDIT_QUEUE),
                enable_notifications=_env_flag(EnvironmentVariable.ENABLE_NOTIFICATIONS, True),
            ),
            security=SecurityConfig(
                encryption_key=os.getenv(EnvironmentVariable.ENCRYPTION_KEY.value),
                trusted_proxy_hops=int(
                    os.getenv(EnvironmentVariable.TRUSTED_PROXY_HOPS.value, "1")
                ),
            ),
            mpesa=MpesaConfig(
                callback_url=callback("mpesa"),
                allowed_networks=_env_list(
                    EnvironmentVariable.MPESA_ALLOWED_NETWORKS, list(SAFARICOM_CALLBACK_NETWORKS)
                ),
                http_timeout=timeout,
            ),
            jenga=JengaConfig(
                callback_url=callback("jenga"),
                allowed_networks=_env_list(EnvironmentVariable.JENGA_ALLOWED_NETWORKS),
                http_timeout=timeout,
                private_key=os.getenv(EnvironmentVariable.JENGA_PRIVATE_KEY.value),
            ),
            kcb=KcbConfig(
                callback_url=callback("kcb"),
                allowed_networks=_env_list(EnvironmentVariable.KCB_ALLOWED_NETWORKS),
                http_timeout=timeout,
                org_shortcode=os.getenv(
                    EnvironmentVariable.KCB_ORG_SHORTCODE.value, DEFAULT_KCB_ORG_SHORTCODE
                ),
            ),
        )


# Process-wide instance, read only by the logging layer
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
