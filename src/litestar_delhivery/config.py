"""Delhivery integration configuration."""

from __future__ import annotations

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PRODUCTION_BASE_URL = "https://track.delhivery.com"
STAGING_BASE_URL = "https://staging-express.delhivery.com"

DEFAULT_NDR_CODE_PREFIXES = ["EOD", "ST-"]

DEFAULT_NDR_KEYWORDS = [
    "not available",
    "customer refused",
    "refused delivery",
    "incomplete address",
    "wrong address",
    "address incorrect",
    "not contactable",
    "phone not reachable",
    "no response",
    "shop closed",
    "office closed",
    "premise closed",
    "delivery failed",
    "undelivered",
    "could not deliver",
    "reattempt",
    "re-attempt",
    "reschedule",
    "consignee not available",
    "door locked",
    "nobody at home",
    "security denied",
    "gated community",
    "entry restricted",
    "cod not ready",
    "payment not ready",
    "cash not available",
]


class DelhiveryConfig(BaseSettings):
    """Runtime config for the Delhivery integration.

    Reads from environment variables with DELHIVERY_ prefix.
    """

    model_config = SettingsConfigDict(env_prefix="DELHIVERY_")

    # Credentials
    api_key: str = ""
    api_secret: str = ""
    webhook_secret: str = ""
    client_code: str = ""
    pickup_location: str = ""

    # Endpoint selection
    base_url: str = ""
    staging: bool = False

    # Transport
    timeout: float = 30.0
    read_timeout: float = 20.0
    max_retries: int = Field(default=3, ge=0)
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0

    # Business rules
    ewaybill_threshold: Decimal = Decimal("50000")
    serviceability_cache_seconds: int = 6 * 60 * 60
    check_serviceability: bool = True
    default_pickup_time: str = "16:00:00"
    shipping_mode: str = "Surface"
    ndr_code_prefixes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NDR_CODE_PREFIXES)
    )
    ndr_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NDR_KEYWORDS)
    )

    # Return address and seller details merged into manifests
    return_address: str = ""
    return_city: str = ""
    return_state: str = ""
    return_country: str = "India"
    return_pin: str = ""
    return_phone: str = ""
    seller_name: str = ""
    seller_address: str = ""

    # Webhook retry settings
    retry_max_attempts: int = 5
    retry_backoff_seconds: int = 60
    retry_enabled: bool = True

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and bool(self.pickup_location.strip())

    @property
    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        return STAGING_BASE_URL if self.staging else PRODUCTION_BASE_URL

    @property
    def signing_secret(self) -> str:
        """Secret used to validate webhook signatures ("" disables it)."""
        return self.webhook_secret or self.api_secret
