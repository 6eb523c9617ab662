"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway credentials can be resolved
once at startup and handed to the adapter explicitly.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    total: float = 30.0


class PaymentRetry(BaseModel):
    # 0 disables adapter-level retries; failed calls surface to the caller
    max: int = 0
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_version: str = "2023-10-16"


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="stripe", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    currency: str = Field(default="EUR", validation_alias="PAYMENT__CURRENCY")
    commission_percent: Decimal = Field(default=Decimal("15"), validation_alias="APP_COMMISSION_PERCENT")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    # after a driver transfer, also pay the connected balance out to the driver's bank
    payout_after_transfer: bool = Field(default=False, validation_alias="PAYMENT__PAYOUT_AFTER_TRANSFER")

    stripe: StripeSettings = Field(default_factory=StripeSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()


def get_commission_percent() -> Decimal:
    """Read APP_COMMISSION_PERCENT at calculation time (not cached)."""
    return PaymentSettings().commission_percent
