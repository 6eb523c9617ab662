"""
Base payment client implementing shared concerns: retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"
    # transport-level errors that may be retried with the same idempotency key
    retryable: tuple[type[BaseException], ...] = ()

    def __init__(self, *, retry: Optional[dict[str, Any]] = None) -> None:
        self._retry_cfg = retry or {"max": 0, "base": 0.2}

    async def _retry(self, fn: Callable[[], Awaitable[Any]]):
        if not self.retryable or int(self._retry_cfg["max"]) <= 0:
            return await fn()
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(self.retryable),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def aclose(self) -> None:
        """Nothing pooled by default."""

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    @staticmethod
    def _from_minor(amount_minor: Optional[int]) -> Optional[Decimal]:
        if amount_minor is None:
            return None
        return Decimal(int(amount_minor)) / Decimal(100)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
