"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Any, Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class InvalidAmount(BusinessException):
    def __init__(self, value: Any, *, field: str = "amount", reason: str | None = None):
        super().__init__(
            code=BusinessCode.INVALID_AMOUNT,
            message=reason or f"Invalid monetary amount: {value!r}",
            error_type="InvalidAmount",
            details={"value": str(value)},
            field=field,
        )


class InvalidStateTransition(BusinessException):
    def __init__(self, booking_id: Optional[int], current: str, action: str, *, reason: str | None = None):
        details = {"booking_id": booking_id, "current_status": current, "action": action}
        super().__init__(
            code=BusinessCode.INVALID_STATE_TRANSITION,
            message=reason or f"Cannot {action} a booking in status '{current}'",
            error_type="InvalidStateTransition",
            details=details,
            field="status",
        )


class ConcurrentModification(BusinessException):
    """Optimistic version check failed: the row changed since it was read."""

    def __init__(self, entity: str, entity_id: Optional[int], expected_version: int):
        super().__init__(
            code=BusinessCode.INVALID_STATE_TRANSITION,
            message=f"{entity} {entity_id} was modified concurrently",
            error_type="ConcurrentModification",
            details={"entity": entity, "id": entity_id, "expected_version": expected_version},
        )


class BookingNotFound(BusinessException):
    def __init__(self, booking_id: int):
        super().__init__(
            code=BusinessCode.BOOKING_NOT_FOUND,
            message="Booking not found",
            error_type="BookingNotFound",
            details={"booking_id": booking_id},
        )


class RideNotFound(BusinessException):
    def __init__(self, ride_id: int):
        super().__init__(
            code=BusinessCode.RIDE_NOT_FOUND,
            message="Ride not found",
            error_type="RideNotFound",
            details={"ride_id": ride_id},
        )


class BookingPermissionDenied(BusinessException):
    def __init__(self, actor_user_id: int, action: str):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=f"User is not allowed to {action} this booking",
            error_type="BookingPermissionDenied",
            details={"actor_user_id": actor_user_id, "action": action},
        )


class RideUnavailable(BusinessException):
    def __init__(self, ride_id: int, reason: str = "Ride is no longer available"):
        super().__init__(
            code=BusinessCode.RIDE_UNAVAILABLE,
            message=reason,
            error_type="RideUnavailable",
            details={"ride_id": ride_id},
        )


class InsufficientSeats(BusinessException):
    def __init__(self, ride_id: int, requested: int, available: int):
        super().__init__(
            code=BusinessCode.INSUFFICIENT_SEATS,
            message=f"Not enough seats available. Only {available} seats left.",
            error_type="InsufficientSeats",
            details={"ride_id": ride_id, "requested": requested, "available": available},
            field="seats",
        )


class DuplicateBooking(BusinessException):
    def __init__(self, ride_id: int, passenger_id: int):
        super().__init__(
            code=BusinessCode.DUPLICATE_BOOKING,
            message="You already have a booking for this ride",
            error_type="DuplicateBooking",
            details={"ride_id": ride_id, "passenger_id": passenger_id},
        )


class GatewayError(BusinessException):
    """Payment processor rejected or failed a call; carries its code/message verbatim."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        operation: str | None = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code, "operation": operation}
        if details:
            full_details.update(details)
        self.provider = provider
        self.provider_code = provider_code
        self.operation = operation
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="GatewayError",
            details=full_details,
        )


class GatewayNotConfigured(BusinessException):
    def __init__(self, provider: str, message: str | None = None):
        super().__init__(
            code=PaymentCode.NOT_CONFIGURED,
            message=message or f"{provider} is not configured",
            error_type="GatewayNotConfigured",
            details={"provider": provider},
        )


class WebhookSignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="WebhookSignatureError",
            details={"provider": provider},
        )
