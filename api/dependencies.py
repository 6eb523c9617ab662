"""
API依赖项 - 认证与服务装配
"""
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from api.middleware import bind_user_id
from application.ports.payment_gateway import PaymentGateway
from application.services.booking_service import BookingLifecycleService
from application.services.payment_service import PaymentService
from application.services.webhook_service import PaymentWebhookService
from core.config import settings
from core.exceptions import TokenExpiredException, UnauthorizedException
from core.logging_config import get_logger
from infrastructure.tasks.utils.dispatcher import TaskDispatcher
from infrastructure.unit_of_work import uow_factory


logger = get_logger(__name__)

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """从Bearer token中提取token"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("未提供认证凭据")


async def get_current_user_id(token: str = Depends(get_token)) -> int:
    """
    解析访问令牌，返回当前用户ID

    令牌由上游身份服务签发，这里只校验签名与过期时间，subject 即用户ID。
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.PyJWTError as e:
        logger.warning("invalid_access_token", error=str(e))
        raise UnauthorizedException("无效的认证凭据")

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise UnauthorizedException("令牌缺少有效的用户标识")
    bind_user_id(user_id)
    return user_id


def get_payment_gateway(request: Request) -> PaymentGateway:
    """启动时构建的网关实例（app.state.payment_gateway）"""
    return request.app.state.payment_gateway


async def get_payment_service(gateway: PaymentGateway = Depends(get_payment_gateway)) -> PaymentService:
    return PaymentService(gateway=gateway)


async def get_lifecycle_service(
    payments: PaymentService = Depends(get_payment_service),
) -> BookingLifecycleService:
    return BookingLifecycleService(
        uow_factory=uow_factory,
        payments=payments,
        payout_scheduler=TaskDispatcher().schedule_driver_transfer,
    )


async def get_webhook_service(
    payments: PaymentService = Depends(get_payment_service),
) -> PaymentWebhookService:
    return PaymentWebhookService(uow_factory=uow_factory, payments=payments)
