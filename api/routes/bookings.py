"""
预订API路由 - FastAPI表现层
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_current_user_id, get_lifecycle_service
from application.dtos.bookings import BookingCreated, BookingRequest, BookingTransitionResult
from application.services.booking_service import BookingLifecycleService
from core.response import success_response, Response as ApiResponse

router = APIRouter(
    prefix="/bookings",
    tags=["Bookings"]
)


@router.post("", summary="预订座位", response_model=ApiResponse[BookingCreated])
async def request_booking(
    payload: BookingRequest,
    user_id: int = Depends(get_current_user_id),
    service: BookingLifecycleService = Depends(get_lifecycle_service),
):
    """
    乘客预订行程座位

    - **ride_id**: 行程ID
    - **seats**: 座位数（至少1个）
    - **payment_method_id**: Stripe 支付方式；提供时立即冻结票款（manual capture）
    - **customer_id**: Stripe 客户ID（可选）
    """
    created = await service.request_booking(user_id, payload)
    return success_response(data=created, message="Booking requested")


@router.post(
    "/{booking_id}/{action}",
    summary="执行预订动作",
    response_model=ApiResponse[BookingTransitionResult],
)
async def execute_booking_action(
    booking_id: int,
    action: str,
    user_id: int = Depends(get_current_user_id),
    service: BookingLifecycleService = Depends(get_lifecycle_service),
):
    """
    执行预订状态转换

    - **accept / reject / complete**: 仅司机
    - **cancel**: 乘客或司机；确认后取消按取消政策退款

    未知动作按非法状态转换处理（409）
    """
    result = await service.execute(booking_id, user_id, action)
    return success_response(data=result, message=f"Booking {result.status}")
