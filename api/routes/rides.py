"""
行程API路由
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_current_user_id, get_lifecycle_service
from application.dtos.bookings import RideCancellationResult, RideCompletionResult
from application.services.booking_service import BookingLifecycleService
from core.response import success_response, Response as ApiResponse

router = APIRouter(
    prefix="/rides",
    tags=["Rides"]
)


@router.post("/{ride_id}/complete", summary="完成行程", response_model=ApiResponse[RideCompletionResult])
async def complete_ride(
    ride_id: int,
    user_id: int = Depends(get_current_user_id),
    service: BookingLifecycleService = Depends(get_lifecycle_service),
):
    """司机完成行程：逐笔扣款所有已确认的预订，返回成功与失败明细"""
    result = await service.complete_ride(ride_id, user_id)
    return success_response(data=result, message="Ride completed")


@router.post("/{ride_id}/cancel", summary="取消行程", response_model=ApiResponse[RideCancellationResult])
async def cancel_ride(
    ride_id: int,
    user_id: int = Depends(get_current_user_id),
    service: BookingLifecycleService = Depends(get_lifecycle_service),
):
    """司机取消行程：行程下架，待处理与已确认的预订逐个取消（释放冻结或按罚金规则退款）"""
    result = await service.cancel_ride(ride_id, user_id)
    return success_response(data=result, message="Ride cancelled")
