"""
预订生命周期应用服务（application/services）

编排预订状态机、座位库存与支付网关：

1. 在事务内校验状态与操作者，按版本号认领预订并写入 pending 意图
2. 事务提交后调用网关（携带幂等键）
3. 网关成功后在新事务内落库状态变更并标记意图成功；
   网关失败时仅标记意图失败，预订与支付保持原状态，异常继续抛出

不需要网关调用的转换（接受预订、无支付的取消等）在单个事务内完成。
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import anyio

from application.dtos.bookings import (
    BookingCreated,
    BookingRequest,
    BookingTransitionResult,
    PaymentView,
    RefundView,
    RideBookingOutcome,
    RideCancellationResult,
    RideCompletionResult,
)
from application.dtos.payments import GatewayIntent, GatewayRefund
from application.services.payment_service import (
    PaymentService,
    booking_idempotency_key,
    payout_idempotency_key,
)
from core.config import settings
from core.logging_config import get_logger
from core.settings import get_commission_percent, payment_settings
from domain.booking import (
    HOLD_ACTION,
    Booking,
    BookingAction,
    BookingStatus,
    GatewayOperation,
    TransitionIntent,
)
from domain.common.clock import utcnow
from domain.common.exceptions import (
    BookingNotFound,
    BookingPermissionDenied,
    BusinessException,
    ConcurrentModification,
    DomainValidationException,
    DuplicateBooking,
    GatewayError,
    GatewayNotConfigured,
    InsufficientSeats,
    InvalidStateTransition,
    RideNotFound,
    RideUnavailable,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment, PaymentStatus
from domain.pricing import RefundBreakdown, calculate_commission, calculate_refund, cancellation_penalty
from domain.ride.entity import Ride


logger = get_logger(__name__)

GatewayOutcome = Union[GatewayIntent, GatewayRefund]

DRIVER_ACTIONS = frozenset({BookingAction.ACCEPT, BookingAction.REJECT, BookingAction.COMPLETE})

# 网关成功后落库遇到版本冲突（例如同一行程上另一笔预订同时被接受）时的重试次数
FINALIZE_ATTEMPTS = 3


def payment_view(payment: Optional[Payment]) -> Optional[PaymentView]:
    if payment is None:
        return None
    return PaymentView(
        id=payment.id,
        status=payment.status.value,
        amount=payment.amount,
        platform_fee=payment.platform_fee,
        driver_amount=payment.driver_amount,
        currency=payment.currency,
        payment_intent_id=payment.payment_intent_id,
        transfer_id=payment.transfer_id,
        refund_id=payment.refund_id,
        refunded_amount=payment.refunded_amount,
        failure_reason=payment.failure_reason,
    )


def _refund_view(breakdown: RefundBreakdown, refund_id: Optional[str] = None, error: Optional[str] = None) -> RefundView:
    return RefundView(
        original_amount=breakdown.original_amount,
        cancellation_penalty_percent=breakdown.cancellation_penalty_percent,
        cancellation_penalty_amount=breakdown.cancellation_penalty_amount,
        refund_amount=breakdown.refund_amount,
        refund_id=refund_id,
        error=error,
    )


class BookingLifecycleService:
    """预订生命周期编排"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        payments: PaymentService,
        *,
        payout_scheduler: Optional[Callable[[int], Any]] = None,
        payout_dispatcher: Optional[Callable[[str, str, str], Any]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._payments = payments
        # 司机未绑定 destination 时，扣款后由后台任务单独转账
        self._payout_scheduler = payout_scheduler
        # 转账成功后把司机 Connect 余额提现到银行卡（可选）
        self._payout_dispatcher = payout_dispatcher
        self._clock = clock

    # ------------------------------------------------------------------
    # Booking request
    # ------------------------------------------------------------------
    async def request_booking(self, passenger_id: int, req: BookingRequest) -> BookingCreated:
        """乘客预订座位；有支付方式时按全额做 manual capture 授权冻结"""
        async with self._uow_factory() as uow:
            ride = await uow.ride_repository.get_by_id(req.ride_id)
            if ride is None:
                raise RideNotFound(req.ride_id)
            if not ride.is_bookable():
                raise RideUnavailable(ride.id, "Ride is not available for booking")
            if ride.driver_id == passenger_id:
                raise DomainValidationException("You cannot book your own ride", field="ride_id")
            if req.seats > settings.booking.max_seats_per_booking:
                raise DomainValidationException(
                    f"At most {settings.booking.max_seats_per_booking} seats per booking",
                    field="seats",
                )
            if req.seats > ride.available_seats:
                raise InsufficientSeats(ride.id, req.seats, ride.available_seats)
            if await uow.booking_repository.find_active_for_passenger(ride.id, passenger_id):
                raise DuplicateBooking(ride.id, passenger_id)

            booking = await uow.booking_repository.create(
                Booking(
                    id=None,
                    ride_id=ride.id,
                    passenger_id=passenger_id,
                    seats=req.seats,
                    notes=req.notes,
                )
            )
            total = ride.total_price(req.seats)
            logger.info(
                "booking_requested",
                booking_id=booking.id,
                ride_id=ride.id,
                passenger_id=passenger_id,
                seats=req.seats,
                total_price=str(total),
            )

            if not req.payment_method_id:
                return BookingCreated(
                    booking_id=booking.id,
                    ride_id=ride.id,
                    status=booking.status.value,
                    seats=booking.seats,
                    total_price=total,
                    payment_status="no_payment_method",
                )

            breakdown = calculate_commission(total, get_commission_percent())
            payment = await uow.payment_repository.create(
                Payment.from_breakdown(
                    breakdown,
                    booking_id=booking.id,
                    passenger_id=passenger_id,
                    driver_id=ride.driver_id,
                    currency=payment_settings.currency,
                    destination_account_id=ride.driver_payout_account,
                )
            )
            intent = await uow.intent_repository.create(
                TransitionIntent(
                    id=None,
                    booking_id=booking.id,
                    action=HOLD_ACTION,
                    operation=GatewayOperation.HOLD,
                    idempotency_key=booking_idempotency_key(booking.id, HOLD_ACTION),
                    payment_id=payment.id,
                    details={
                        "payment_method_id": req.payment_method_id,
                        "customer_id": req.customer_id,
                    },
                )
            )

        try:
            outcome = await self.call_gateway(intent, payment)
        except (GatewayError, GatewayNotConfigured) as exc:
            await self.abandon_intent(intent.id, exc.message)
            raise

        await self.resolve_intent(intent.id, outcome)
        async with self._uow_factory(readonly=True) as uow:
            booking = await uow.booking_repository.get_by_id(booking.id)
            payment = await uow.payment_repository.get_by_id(payment.id)
        return BookingCreated(
            booking_id=booking.id,
            ride_id=booking.ride_id,
            status=booking.status.value,
            seats=booking.seats,
            total_price=total,
            payment_status=payment.status.value,
            payment=payment_view(payment),
        )

    # ------------------------------------------------------------------
    # State machine entry point
    # ------------------------------------------------------------------
    async def execute(
        self,
        booking_id: int,
        actor_user_id: int,
        action: Union[BookingAction, str],
    ) -> BookingTransitionResult:
        """执行预订动作（accept / reject / cancel / complete）

        非法转换与越权操作在任何网关调用之前抛出。
        """
        try:
            result, intent, payment = await self._claim(booking_id, actor_user_id, action)
        except ConcurrentModification as exc:
            raise InvalidStateTransition(
                booking_id,
                "stale",
                str(getattr(action, "value", action)),
                reason="Booking was modified concurrently, reload and retry",
            ) from exc
        if result is not None:
            return result

        try:
            outcome = await self.call_gateway(intent, payment)
        except (GatewayError, GatewayNotConfigured) as exc:
            await self.abandon_intent(intent.id, exc.message)
            raise

        return await self.resolve_intent(intent.id, outcome)

    async def _claim(self, booking_id: int, actor_user_id: int, action: Union[BookingAction, str]):
        async with self._uow_factory() as uow:
            booking = await uow.booking_repository.get_by_id(booking_id)
            if booking is None:
                raise BookingNotFound(booking_id)
            ride = await uow.ride_repository.get_by_id(booking.ride_id)
            if ride is None:
                raise RideNotFound(booking.ride_id)

            action = self._parse_action(booking, action)
            self._check_actor(booking, ride, actor_user_id, action)
            booking.next_status(action)

            pending = await uow.intent_repository.get_pending_for_booking(booking.id)
            if pending is not None:
                raise InvalidStateTransition(
                    booking.id,
                    booking.status.value,
                    action.value,
                    reason=f"Another '{pending.action}' is still in progress for this booking",
                )

            payment = await uow.payment_repository.get_active_for_booking(booking.id)
            if action in (BookingAction.ACCEPT, BookingAction.COMPLETE):
                await self._require_hold(uow, booking, payment, action)
            plan = self._plan(booking, ride, payment, action)
            if plan is None:
                previous, refund = self._apply(booking, ride, payment, action)
                await self._persist(uow, booking, ride, payment)
                self._log_applied(booking, action)
                return self._result(booking, ride, payment, refund, previous=previous), None, None

            # 认领：版本号 +1，并发请求在此处失败
            await uow.booking_repository.update(booking)
            operation, details = plan
            intent = await uow.intent_repository.create(
                TransitionIntent(
                    id=None,
                    booking_id=booking.id,
                    action=action.value,
                    operation=operation,
                    idempotency_key=booking_idempotency_key(booking.id, action.value),
                    payment_id=payment.id,
                    payment_intent_id=payment.payment_intent_id,
                    details=details,
                )
            )
            logger.info(
                "booking_transition_claimed",
                booking_id=booking.id,
                action=action.value,
                operation=operation.value,
                intent_id=intent.id,
            )
            return None, intent, payment

    @staticmethod
    def _parse_action(booking: Booking, action: Union[BookingAction, str]) -> BookingAction:
        try:
            return BookingAction(action)
        except ValueError:
            raise InvalidStateTransition(booking.id, booking.status.value, str(action))

    @staticmethod
    def _check_actor(booking: Booking, ride: Ride, actor_user_id: int, action: BookingAction) -> None:
        if action in DRIVER_ACTIONS:
            allowed = actor_user_id == ride.driver_id
        else:
            allowed = actor_user_id in (booking.passenger_id, ride.driver_id)
        if not allowed:
            raise BookingPermissionDenied(actor_user_id, action.value)

    @staticmethod
    async def _require_hold(
        uow: AbstractUnitOfWork,
        booking: Booking,
        payment: Optional[Payment],
        action: BookingAction,
    ) -> None:
        """接受与完成要求支付已授权冻结；从未发起支付的预订不受限制"""
        if payment is None:
            latest = await uow.payment_repository.get_latest_for_booking(booking.id)
            if latest is None:
                return
            status = latest.status
        elif payment.status != PaymentStatus.PENDING:
            return
        else:
            status = payment.status
        raise InvalidStateTransition(
            booking.id,
            booking.status.value,
            action.value,
            reason=f"Payment hold is not authorized (payment is {status.value})",
        )

    def _penalty_breakdown(self, ride: Ride, payment: Payment) -> RefundBreakdown:
        penalty = cancellation_penalty(
            ride.departure_time,
            self._clock(),
            free_hours=settings.booking.cancellation_free_hours,
            late_penalty=Decimal(settings.booking.late_cancellation_penalty),
        )
        return calculate_refund(payment.amount, penalty)

    def _plan(
        self,
        booking: Booking,
        ride: Ride,
        payment: Optional[Payment],
        action: BookingAction,
    ) -> Optional[tuple[GatewayOperation, dict]]:
        """决定本次转换需要的网关调用；返回 None 表示无需调用网关"""
        if payment is None or not payment.payment_intent_id:
            return None
        if action == BookingAction.ACCEPT:
            return None
        if action == BookingAction.COMPLETE:
            if payment.status == PaymentStatus.AUTHORIZED:
                return GatewayOperation.CAPTURE, {}
            return None
        if (
            action == BookingAction.CANCEL
            and booking.status == BookingStatus.CONFIRMED
            and payment.status in (PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED)
        ):
            breakdown = self._penalty_breakdown(ride, payment)
            details = {
                "penalty": str(breakdown.cancellation_penalty_percent),
                "refund_amount": str(breakdown.refund_amount),
            }
            if payment.status == PaymentStatus.CAPTURED:
                return (GatewayOperation.REFUND, details) if breakdown.refund_amount > 0 else None
            # 未扣款的冻结：无罚金直接释放；有罚金先扣款再退还其余部分
            if breakdown.cancellation_penalty_amount <= 0:
                return GatewayOperation.VOID, details
            return GatewayOperation.SETTLE, details
        if payment.status in (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED):
            return GatewayOperation.VOID, {}
        return None

    # ------------------------------------------------------------------
    # Gateway call + intent resolution (shared with reconciliation)
    # ------------------------------------------------------------------
    async def call_gateway(self, intent: TransitionIntent, payment: Payment) -> GatewayOutcome:
        op = intent.operation
        if op == GatewayOperation.HOLD:
            return await self._payments.create_hold(
                booking_id=intent.booking_id,
                amount=payment.amount,
                payment_method_id=intent.details["payment_method_id"],
                customer_id=intent.details.get("customer_id"),
                destination_account_id=payment.destination_account_id,
                commission=payment.commission,
                idempotency_key=intent.idempotency_key,
            )
        if op == GatewayOperation.VOID:
            return await self._payments.void_hold(
                booking_id=intent.booking_id,
                payment_intent_id=intent.payment_intent_id,
                idempotency_key=intent.idempotency_key,
            )
        if op == GatewayOperation.CAPTURE:
            return await self._payments.capture(
                booking_id=intent.booking_id,
                payment_intent_id=intent.payment_intent_id,
                idempotency_key=intent.idempotency_key,
            )
        if op == GatewayOperation.SETTLE:
            return await self._payments.settle_penalty(
                booking_id=intent.booking_id,
                payment_intent_id=intent.payment_intent_id,
                refund_amount=Decimal(intent.details["refund_amount"]),
                idempotency_key=intent.idempotency_key,
                reverse_transfer=payment.destination_account_id is not None,
            )
        return await self._payments.refund(
            booking_id=intent.booking_id,
            payment_intent_id=intent.payment_intent_id,
            amount=Decimal(intent.details["refund_amount"]),
            idempotency_key=intent.idempotency_key,
            reverse_transfer=payment.destination_account_id is not None,
        )

    async def resolve_intent(self, intent_id: int, outcome: GatewayOutcome) -> BookingTransitionResult:
        """网关调用成功后落库；版本冲突时重新加载并重试"""
        last_exc: Optional[ConcurrentModification] = None
        for attempt in range(1, FINALIZE_ATTEMPTS + 1):
            try:
                return await self._resolve_once(intent_id, outcome)
            except ConcurrentModification as exc:
                last_exc = exc
                logger.warning("booking_finalize_conflict", intent_id=intent_id, attempt=attempt)
        logger.error("booking_finalize_gave_up", intent_id=intent_id)
        raise last_exc

    async def _resolve_once(self, intent_id: int, outcome: GatewayOutcome) -> BookingTransitionResult:
        async with self._uow_factory() as uow:
            intent = await uow.intent_repository.get_by_id(intent_id)
            booking = await uow.booking_repository.get_by_id(intent.booking_id)
            ride = await uow.ride_repository.get_by_id(booking.ride_id)
            payment = await uow.payment_repository.get_by_id(intent.payment_id) if intent.payment_id else None

            if not intent.is_pending:
                # 已被对账任务或重复请求处理
                return self._result(booking, ride, payment)

            payment_intent_id = getattr(outcome, "intent_id", None) or getattr(outcome, "payment_intent_id", None)
            previous, refund = None, None
            if intent.operation == GatewayOperation.HOLD:
                self._apply_hold(booking, payment, outcome)
            else:
                previous, refund = self._apply(
                    booking,
                    ride,
                    payment,
                    BookingAction(intent.action),
                    operation=intent.operation,
                    outcome=outcome,
                    details=intent.details,
                )
            intent.mark_succeeded(payment_intent_id)
            await self._persist(uow, booking, ride, payment)
            await uow.intent_repository.update(intent)
            if intent.operation != GatewayOperation.HOLD:
                self._log_applied(booking, BookingAction(intent.action))
            result = self._result(booking, ride, payment, refund, previous=previous)

        if (
            intent.operation in (GatewayOperation.CAPTURE, GatewayOperation.SETTLE)
            and payment is not None
            and payment.destination_account_id is None
            and payment.retained_amount > 0
            and ride.driver_payout_account
            and self._payout_scheduler is not None
        ):
            # 投递到 broker 是阻塞 IO，放到工作线程
            await anyio.to_thread.run_sync(self._payout_scheduler, payment.id)
            logger.info("driver_transfer_scheduled", booking_id=booking.id, payment_id=payment.id)
        return result

    async def abandon_intent(self, intent_id: int, error: str) -> None:
        """网关失败：意图标记为失败；授权冻结失败时预订取消、支付记为失败"""
        async with self._uow_factory() as uow:
            intent = await uow.intent_repository.get_by_id(intent_id)
            if intent is None or not intent.is_pending:
                return
            intent.mark_failed(error)
            await uow.intent_repository.update(intent)
            if intent.operation == GatewayOperation.HOLD:
                booking = await uow.booking_repository.get_by_id(intent.booking_id)
                payment = await uow.payment_repository.get_by_id(intent.payment_id)
                if booking.status == BookingStatus.PENDING:
                    booking.apply(BookingAction.CANCEL)
                    await uow.booking_repository.update(booking)
                if payment is not None and payment.status in (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED):
                    payment.mark_failed(error)
                    await uow.payment_repository.update(payment)
        logger.warning(
            "booking_transition_failed",
            booking_id=intent.booking_id,
            action=intent.action,
            operation=intent.operation.value,
            error=error,
        )

    # ------------------------------------------------------------------
    # Applying transitions to loaded aggregates
    # ------------------------------------------------------------------
    def _apply_hold(self, booking: Booking, payment: Payment, outcome: GatewayIntent) -> None:
        if outcome.status == PaymentStatus.AUTHORIZED.value:
            if payment.status == PaymentStatus.PENDING:
                payment.mark_authorized(outcome.intent_id)
        elif outcome.status == PaymentStatus.FAILED.value:
            # requires_payment_method: 授权被拒
            payment.payment_intent_id = outcome.intent_id
            payment.mark_failed(f"Payment intent {outcome.raw_status}")
            if booking.status == BookingStatus.PENDING:
                booking.apply(BookingAction.CANCEL)
        else:
            # 需要额外验证（3DS）等情况，由 webhook 同步后续状态
            payment.payment_intent_id = outcome.intent_id
        logger.info(
            "booking_hold_resolved",
            booking_id=booking.id,
            payment_id=payment.id,
            payment_status=payment.status.value,
        )

    def _apply(
        self,
        booking: Booking,
        ride: Ride,
        payment: Optional[Payment],
        action: BookingAction,
        *,
        operation: Optional[GatewayOperation] = None,
        outcome: Optional[GatewayOutcome] = None,
        details: Optional[dict] = None,
    ) -> tuple[BookingStatus, Optional[RefundView]]:
        """就地修改聚合，返回 (转换前状态, 退款明细)"""
        previous = booking.apply(action)
        refund: Optional[RefundView] = None

        if action == BookingAction.ACCEPT:
            ride.reserve_seats(booking.seats)
        elif action == BookingAction.COMPLETE:
            if payment is not None and operation == GatewayOperation.CAPTURE and payment.status != PaymentStatus.CAPTURED:
                payment.mark_captured()
        else:
            # reject / cancel
            if previous == BookingStatus.CONFIRMED:
                ride.release_seats(booking.seats)
            if payment is not None:
                refund = self._settle_cancelled_payment(ride, payment, previous, operation, outcome, details)

        return previous, refund

    def _settle_cancelled_payment(
        self,
        ride: Ride,
        payment: Payment,
        previous: BookingStatus,
        operation: Optional[GatewayOperation],
        outcome: Optional[GatewayOutcome],
        details: Optional[dict],
    ) -> Optional[RefundView]:
        breakdown = calculate_refund(payment.amount, Decimal(details["penalty"])) if details else None
        if operation in (GatewayOperation.REFUND, GatewayOperation.SETTLE):
            # 支付状态跟随网关结果：先扣款，有退款单号时再记为已退款
            if payment.status == PaymentStatus.AUTHORIZED:
                payment.mark_captured()
            refund_id = getattr(outcome, "refund_id", None)
            if refund_id and payment.status == PaymentStatus.CAPTURED:
                payment.apply_refund(breakdown.refund_amount, refund_id)
            return _refund_view(breakdown, refund_id=refund_id)
        if payment.status in (PaymentStatus.PENDING, PaymentStatus.AUTHORIZED):
            payment.mark_cancelled()
        if breakdown is not None:
            # 无罚金：冻结已整体释放
            return _refund_view(breakdown)
        if previous == BookingStatus.CONFIRMED and payment.status == PaymentStatus.CAPTURED:
            # 已扣款且罚金为全额，不需要退款
            return _refund_view(self._penalty_breakdown(ride, payment))
        return None

    async def _persist(
        self,
        uow: AbstractUnitOfWork,
        booking: Booking,
        ride: Ride,
        payment: Optional[Payment],
    ) -> None:
        await uow.booking_repository.update(booking)
        await uow.ride_repository.update(ride)
        if payment is not None:
            await uow.payment_repository.update(payment)

    @staticmethod
    def _result(
        booking: Booking,
        ride: Ride,
        payment: Optional[Payment],
        refund: Optional[RefundView] = None,
        *,
        previous: Optional[BookingStatus] = None,
    ) -> BookingTransitionResult:
        return BookingTransitionResult(
            booking_id=booking.id,
            status=booking.status.value,
            previous_status=previous.value if previous else None,
            version=booking.version,
            available_seats=ride.available_seats,
            payment=payment_view(payment),
            refund=refund,
        )

    @staticmethod
    def _log_applied(booking: Booking, action: BookingAction) -> None:
        logger.info(
            f"booking_{booking.status.value}",
            booking_id=booking.id,
            ride_id=booking.ride_id,
            action=action.value,
        )

    # ------------------------------------------------------------------
    # Ride completion
    # ------------------------------------------------------------------
    async def complete_ride(self, ride_id: int, actor_user_id: int) -> RideCompletionResult:
        """司机完成行程：逐个扣款已确认的预订，然后将行程标记为完成"""
        async with self._uow_factory(readonly=True) as uow:
            ride = await uow.ride_repository.get_by_id(ride_id)
            if ride is None:
                raise RideNotFound(ride_id)
            if ride.driver_id != actor_user_id:
                raise BookingPermissionDenied(actor_user_id, BookingAction.COMPLETE.value)
            if ride.is_completed:
                raise RideUnavailable(ride_id, "Ride is already completed")
            if ride.is_cancelled:
                raise RideUnavailable(ride_id, "Ride is cancelled")
            bookings = await uow.booking_repository.list_by_ride(ride_id, BookingStatus.CONFIRMED)

        captured: list[RideBookingOutcome] = []
        failed: list[RideBookingOutcome] = []
        for booking in bookings:
            try:
                result = await self.execute(booking.id, actor_user_id, BookingAction.COMPLETE)
            except BusinessException as exc:
                logger.warning(
                    "ride_booking_capture_failed",
                    ride_id=ride_id,
                    booking_id=booking.id,
                    error=exc.message,
                )
                failed.append(RideBookingOutcome(booking_id=booking.id, status=booking.status.value, error=exc.message))
                continue
            captured.append(
                RideBookingOutcome(
                    booking_id=booking.id,
                    status=result.status,
                    amount=result.payment.amount if result.payment else None,
                )
            )

        for attempt in range(1, FINALIZE_ATTEMPTS + 1):
            try:
                async with self._uow_factory() as uow:
                    ride = await uow.ride_repository.get_by_id(ride_id)
                    ride.mark_completed()
                    await uow.ride_repository.update(ride)
                break
            except ConcurrentModification:
                if attempt == FINALIZE_ATTEMPTS:
                    raise
                logger.warning("ride_complete_conflict", ride_id=ride_id, attempt=attempt)

        logger.info("ride_completed", ride_id=ride_id, captured=len(captured), failed=len(failed))
        return RideCompletionResult(
            ride_id=ride_id,
            completed_at=ride.updated_at or self._clock(),
            captured=captured,
            failed=failed,
            summary={"total": len(bookings), "captured": len(captured), "failed": len(failed)},
        )

    # ------------------------------------------------------------------
    # Ride cancellation
    # ------------------------------------------------------------------
    async def cancel_ride(self, ride_id: int, actor_user_id: int) -> RideCancellationResult:
        """司机取消行程：先关闭行程阻止新预订，再逐个取消未完成的预订"""
        for attempt in range(1, FINALIZE_ATTEMPTS + 1):
            try:
                async with self._uow_factory() as uow:
                    ride = await uow.ride_repository.get_by_id(ride_id)
                    if ride is None:
                        raise RideNotFound(ride_id)
                    if ride.driver_id != actor_user_id:
                        raise BookingPermissionDenied(actor_user_id, BookingAction.CANCEL.value)
                    if ride.is_completed:
                        raise RideUnavailable(ride_id, "Cannot cancel a completed ride")
                    if ride.is_cancelled:
                        raise RideUnavailable(ride_id, "Ride is already cancelled")
                    ride.mark_cancelled()
                    await uow.ride_repository.update(ride)
                    bookings = [
                        b
                        for b in await uow.booking_repository.list_by_ride(ride_id)
                        if b.status in (BookingStatus.PENDING, BookingStatus.CONFIRMED)
                    ]
                break
            except ConcurrentModification:
                if attempt == FINALIZE_ATTEMPTS:
                    raise
                logger.warning("ride_cancel_conflict", ride_id=ride_id, attempt=attempt)

        cancelled: list[RideBookingOutcome] = []
        failed: list[RideBookingOutcome] = []
        for booking in bookings:
            try:
                result = await self.execute(booking.id, actor_user_id, BookingAction.CANCEL)
            except BusinessException as exc:
                logger.warning(
                    "ride_booking_cancel_failed",
                    ride_id=ride_id,
                    booking_id=booking.id,
                    error=exc.message,
                )
                failed.append(RideBookingOutcome(booking_id=booking.id, status=booking.status.value, error=exc.message))
                continue
            cancelled.append(
                RideBookingOutcome(
                    booking_id=booking.id,
                    status=result.status,
                    amount=result.payment.amount if result.payment else None,
                    refund_amount=result.refund.refund_amount if result.refund else None,
                )
            )

        logger.info("ride_cancelled", ride_id=ride_id, cancelled=len(cancelled), failed=len(failed))
        return RideCancellationResult(
            ride_id=ride_id,
            cancelled_at=ride.updated_at or self._clock(),
            cancelled=cancelled,
            failed=failed,
            summary={"total": len(bookings), "cancelled": len(cancelled), "failed": len(failed)},
        )

    # ------------------------------------------------------------------
    # Driver transfer (no Connect destination on the hold)
    # ------------------------------------------------------------------
    async def transfer_driver_share(self, payment_id: int) -> Optional[PaymentView]:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            if payment is None:
                return None
            booking = await uow.booking_repository.get_by_id(payment.booking_id)
            ride = await uow.ride_repository.get_by_id(booking.ride_id)

        retained = payment.retained_amount
        if payment.transfer_id or retained <= 0 or not ride.driver_payout_account:
            logger.info("driver_transfer_skipped", payment_id=payment_id, status=payment.status.value)
            return payment_view(payment)

        # 晚取消只保留罚金部分，司机按同一佣金比例分成
        if retained == payment.amount:
            amount = payment.driver_amount
        else:
            percent = payment.commission.commission_percent or get_commission_percent()
            amount = calculate_commission(retained, percent).driver_amount
        action = BookingAction.COMPLETE if booking.status == BookingStatus.COMPLETED else BookingAction.CANCEL
        transfer = await self._payments.transfer_driver_share(
            booking_id=booking.id,
            amount=amount,
            destination_account_id=ride.driver_payout_account,
            idempotency_key=booking_idempotency_key(booking.id, action.value),
        )
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            payment.record_transfer(transfer.transfer_id)
            await uow.payment_repository.update(payment)
        if self._payout_dispatcher is not None:
            await anyio.to_thread.run_sync(
                self._payout_dispatcher,
                ride.driver_payout_account,
                str(amount),
                payout_idempotency_key(transfer.transfer_id),
            )
            logger.info("driver_payout_scheduled", payment_id=payment_id, transfer_id=transfer.transfer_id)
        return payment_view(payment)
