"""
Payments API routes.

Exposes the commission quote and the Stripe webhook. Keep this thin: no SDK
details here.
"""
from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import get_webhook_service
from application.dtos.payments import CommissionQuote
from application.services.webhook_service import PaymentWebhookService
from core.response import success_response, Response as ApiResponse
from core.settings import get_commission_percent
from domain.pricing.commission import calculate_commission


router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("/commission", summary="Commission quote", response_model=ApiResponse[CommissionQuote])
async def commission_quote(amount: Decimal = Query(..., description="Ride price in EUR")):
    breakdown = calculate_commission(amount, get_commission_percent())
    quote = CommissionQuote(
        total_amount=breakdown.total_amount,
        commission_amount=breakdown.commission_amount,
        driver_amount=breakdown.driver_amount,
        commission_percent=breakdown.commission_percent,
    )
    return success_response(data=quote)


@router.post("/webhooks/stripe", summary="Stripe webhook")
async def stripe_webhook(
    request: Request,
    service: PaymentWebhookService = Depends(get_webhook_service),
):
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    result = await service.handle(headers, raw_body)
    # Return 200 to acknowledge receipt per provider conventions
    return success_response(data=result, message="Webhook received")
