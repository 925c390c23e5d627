"""
Payment Provider Webhook

    POST /payments/webhook

The raw body is handed to the provider untouched; signature verification
needs the exact bytes that were signed.
"""

import logging

from fastapi import APIRouter, Depends, Request

from dining.dependencies import get_checkout_service, get_hub
from dining.schemas import ErrorResponse, PaymentRecord, SuccessResponse
from dining.services.checkout import CheckoutService
from dining.services.realtime import BroadcastHub, WSMessageType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "/webhook",
    response_model=SuccessResponse[PaymentRecord],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Payment Succeeded Webhook",
)
async def payment_webhook(
    request: Request,
    checkout: CheckoutService = Depends(get_checkout_service),
    hub: BroadcastHub = Depends(get_hub),
) -> SuccessResponse[PaymentRecord]:
    payload = await request.body()

    record, order = await checkout.handle_webhook_success(payload, request.headers)

    await hub.broadcast(order.id, WSMessageType.UPDATE_ORDER, order)

    return SuccessResponse(message="payment processed", data=record)
