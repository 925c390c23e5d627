"""
Mock Payment Provider Implementation

Simulates a Stripe-like checkout without making real API calls.
Used in development mode (ENV_MODE=development) to:
    - Exercise the complete checkout and webhook flow locally
    - Run the order simulator without incurring costs

Behavior:
    - Generates Stripe-like session ids (cs_mock_xxx)
    - Webhooks are plain JSON, no signature:
      {"type": "payment_intent.succeeded",
       "data": {"object": {"id", "amount", "currency", "metadata": {"order_id"}}}}
"""

import json
import logging
import uuid
from typing import Mapping

from dining.errors import PaymentVerificationError, UnhandledWebhookEvent
from dining.schemas import CheckoutSessionResponse, OrderResponse, PaymentRecord
from dining.services.payment.base import (
    PAYMENT_SUCCEEDED_EVENT,
    BasePaymentProvider,
    payment_record_from_intent,
)

logger = logging.getLogger(__name__)


class MockPaymentProvider(BasePaymentProvider):
    """
    Mock implementation of the payment provider.

    Every created session is remembered in ``sessions`` so tests and the
    simulator can look up what was charged.

    Example:
        >>> provider = MockPaymentProvider()
        >>> session = await provider.create_checkout_session(order, "ok", "cancel")
        >>> session.url
        'https://checkout.mock.local/pay/cs_mock_...'
    """

    def __init__(self, checkout_base_url: str = "https://checkout.mock.local/pay"):
        self.checkout_base_url = checkout_base_url.rstrip("/")
        self.sessions: dict[str, dict] = {}

        logger.info("MockPaymentProvider initialized")

    @property
    def provider_name(self) -> str:
        return "mock"

    def _generate_session_id(self) -> str:
        """Generate a Stripe-like checkout session ID."""
        return f"cs_mock_{uuid.uuid4().hex[:24]}"

    async def create_checkout_session(
        self,
        order: OrderResponse,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResponse:
        session_id = self._generate_session_id()
        amount = order.total_price_in_cents + order.tip_amount_in_cents

        self.sessions[session_id] = {
            "order_id": str(order.id),
            "amount_in_cents": amount,
            "currency": order.currency,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }

        logger.info(f"Mock: Checkout session {session_id} for order {order.id} - {amount} {order.currency}")

        return CheckoutSessionResponse(
            url=f"{self.checkout_base_url}/{session_id}",
            session_id=session_id,
        )

    async def verify_webhook_event(
        self,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> PaymentRecord:
        """
        Parse a mock webhook.

        In mock mode there is no cryptographic verification; the payload
        shape mirrors Stripe's event envelope.
        """
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise PaymentVerificationError(detail="payload is not valid JSON") from e

        if not isinstance(event, dict):
            raise PaymentVerificationError(detail="payload is not an event object")

        event_type = event.get("type")
        if event_type != PAYMENT_SUCCEEDED_EVENT:
            raise UnhandledWebhookEvent(detail=str(event_type))

        intent = (event.get("data") or {}).get("object") or {}
        return payment_record_from_intent(intent, self.provider_name)

    async def health_check(self) -> bool:
        logger.debug("Mock: Health check passed")
        return True
