"""
Stripe Payment Provider Implementation

Production implementation using the official Stripe Python SDK.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - STRIPE_SECRET_KEY must be set in environment
    - STRIPE_WEBHOOK_SECRET for webhook verification

Security Notes:
    - Never log full card numbers or CVCs
    - Always verify webhook signatures
"""

import asyncio
import logging
from typing import Mapping, Optional

import stripe

from dining.core.config import get_settings
from dining.errors import (
    PaymentProviderError,
    PaymentVerificationError,
    UnhandledWebhookEvent,
)
from dining.schemas import CheckoutSessionResponse, OrderResponse, PaymentRecord
from dining.services.payment.base import (
    METADATA_ORDER_ID_KEY,
    PAYMENT_SUCCEEDED_EVENT,
    TIP_LINE_ITEM_NAME,
    BasePaymentProvider,
    payment_record_from_intent,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"


class StripePaymentProvider(BasePaymentProvider):
    """
    Production Stripe payment provider.

    Creates Checkout Sessions with one line item per order item and verifies
    ``payment_intent.succeeded`` webhooks.

    Configuration:
        Requires STRIPE_SECRET_KEY environment variable.
        Requires STRIPE_WEBHOOK_SECRET for webhook verification.

    Example:
        >>> provider = StripePaymentProvider()
        >>> session = await provider.create_checkout_session(order, success_url, cancel_url)
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ):
        """
        Initialize Stripe with API key from settings.

        Raises:
            ValueError: If STRIPE_SECRET_KEY is not configured
        """
        settings = get_settings()

        secret_key = secret_key or settings.stripe_secret_key
        if not secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required outside development mode. "
                "Set it in your .env file or environment variables."
            )

        # Configure Stripe SDK
        stripe.api_key = secret_key
        stripe.api_version = settings.stripe_api_version

        self._webhook_secret = webhook_secret or settings.stripe_webhook_secret

        logger.info(f"StripePaymentProvider initialized (api_version={stripe.api_version})")

    @property
    def provider_name(self) -> str:
        return "stripe"

    def build_line_items(self, order: OrderResponse) -> list[dict]:
        """
        Checkout line items: one per order item, plus the tip when positive.

        Amounts are already in the smallest currency unit.
        """
        line_items = [
            _line_item(item.name, item.price_in_cents, order.currency)
            for item in order.items
        ]

        if order.tip_amount_in_cents > 0:
            line_items.append(
                _line_item(TIP_LINE_ITEM_NAME, order.tip_amount_in_cents, order.currency)
            )

        return line_items

    async def create_checkout_session(
        self,
        order: OrderResponse,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResponse:
        params = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items": self.build_line_items(order),
            "payment_intent_data": {
                "metadata": {METADATA_ORDER_ID_KEY: str(order.id)},
            },
        }

        try:
            # The SDK call is blocking
            session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe: Failed to create checkout session for order {order.id} - {e}")
            raise PaymentProviderError(detail="creating stripe checkout session") from e

        logger.info(f"Stripe: Checkout session created - {session.id} - order {order.id}")

        return CheckoutSessionResponse(url=session.url, session_id=session.id)

    async def verify_webhook_event(
        self,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> PaymentRecord:
        """
        Verify and parse a Stripe webhook event.

        SECURITY: the signature is always checked; an unconfigured webhook
        secret rejects every event.
        """
        if not self._webhook_secret:
            logger.error("Stripe: Webhook secret not configured, rejecting event")
            raise PaymentVerificationError(detail="webhook secret not configured")

        signature = _signature_header(headers)
        if not signature:
            raise PaymentVerificationError(detail="missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe: Webhook signature invalid - {e}")
            raise PaymentVerificationError(detail="invalid signature") from e
        except ValueError as e:
            logger.warning(f"Stripe: Webhook payload malformed - {e}")
            raise PaymentVerificationError(detail="malformed payload") from e

        event_type = event["type"]
        if event_type != PAYMENT_SUCCEEDED_EVENT:
            logger.info(f"Stripe: Ignoring webhook event {event_type}")
            raise UnhandledWebhookEvent(detail=event_type)

        record = payment_record_from_intent(event["data"]["object"], self.provider_name)
        logger.debug(f"Stripe: Webhook verified - {record.provider_payment_id} for order {record.order_id}")
        return record

    async def health_check(self) -> bool:
        """Make a lightweight API call to verify credentials and connectivity."""
        try:
            await asyncio.to_thread(stripe.Account.retrieve)
            logger.debug("Stripe: Health check passed")
            return True
        except stripe.StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False


def _line_item(name: str, unit_amount: int, currency: str) -> dict:
    return {
        "price_data": {
            "currency": currency,
            "product_data": {"name": name},
            "unit_amount": unit_amount,
        },
        "quantity": 1,
    }


def _signature_header(headers: Mapping[str, str]) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == SIGNATURE_HEADER:
            return value
    return None
