"""
Payment Provider Abstract Base Class

Defines the interface contract for all payment provider implementations.
Both MockPaymentProvider and StripePaymentProvider implement these methods,
so the checkout orchestrator behaves the same regardless of which provider
is active.

Design Pattern: Strategy Pattern
    - Allows runtime switching between payment providers
    - Facilitates testing with mock implementations
"""

from abc import ABC, abstractmethod
from typing import Mapping
from uuid import UUID

from dining.errors import PaymentVerificationError
from dining.schemas import CheckoutSessionResponse, OrderResponse, PaymentRecord

# Metadata key carrying the order id through the provider round-trip
METADATA_ORDER_ID_KEY = "order_id"

# The only webhook event that completes an order
PAYMENT_SUCCEEDED_EVENT = "payment_intent.succeeded"

TIP_LINE_ITEM_NAME = "Tip for the staff"


class BasePaymentProvider(ABC):
    """
    Abstract base class for payment providers.

    Example:
        >>> provider = get_payment_provider()  # Returns Mock or Stripe
        >>> session = await provider.create_checkout_session(
        ...     order,
        ...     success_url="https://example.com/paid",
        ...     cancel_url="https://example.com/cancelled",
        ... )
        >>> print(session.url)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the payment provider.

        Returns:
            str: Provider name (e.g., "mock", "stripe")
        """

    @abstractmethod
    async def create_checkout_session(
        self,
        order: OrderResponse,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResponse:
        """
        Create a hosted checkout session charging the order total plus tip.

        Args:
            order: Full order snapshot, items priced in ``order.currency``
            success_url: Where the provider redirects after payment
            cancel_url: Where the provider redirects on cancel

        Raises:
            PaymentProviderError: The provider rejected the request or is unreachable
        """

    @abstractmethod
    async def verify_webhook_event(
        self,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> PaymentRecord:
        """
        Verify and parse a payment-succeeded webhook.

        Args:
            payload: Raw request body bytes
            headers: Request headers (carry the provider signature)

        Returns:
            PaymentRecord: The verified payment, not yet stored

        Raises:
            PaymentVerificationError: Bad signature or missing order id
            UnhandledWebhookEvent: Any event other than a succeeded payment
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the payment provider.

        Returns:
            bool: True if the provider is reachable
        """


def payment_record_from_intent(intent: Mapping, provider_name: str) -> PaymentRecord:
    """
    Build a ``PaymentRecord`` from a payment-intent shaped mapping.

    Raises:
        PaymentVerificationError: ``order_id`` metadata or the payment id is missing
    """
    metadata = intent.get("metadata") or {}
    raw_order_id = metadata.get(METADATA_ORDER_ID_KEY)
    if not raw_order_id:
        raise PaymentVerificationError(detail="order_id missing from payment metadata")

    try:
        order_id = UUID(str(raw_order_id))
    except ValueError as e:
        raise PaymentVerificationError(detail="order_id in payment metadata is not a UUID") from e

    payment_id = intent.get("id")
    if not payment_id:
        raise PaymentVerificationError(detail="payment id missing from event")

    return PaymentRecord(
        order_id=order_id,
        amount_in_cents=int(intent.get("amount") or 0),
        currency=str(intent.get("currency") or ""),
        provider=provider_name,
        provider_payment_id=str(payment_id),
    )
