"""
Payment Checkout Orchestrator

Gates checkout on the order state and hands the order snapshot to the
configured payment provider. The provider's webhook, once verified, stores
the payment and completes the order through the order state engine, so the
completion is serialized with every other mutation of that order.
"""

import logging
from typing import Mapping
from uuid import UUID

from dining.errors import InvalidWebhookPayload, OrderFinalized, OrderPriceIsZero
from dining.repository.base import BasePaymentsRepository
from dining.schemas import CheckoutSessionResponse, OrderResponse, PaymentRecord
from dining.services.orders import OrdersService
from dining.services.payment.base import BasePaymentProvider

logger = logging.getLogger(__name__)


class CheckoutService:
    """
    Example:
        >>> checkout = CheckoutService(orders_service, payments_repo, MockPaymentProvider())
        >>> session = await checkout.create_checkout(order_id, success_url, cancel_url)
    """

    def __init__(
        self,
        orders: OrdersService,
        payments_repository: BasePaymentsRepository,
        provider: BasePaymentProvider,
    ):
        self.orders = orders
        self.payments_repository = payments_repository
        self.provider = provider

    async def create_checkout(
        self,
        order_id: UUID,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResponse:
        """
        Raises:
            OrderNotFound: No such order
            OrderFinalized: Order is completed or cancelled
            OrderPriceIsZero: Nothing to charge
            PaymentProviderError: The provider failed
        """
        order = await self.orders.get_order(order_id)

        if order.is_finalized:
            raise OrderFinalized(detail=order.status.value)

        if order.total_price_in_cents == 0 and order.tip_amount_in_cents == 0:
            raise OrderPriceIsZero()

        session = await self.provider.create_checkout_session(order, success_url, cancel_url)

        logger.info(
            f"Checkout session {session.session_id} created for order {order_id} "
            f"via {self.provider.provider_name}"
        )
        return session

    async def handle_webhook_success(
        self,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> tuple[PaymentRecord, OrderResponse]:
        """
        Verify a provider webhook, store the payment and complete the order.

        The payment is always stored. An order that was cancelled or already
        completed in the meantime keeps its status; redelivered webhooks
        store nothing new.

        Returns:
            The stored payment and the order as it stands afterwards

        Raises:
            InvalidWebhookPayload: Empty body
            PaymentVerificationError: Signature or payload rejected by the provider
            UnhandledWebhookEvent: Event type other than a succeeded payment
            OrderNotFound: The paid order does not exist
        """
        if not payload:
            raise InvalidWebhookPayload()

        record = await self.provider.verify_webhook_event(payload, headers)
        await self.orders.get_order(record.order_id)

        saved = await self.payments_repository.save_payment(record)
        order = await self.orders.complete_paid_order(saved.order_id)

        logger.info(
            f"Payment {saved.provider_payment_id} stored for order {saved.order_id} "
            f"({saved.amount_in_cents} {saved.currency}), order {order.status.value}"
        )
        return saved, order
