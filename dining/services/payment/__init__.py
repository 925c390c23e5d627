"""
Payment Provider Factory

Provides a single entry point for obtaining a payment provider instance.
The factory keeps the checkout orchestrator agnostic about which
implementation is being used.

Usage:
    from dining.services.payment import get_payment_provider

    # Returns MockPaymentProvider or StripePaymentProvider based on ENV_MODE
    provider = get_payment_provider()

    session = await provider.create_checkout_session(order, success_url, cancel_url)

Environment Switching:
    - ENV_MODE=development → MockPaymentProvider (no API calls)
    - ENV_MODE=staging → StripePaymentProvider (test keys)
    - ENV_MODE=production → StripePaymentProvider (live keys)
"""

import logging
from functools import lru_cache

from dining.core.config import get_settings
from dining.services.payment.base import BasePaymentProvider
from dining.services.payment.mock import MockPaymentProvider
from dining.services.payment.stripe import StripePaymentProvider

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_provider() -> BasePaymentProvider:
    """
    Get the configured payment provider instance.

    The instance is cached so every request shares one provider.

    Raises:
        ValueError: If not in development mode and the Stripe key is not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Provider: Using MockPaymentProvider (development mode)")
        return MockPaymentProvider()

    logger.info(f"Payment Provider: Using StripePaymentProvider ({settings.env_mode.value} mode)")
    return StripePaymentProvider()


def reset_payment_provider() -> None:
    """Clear the cached payment provider instance."""
    get_payment_provider.cache_clear()
    logger.debug("Payment provider cache cleared")


__all__ = [
    "get_payment_provider",
    "reset_payment_provider",
    "BasePaymentProvider",
    "MockPaymentProvider",
    "StripePaymentProvider",
]
