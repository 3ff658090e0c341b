# app/clients/stripe_client.py

import asyncio
import logging
from typing import Optional

import stripe
from app.core.config import settings

logger = logging.getLogger(__name__)


class StripeClient:
    """
    Thin async wrapper over the blocking Stripe SDK.
    Every call runs in a worker thread so the event loop is never blocked.
    """
    def __init__(self, api_key: str):
        self.api_key = api_key
        stripe.api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        """Raises stripe.StripeError if the intent cannot be fetched."""
        try:
            return await asyncio.to_thread(stripe.PaymentIntent.retrieve, payment_intent_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve PaymentIntent {payment_intent_id}: {e}")
            raise

    async def create_refund(self, payment_intent_id: str, reason: Optional[str] = None) -> stripe.Refund:
        """
        Full refund of a PaymentIntent.
        Raises stripe.StripeError, including when the charge was already refunded.
        """
        params = {"payment_intent": payment_intent_id}
        if reason:
            params["metadata"] = {"reason": reason[:500]}
        try:
            refund = await asyncio.to_thread(stripe.Refund.create, **params)
            logger.info(f"Created Stripe refund {refund.id} for PaymentIntent {payment_intent_id}.")
            return refund
        except stripe.StripeError as e:
            logger.error(f"Failed to refund PaymentIntent {payment_intent_id}: {e}")
            raise


def is_already_refunded_error(error: Exception) -> bool:
    """Stripe reports a second refund of the same charge as an invalid request."""
    message = str(getattr(error, "user_message", None) or error).lower()
    return getattr(error, "code", None) == "charge_already_refunded" or "already been refunded" in message


# Singleton
stripe_client = StripeClient(api_key=settings.STRIPE_SECRET_KEY)
