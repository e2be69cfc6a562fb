"""Payment gateway wrapper around the Stripe SDK."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import stripe

from videoshop.config import settings
from videoshop.errors import PaymentError, WebhookSignatureError

logger = logging.getLogger(__name__)

ALLOWED_SHIPPING_COUNTRIES = ["US", "CA", "GB", "AU"]


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str]


class PaymentGateway:
    """Creates hosted checkout sessions and verifies webhook signatures."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        )

    async def create_checkout_session(
        self,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        customer_email: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> CheckoutSession:
        """
        Create a payment-mode checkout session.

        Raises:
            PaymentError: if the gateway is not configured or rejects the request
        """
        if not self.secret_key:
            raise PaymentError("Payment gateway not configured (missing secret key)")

        try:
            # The SDK is synchronous
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.secret_key,
                payment_method_types=["card"],
                mode="payment",
                line_items=line_items,
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email,
                shipping_address_collection={"allowed_countries": ALLOWED_SHIPPING_COUNTRIES},
                metadata=metadata or {},
            )
        except stripe.StripeError as e:
            logger.error(f"Checkout session creation failed: {e}")
            raise PaymentError(f"Failed to create checkout session: {e}") from e

        return CheckoutSession(id=session.id, url=session.url)

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        """
        Verify a webhook delivery and return the event as a plain dict.

        Raises:
            WebhookSignatureError: missing secret or signature, bad signature, or bad payload
        """
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing signature header")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}") from e

        return json.loads(payload)


# Global gateway instance
payment_gateway = PaymentGateway()
