import asyncio
import logging
from decimal import Decimal
from typing import Optional

import stripe

from ...application.ports.payment_gateway import CheckoutSession, RedirectPaymentGateway
from ...exceptions import GatewayRejected, TransientPollError

logger = logging.getLogger(__name__)


def checkout_status(session_status: Optional[str], payment_status: Optional[str]) -> str:
    """Collapse a Checkout Session's two status fields into one provider status."""
    if payment_status in ("paid", "no_payment_required"):
        return payment_status
    if session_status == "expired":
        return "expired"
    return payment_status or session_status or "open"


class StripeCheckoutGateway(RedirectPaymentGateway):
    def __init__(self, api_key: str, success_url: str, cancel_url: str, currency: str = "kes") -> None:
        self.api_key = api_key
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.currency = currency.lower()

    async def create_session(self, amount: Decimal, reference: str, description: str) -> CheckoutSession:
        if not self.api_key:
            raise GatewayRejected("Card payments are not configured")
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.api_key,
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": description},
                        "unit_amount": int((amount * 100).to_integral_value()),
                    },
                    "quantity": 1,
                }],
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                client_reference_id=reference,
                metadata={"reference": reference},
            )
        except stripe.APIConnectionError as e:
            raise TransientPollError(f"Stripe unreachable: {e}")
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating checkout session for {reference}: {e}")
            raise GatewayRejected(e.user_message or str(e), provider_code=e.code)

        logger.info(f"Created checkout session {session.id} for {reference}")
        return CheckoutSession(reference=session.id, url=session.url)

    async def get_status(self, reference: str) -> str:
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.retrieve, reference, api_key=self.api_key)
        except stripe.StripeError as e:
            raise TransientPollError(f"Stripe status check failed: {e}")
        return checkout_status(getattr(session, "status", None), getattr(session, "payment_status", None))
