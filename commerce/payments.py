"""
Payments
========
The payment provider collaborator and payment reconciliation.

The backend never moves money itself. The buyer pays through the provider's
card widget; the agent only passes the resulting payment reference to
complete_checkout. Before an order is created, reconcile_payment() checks what
the provider reports against the session's committed total:

  - status must be "succeeded"
  - amount must equal the session Total exactly (minor units, no tolerance)
  - currency must equal the session currency

StripePaymentProvider talks to Stripe: PaymentIntents through the `stripe`
SDK, SharedPaymentTokens through the REST endpoint (not wrapped by the SDK).
"""
import asyncio
import logging
import os
from typing import Protocol

import httpx
import stripe

from .errors import AmountMismatch, CurrencyMismatch, PaymentFailed, UpstreamFailure
from .models import CheckoutSession, PaymentStatus

logger = logging.getLogger(__name__)

SPT_URL = "https://api.stripe.com/v1/shared_payment/issued_tokens"


class PaymentProvider(Protocol):
    async def create_payment_intent(self, amount: int, currency: str) -> str: ...

    async def retrieve_payment_status(self, reference: str) -> PaymentStatus: ...

    async def issue_shared_payment_token(
        self, payment_method_id: str, amount: int, currency: str, expires_at: int
    ) -> str: ...


def reconcile_payment(session: CheckoutSession, confirmed: PaymentStatus) -> None:
    """Raise unless `confirmed` settles exactly the session's Total in its currency."""
    if confirmed.status != "succeeded":
        raise PaymentFailed(f"Payment failed with status: {confirmed.status}")

    expected = session.total("Total")
    if confirmed.amount != expected:
        raise AmountMismatch(
            f"Payment amount mismatch. Expected {expected}, but was {confirmed.amount}"
        )

    if confirmed.currency.lower() != session.currency.lower():
        raise CurrencyMismatch(
            f"Payment currency mismatch. Expected {session.currency}, but was {confirmed.currency}"
        )


class StripePaymentProvider:
    """
    Stripe-backed provider.

    Args:
        api_key: Stripe secret key. Defaults to STRIPE_SECRET_KEY. A missing key
                 only fails when a payment call is made, so the rest of the app
                 (catalog, checkout updates) works without Stripe credentials.
    """

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key or os.getenv("STRIPE_SECRET_KEY")

    def _key(self) -> str:
        if not self._api_key:
            raise UpstreamFailure("STRIPE_SECRET_KEY is not configured")
        return self._api_key

    async def create_payment_intent(self, amount: int, currency: str) -> str:
        api_key = self._key()
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency,
                automatic_payment_methods={"enabled": True},
                api_key=api_key,
            )
        except stripe.StripeError as exc:
            logger.error("[payments] PaymentIntent creation failed: %s", exc)
            raise UpstreamFailure(f"Failed to create PaymentIntent: {exc}") from exc
        return intent.client_secret

    async def retrieve_payment_status(self, reference: str) -> PaymentStatus:
        api_key = self._key()
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.retrieve, reference, api_key=api_key
            )
        except stripe.StripeError as exc:
            logger.error("[payments] PaymentIntent %s lookup failed: %s", reference, exc)
            raise UpstreamFailure(f"Failed to retrieve payment {reference}: {exc}") from exc

        return PaymentStatus(
            reference=intent.id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
        )

    async def issue_shared_payment_token(
        self, payment_method_id: str, amount: int, currency: str, expires_at: int
    ) -> str:
        api_key = self._key()
        form = {
            "payment_method": payment_method_id,
            "usage_limits[currency]": currency,
            "usage_limits[max_amount]": str(amount),
            "usage_limits[expires_at]": str(expires_at),
        }
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.post(
                    SPT_URL,
                    data=form,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("[payments] SharedPaymentToken creation failed: %s", exc)
            raise UpstreamFailure(f"Stripe SPT creation failed: {exc}") from exc

        return resp.json()["id"]
