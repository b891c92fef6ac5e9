"""Stripe adapter: implements PaymentPort with the Stripe SDK.

All Stripe-specific logic lives here: webhook signature verification,
subscription lookups, customers, checkout and billing-portal sessions.
The SDK is synchronous, so network calls are wrapped with
asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import stripe

from src.data.models import SubscriptionSnapshot
from src.ports.payment_port import PaymentError, SignatureError

logger = logging.getLogger(__name__)


def _plain(obj: Any) -> dict[str, Any]:
    """Convert a StripeObject into plain nested dicts."""
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeGateway:
    """Stripe implementation of PaymentPort."""

    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None) -> None:
        if api_key is None or webhook_secret is None:
            from src.config import settings
            api_key = api_key or settings.STRIPE_SECRET_KEY
            webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        stripe.api_key = api_key
        self._webhook_secret = webhook_secret

    async def _call(self, op: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.StripeError as exc:
            logger.error("Stripe error (%s): %s", op, exc)
            raise PaymentError(f"Stripe {op} failed: {exc}") from exc

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify the signature header and return the event as plain dicts."""
        if not signature:
            raise SignatureError("Missing Stripe signature")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise SignatureError(f"Invalid signature: {exc}") from exc
        except ValueError as exc:
            raise SignatureError(f"Invalid payload: {exc}") from exc
        return json.loads(payload)

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        sub = await self._call("retrieve_subscription", stripe.Subscription.retrieve, subscription_id)
        return SubscriptionSnapshot.from_provider(_plain(sub))

    async def find_or_create_customer(self, email: str | None, user_id: str) -> str:
        """Reuse the customer registered under `email`, or create one."""
        if email:
            existing = await self._call("list_customers", stripe.Customer.list, email=email, limit=1)
            if existing.data:
                logger.info("Reusing Stripe customer %s for user %s", existing.data[0]["id"], user_id)
                return existing.data[0]["id"]

        params: dict[str, Any] = {"metadata": {"userId": user_id}}
        if email:
            params["email"] = email
        customer = await self._call("create_customer", stripe.Customer.create, **params)
        logger.info("Created Stripe customer %s for user %s", customer["id"], user_id)
        return customer["id"]

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> dict[str, str]:
        params: dict[str, Any] = {
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": mode,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": user_id,
            "metadata": {"userId": user_id},
        }
        if mode == "subscription":
            params["subscription_data"] = {"metadata": {"userId": user_id}}

        session = await self._call("create_checkout_session", stripe.checkout.Session.create, **params)
        return {"sessionId": session["id"], "url": session["url"]}

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = await self._call(
            "create_portal_session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return session["url"]

    async def cancel_at_period_end(self, subscription_id: str) -> dict[str, Any]:
        sub = await self._call(
            "cancel_at_period_end",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=True,
        )
        raw = _plain(sub)
        snapshot = SubscriptionSnapshot.from_provider(raw)
        period_end = snapshot.current_period_end
        return {
            "status": raw.get("status"),
            "cancelAtPeriodEnd": bool(raw.get("cancel_at_period_end")),
            "currentPeriodEnd": int(period_end.timestamp()) if period_end else None,
        }
