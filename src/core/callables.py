"""
SevaFinance Functions: Callable RPC handlers.

Each handler takes the authenticated caller uid (None when the request
carried no valid identity) and the request's `data` object, and returns
a JSON-serializable result. Failures are raised as CallableError with
one of the RPC codes the client understands.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from src.config import settings
from src.core.evaluator import build_test_intent

if TYPE_CHECKING:
    from src.ports.notification_port import PushPort
    from src.ports.payment_port import PaymentPort
    from src.ports.store_port import UserStore

logger = logging.getLogger(__name__)

UNAUTHENTICATED = "unauthenticated"
INVALID_ARGUMENT = "invalid-argument"
FAILED_PRECONDITION = "failed-precondition"
PERMISSION_DENIED = "permission-denied"
NOT_FOUND = "not-found"
INTERNAL = "internal"


class CallableError(Exception):
    """A typed error surfaced to the RPC caller."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _require_auth(uid: str | None) -> str:
    if not uid:
        raise CallableError(UNAUTHENTICATED, "User must be authenticated")
    return uid


def _require(data: dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if not data.get(k)]
    if missing:
        raise CallableError(INVALID_ARGUMENT, f"Missing required field(s): {', '.join(missing)}")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


async def send_test_notification(
    uid: str | None, data: dict[str, Any], *, store: UserStore, push: PushPort,
) -> dict[str, Any]:
    """Send a fixed test push to the caller's stored token."""
    uid = _require_auth(uid)

    user = await store.get_user(uid)
    if user is None or not user.push_token:
        raise CallableError(FAILED_PRECONDITION, "User does not have push notifications enabled")

    try:
        await push.send(build_test_intent(user, settings.APP_BASE_URL))
    except Exception as exc:
        logger.error("Error sending test notification to %s: %s", uid, exc)
        raise CallableError(INTERNAL, "Failed to send test notification") from exc

    return {"success": True, "message": "Test notification sent successfully"}


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


async def create_checkout_session(
    uid: str | None, data: dict[str, Any], *, store: UserStore, payments: PaymentPort,
) -> dict[str, Any]:
    """Create (or reuse) the caller's provider customer and open a checkout session."""
    uid = _require_auth(uid)
    _require(data, "priceId", "mode")
    if data["mode"] not in ("subscription", "payment"):
        raise CallableError(INVALID_ARGUMENT, f"Unsupported checkout mode: {data['mode']!r}")

    base = settings.APP_BASE_URL
    try:
        user = await store.get_user(uid)
        customer_id = user.stripe_customer_id if user else None
        if not customer_id:
            email = data.get("customerEmail") or (user.email if user else None)
            customer_id = await payments.find_or_create_customer(email, uid)
            await store.update_user(uid, {"stripeCustomerId": customer_id})

        session = await payments.create_checkout_session(
            customer_id=customer_id,
            price_id=data["priceId"],
            mode=data["mode"],
            success_url=data.get("successUrl") or f"{base}/dashboard?checkout=success",
            cancel_url=data.get("cancelUrl") or f"{base}/dashboard?checkout=canceled",
            user_id=uid,
        )
    except CallableError:
        raise
    except Exception as exc:
        logger.error("Error creating checkout session for %s: %s", uid, exc)
        raise CallableError(INTERNAL, "Failed to create checkout session") from exc

    logger.info("Checkout session %s created for user %s", session["sessionId"], uid)
    return session


async def _require_owner(
    store: UserStore, uid: str, attr: str, value: str, what: str,
) -> None:
    """Reject a billing id that is not the one stored on the caller's record."""
    user = await store.get_user(uid)
    if user is None or getattr(user, attr) != value:
        logger.warning("User %s requested a %s they do not own: %s", uid, what, value)
        raise CallableError(PERMISSION_DENIED, f"The {what} does not belong to this user")


async def create_customer_portal_session(
    uid: str | None, data: dict[str, Any], *, store: UserStore, payments: PaymentPort,
) -> dict[str, Any]:
    uid = _require_auth(uid)
    _require(data, "customerId")
    await _require_owner(store, uid, "stripe_customer_id", data["customerId"], "customer")
    try:
        url = await payments.create_portal_session(
            data["customerId"],
            data.get("returnUrl") or f"{settings.APP_BASE_URL}/dashboard",
        )
    except Exception as exc:
        logger.error("Error creating portal session for %s: %s", uid, exc)
        raise CallableError(INTERNAL, "Failed to create customer portal session") from exc
    return {"url": url}


async def cancel_subscription(
    uid: str | None, data: dict[str, Any], *, store: UserStore, payments: PaymentPort,
) -> dict[str, Any]:
    """Schedule cancellation at period end; the webhook applies the state change."""
    uid = _require_auth(uid)
    _require(data, "subscriptionId")
    await _require_owner(
        store, uid, "stripe_subscription_id", data["subscriptionId"], "subscription",
    )
    try:
        result = await payments.cancel_at_period_end(data["subscriptionId"])
    except Exception as exc:
        logger.error("Error canceling subscription for %s: %s", uid, exc)
        raise CallableError(INTERNAL, "Failed to cancel subscription") from exc
    logger.info("Subscription %s set to cancel at period end", data["subscriptionId"])
    return result
