"""
SevaFinance Functions: Billing webhook handling.

Resolves the user and the subscription an inbound event refers to, asks
the reconciler for the resulting patch, and writes the patch and its
analytics record in one atomic batch.

Resolution rules:
- checkout completion carries our user id (client_reference_id, set at
  session creation), so no lookup is needed
- invoice and subscription events carry the provider customer id, which
  is looked up on the stored stripeCustomerId; no match is a logged
  no-op, never a webhook failure
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from src.core.reconciler import Reconciliation, reconcile
from src.data.models import BillingEvent, BillingEventKind, SubscriptionSnapshot
from src.ports.store_port import BatchWrite

if TYPE_CHECKING:
    from src.ports.payment_port import PaymentPort
    from src.ports.store_port import UserStore

logger = logging.getLogger(__name__)

_SUBSCRIPTION_OBJECT_EVENTS = {
    BillingEventKind.SUBSCRIPTION_UPDATED,
    BillingEventKind.SUBSCRIPTION_DELETED,
}
_INVOICE_EVENTS = {
    BillingEventKind.INVOICE_PAYMENT_SUCCEEDED,
    BillingEventKind.INVOICE_PAYMENT_FAILED,
}


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Subscription id of an invoice, in either the legacy or current API shape."""
    sub = invoice.get("subscription")
    if sub:
        return sub if isinstance(sub, str) else sub.get("id")
    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    return details.get("subscription")


async def _resolve_user_id(event: BillingEvent, store: UserStore) -> str | None:
    payload = event.payload

    if event.kind is BillingEventKind.CHECKOUT_COMPLETED:
        user_id = payload.get("client_reference_id") or (payload.get("metadata") or {}).get("userId")
        if not user_id:
            logger.warning("Checkout %s has no user reference", payload.get("id"))
        return user_id

    customer_id = payload.get("customer")
    if not customer_id:
        logger.warning("Event %s has no customer id", event.id)
        return None

    users = await store.find_users_by_customer_id(customer_id)
    if not users:
        logger.info("No user found for customer %s (event %s)", customer_id, event.id)
        return None
    if len(users) > 1:
        logger.warning(
            "Customer %s matches %d users; using %s",
            customer_id, len(users), users[0].user_id,
        )
    return users[0].user_id


async def _resolve_subscription(
    event: BillingEvent, payments: PaymentPort,
) -> SubscriptionSnapshot | None:
    payload = event.payload

    if event.kind in _SUBSCRIPTION_OBJECT_EVENTS:
        return SubscriptionSnapshot.from_provider(payload)

    if event.kind is BillingEventKind.CHECKOUT_COMPLETED:
        if payload.get("mode") != "subscription" or not payload.get("subscription"):
            return None
        return await payments.retrieve_subscription(payload["subscription"])

    if event.kind in _INVOICE_EVENTS:
        subscription_id = _invoice_subscription_id(payload)
        if not subscription_id:
            logger.info("Invoice %s is not tied to a subscription", payload.get("id"))
            return None
        return await payments.retrieve_subscription(subscription_id)

    return None


async def handle_billing_event(
    event: BillingEvent,
    store: UserStore,
    payments: PaymentPort,
    now: datetime | None = None,
) -> Reconciliation | None:
    """Apply one provider event. Returns what was written, or None for a no-op.

    Provider or database errors propagate so the webhook answers 500 and
    the provider redelivers.
    """
    if event.kind is None:
        logger.info("Ignoring unhandled event type %s (id=%s)", event.type, event.id)
        return None

    now = now or datetime.now(timezone.utc)
    logger.info("Processing billing event %s (id=%s)", event.type, event.id)

    user_id = await _resolve_user_id(event, store)
    if user_id is None:
        return None

    subscription = await _resolve_subscription(event, payments)
    result = reconcile(event, user_id, subscription, now)
    if result is None:
        logger.info("Event %s produced no change for user %s", event.id, user_id)
        return None

    writes: list[BatchWrite] = []
    if result.patch:
        writes.append(BatchWrite(kind="update", user_id=user_id, data=result.patch))
    if result.analytics is not None:
        writes.append(BatchWrite(
            kind="event", user_id=user_id, data=result.analytics, event_id=result.event_id,
        ))
    await store.commit_batch(writes)

    logger.info(
        "Billing event %s applied to user %s: %s",
        event.type, user_id, sorted(result.patch) or "analytics only",
    )
    return result
