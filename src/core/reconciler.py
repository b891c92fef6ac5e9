"""
SevaFinance Functions: Subscription State Reconciler.

Maps one billing lifecycle event (plus the subscription snapshot it
refers to) onto an absolute patch of the owning user's billing fields
and one analytics record. Every field value is derived from the event
or the snapshot, never incremented, so replaying a redelivered event
converges to the same document.

`isPro` follows the latest observed status within the same patch:
entitled statuses set it, revoked statuses clear it, anything else
leaves it alone (trial expiry is handled by the maintenance sweep).

No I/O: user resolution and subscription lookups happen in
src.core.billing before this module is called.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from src.data.models import (
    BillingEvent,
    BillingEventKind,
    SubscriptionSnapshot,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)

ENTITLED_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.CANCEL_AT_PERIOD_END,
})
REVOKED_STATUSES = frozenset({
    SubscriptionStatus.CANCELED,
    SubscriptionStatus.UNPAID,
    SubscriptionStatus.PAST_DUE,
})


@dataclass
class Reconciliation:
    """The effect of one event on one user."""

    user_id: str
    event_id: str
    patch: dict[str, Any] = field(default_factory=dict)
    analytics: dict[str, Any] | None = None


def entitlement(status: SubscriptionStatus) -> bool | None:
    """isPro value implied by a status, or None when the status implies no change."""
    if status in ENTITLED_STATUSES:
        return True
    if status in REVOKED_STATUSES:
        return False
    return None


def _status_patch(subscription: SubscriptionSnapshot, with_period_end: bool) -> dict[str, Any]:
    patch: dict[str, Any] = {"subscriptionStatus": subscription.status.value}
    if with_period_end:
        patch["subscriptionEnd"] = subscription.current_period_end
    is_pro = entitlement(subscription.status)
    if is_pro is not None:
        patch["isPro"] = is_pro
    return patch


def _money(amount_minor: Any) -> float | None:
    if amount_minor is None:
        return None
    return amount_minor / 100


def _record(event: BillingEvent, name: str, now: datetime, **context: Any) -> dict[str, Any]:
    record = {
        "event": name,
        "eventType": event.type,
        "stripeEventId": event.id,
        "timestamp": event.created or now,
    }
    record.update({k: v for k, v in context.items() if v is not None})
    return record


# ---------------------------------------------------------------------------
# Per-event transitions
# ---------------------------------------------------------------------------


def _checkout_completed(
    event: BillingEvent, user_id: str, subscription: SubscriptionSnapshot | None, now: datetime,
) -> Reconciliation | None:
    session = event.payload
    amount = _money(session.get("amount_total"))
    currency = session.get("currency")

    if session.get("mode") != "subscription":
        return Reconciliation(
            user_id=user_id,
            event_id=event.id,
            analytics=_record(
                event, "one_time_payment", now,
                amount=amount, currency=currency, sessionId=session.get("id"),
            ),
        )

    if subscription is None:
        logger.warning("Checkout %s completed without a subscription snapshot", event.id)
        return None

    patch = {
        "isPro": True,
        "hasPaid": True,
        "stripeSubscriptionId": subscription.id,
        "subscriptionStatus": subscription.status.value,
        "subscriptionStart": subscription.current_period_start,
        "subscriptionEnd": subscription.current_period_end,
    }
    customer_id = session.get("customer") or subscription.customer_id
    if customer_id:
        patch["stripeCustomerId"] = customer_id

    return Reconciliation(
        user_id=user_id,
        event_id=event.id,
        patch=patch,
        analytics=_record(
            event, "subscription_started", now,
            amount=amount, currency=currency, subscriptionId=subscription.id,
        ),
    )


def _invoice_succeeded(
    event: BillingEvent, user_id: str, subscription: SubscriptionSnapshot | None, now: datetime,
) -> Reconciliation | None:
    if subscription is None:
        return None
    invoice = event.payload
    return Reconciliation(
        user_id=user_id,
        event_id=event.id,
        patch=_status_patch(subscription, with_period_end=True),
        analytics=_record(
            event, "payment_succeeded", now,
            amount=_money(invoice.get("amount_paid")),
            currency=invoice.get("currency"),
            invoiceId=invoice.get("id"),
            subscriptionId=subscription.id,
        ),
    )


def _invoice_failed(
    event: BillingEvent, user_id: str, subscription: SubscriptionSnapshot | None, now: datetime,
) -> Reconciliation | None:
    if subscription is None:
        return None
    invoice = event.payload
    return Reconciliation(
        user_id=user_id,
        event_id=event.id,
        patch=_status_patch(subscription, with_period_end=False),
        analytics=_record(
            event, "payment_failed", now,
            amount=_money(invoice.get("amount_due")),
            currency=invoice.get("currency"),
            invoiceId=invoice.get("id"),
            subscriptionId=subscription.id,
        ),
    )


def _subscription_updated(
    event: BillingEvent, user_id: str, subscription: SubscriptionSnapshot | None, now: datetime,
) -> Reconciliation | None:
    if subscription is None:
        return None
    return Reconciliation(
        user_id=user_id,
        event_id=event.id,
        patch=_status_patch(subscription, with_period_end=True),
        analytics=_record(
            event, "subscription_updated", now,
            status=subscription.status.value, subscriptionId=subscription.id,
        ),
    )


def _subscription_deleted(
    event: BillingEvent, user_id: str, subscription: SubscriptionSnapshot | None, now: datetime,
) -> Reconciliation | None:
    return Reconciliation(
        user_id=user_id,
        event_id=event.id,
        patch={
            "isPro": False,
            "subscriptionStatus": SubscriptionStatus.CANCELED.value,
            "stripeSubscriptionId": None,
            "subscriptionEnd": None,
        },
        analytics=_record(
            event, "subscription_canceled", now,
            subscriptionId=subscription.id if subscription else event.payload.get("id"),
        ),
    )


_Transition = Callable[
    [BillingEvent, str, "SubscriptionSnapshot | None", datetime],
    "Reconciliation | None",
]

TRANSITIONS: dict[BillingEventKind, _Transition] = {
    BillingEventKind.CHECKOUT_COMPLETED: _checkout_completed,
    BillingEventKind.INVOICE_PAYMENT_SUCCEEDED: _invoice_succeeded,
    BillingEventKind.INVOICE_PAYMENT_FAILED: _invoice_failed,
    BillingEventKind.SUBSCRIPTION_UPDATED: _subscription_updated,
    BillingEventKind.SUBSCRIPTION_DELETED: _subscription_deleted,
}


def reconcile(
    event: BillingEvent,
    user_id: str,
    subscription: SubscriptionSnapshot | None,
    now: datetime,
) -> Reconciliation | None:
    """Return the patch and analytics record for `event`, or None for a no-op."""
    if event.kind is None:
        logger.info("Unhandled billing event type %s (id=%s)", event.type, event.id)
        return None
    return TRANSITIONS[event.kind](event, user_id, subscription, now)
