"""
SevaFinance Functions: Data Models.

Explicit entity types for the documents the jobs read and write. Each
`from_document` constructor owns the defaulting rules for its entity, so
the rest of the code never does loose key lookups on raw documents.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BUDGET_THRESHOLD = 0.8


def as_datetime(value: Any) -> datetime | None:
    """Coerce a stored timestamp (datetime, ISO string, epoch) to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    return float(value)


def parse_documents(
    kind: str,
    docs: Iterable[tuple[str, Mapping[str, Any]]],
    parse: Callable[[str, Mapping[str, Any]], T],
) -> list[T]:
    """Parse (doc_id, data) pairs one at a time, dropping documents that fail.

    A malformed document is logged and skipped so one bad record never
    takes down the listing it appears in.
    """
    parsed: list[T] = []
    for doc_id, data in docs:
        try:
            parsed.append(parse(doc_id, data))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping malformed %s %s: %s", kind, doc_id, exc)
    return parsed


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@dataclass
class NotificationPreferences:
    """Per-user alert toggles and threshold overrides."""

    budget_alerts: bool = False
    bill_reminders: bool = False
    spending_alerts: bool = False
    budget_threshold: float = DEFAULT_BUDGET_THRESHOLD

    @classmethod
    def from_document(cls, data: Mapping[str, Any] | None) -> NotificationPreferences:
        data = data or {}
        threshold = data.get("budgetThreshold")
        try:
            threshold = float(threshold) if threshold else DEFAULT_BUDGET_THRESHOLD
        except (TypeError, ValueError):
            threshold = DEFAULT_BUDGET_THRESHOLD
        return cls(
            budget_alerts=bool(data.get("budgetAlerts", False)),
            bill_reminders=bool(data.get("billReminders", False)),
            spending_alerts=bool(data.get("spendingAlerts", False)),
            budget_threshold=threshold,
        )


@dataclass
class UserRecord:
    """A user document: push settings, preferences and billing fields."""

    user_id: str
    email: str | None = None
    push_enabled: bool = False
    push_token: str | None = None
    preferences: NotificationPreferences = field(default_factory=NotificationPreferences)
    is_pro: bool = False
    has_paid: bool = False
    subscription_status: str | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    subscription_start: datetime | None = None
    subscription_end: datetime | None = None
    trial_start: datetime | None = None
    scan_count_this_month: int = 0

    @classmethod
    def from_document(cls, user_id: str, data: Mapping[str, Any]) -> UserRecord:
        return cls(
            user_id=user_id,
            email=data.get("email"),
            push_enabled=bool(data.get("pushEnabled", False)),
            push_token=data.get("pushToken") or None,
            preferences=NotificationPreferences.from_document(
                data.get("notificationPreferences"),
            ),
            is_pro=bool(data.get("isPro", False)),
            has_paid=bool(data.get("hasPaid", False)),
            subscription_status=data.get("subscriptionStatus"),
            stripe_customer_id=data.get("stripeCustomerId"),
            stripe_subscription_id=data.get("stripeSubscriptionId"),
            subscription_start=as_datetime(data.get("subscriptionStart")),
            subscription_end=as_datetime(data.get("subscriptionEnd")),
            trial_start=as_datetime(data.get("trialStart")),
            scan_count_this_month=int(data.get("scanCountThisMonth") or 0),
        )


# ---------------------------------------------------------------------------
# Financial records
# ---------------------------------------------------------------------------


@dataclass
class AnalyticsSnapshot:
    """Aggregates produced upstream: month-to-date spend and daily average."""

    mtd_by_category: dict[str, float] = field(default_factory=dict)
    daily_average: float = 0.0

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> AnalyticsSnapshot:
        raw = data.get("mtdByCategory") or {}
        return cls(
            mtd_by_category={str(k): _as_float(v) for k, v in raw.items()},
            daily_average=_as_float(data.get("dailyAverage")),
        )


@dataclass
class Budget:
    """Monthly budget for one category."""

    id: str
    category: str
    amount: float

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> Budget:
        return cls(
            id=doc_id,
            category=str(data.get("category", "")),
            amount=_as_float(data.get("amount")),
        )


@dataclass
class RecurringTransaction:
    """A bill or subscription that repeats; next_occurrence drives reminders."""

    id: str
    amount: float
    next_occurrence: datetime
    description: str = ""
    category: str = ""

    @property
    def label(self) -> str:
        return self.description or self.category

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> RecurringTransaction:
        next_occurrence = as_datetime(data.get("nextOccurrence"))
        if next_occurrence is None:
            raise ValueError(f"Recurring transaction {doc_id} has no nextOccurrence")
        return cls(
            id=doc_id,
            amount=_as_float(data.get("amount")),
            next_occurrence=next_occurrence,
            description=data.get("description") or "",
            category=data.get("category") or "",
        )


@dataclass
class Expense:
    id: str
    amount: float
    date: datetime

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> Expense:
        spent_at = as_datetime(data.get("date"))
        if spent_at is None:
            raise ValueError(f"Expense {doc_id} has no date")
        return cls(id=doc_id, amount=_as_float(data.get("amount")), date=spent_at)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class AlertKind(str, Enum):
    BUDGET_ALERT = "budget_alert"
    BILL_REMINDER = "bill_reminder"
    SPENDING_ALERT = "spending_alert"
    TEST = "test"


@dataclass
class NotificationIntent:
    """A push notification to deliver within this invocation. Never persisted.

    `data` values are all strings: the push channel only carries string maps.
    """

    kind: AlertKind
    user_id: str
    token: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)

    @property
    def priority(self) -> str:
        return self.data.get("priority", "normal")


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    CANCEL_AT_PERIOD_END = "cancel_at_period_end"
    # Provider statuses that carry no entitlement change
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"


class BillingEventKind(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


@dataclass
class SubscriptionSnapshot:
    """The provider's view of a subscription at the time of an event."""

    id: str
    customer_id: str | None
    status: SubscriptionStatus
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None

    @classmethod
    def from_provider(cls, obj: Mapping[str, Any]) -> SubscriptionSnapshot:
        """Build from a provider subscription object.

        Newer provider API versions report period bounds on the first
        subscription item rather than on the subscription itself.
        """
        period_start = obj.get("current_period_start")
        period_end = obj.get("current_period_end")
        if period_end is None:
            items = (obj.get("items") or {}).get("data") or []
            if items:
                period_start = items[0].get("current_period_start")
                period_end = items[0].get("current_period_end")

        status = SubscriptionStatus(obj.get("status", "incomplete"))
        if status is SubscriptionStatus.ACTIVE and obj.get("cancel_at_period_end"):
            status = SubscriptionStatus.CANCEL_AT_PERIOD_END

        return cls(
            id=obj["id"],
            customer_id=obj.get("customer"),
            status=status,
            current_period_start=as_datetime(period_start),
            current_period_end=as_datetime(period_end),
        )


@dataclass
class BillingEvent:
    """An inbound provider event. `kind` is None for event types we don't handle."""

    id: str
    type: str
    kind: BillingEventKind | None
    payload: dict[str, Any]
    created: datetime | None = None

    @classmethod
    def from_provider(cls, event: Mapping[str, Any]) -> BillingEvent:
        event_type = event.get("type", "")
        try:
            kind = BillingEventKind(event_type)
        except ValueError:
            kind = None
        return cls(
            id=event["id"],
            type=event_type,
            kind=kind,
            payload=dict((event.get("data") or {}).get("object") or {}),
            created=as_datetime(event.get("created")),
        )
