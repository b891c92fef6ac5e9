"""
SevaFinance Functions: Threshold Evaluator.

Pure rules that turn one user's stored aggregates and preferences into
zero or more notification intents. Three independent rules, each toggled
by its own preference flag:

- budget alert: month-to-date category spend against the category budget
- bill reminder: recurring transactions due during tomorrow (local time)
- spending alert: last-24h spend against the rolling daily average

No I/O: this module only transforms data, so it can be exercised with
literal fixtures.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, time, timedelta, timezone, tzinfo
from urllib.parse import quote, urlencode

from src.data.models import (
    AlertKind,
    AnalyticsSnapshot,
    Budget,
    Expense,
    NotificationIntent,
    RecurringTransaction,
    UserRecord,
)

logger = logging.getLogger(__name__)

HIGH_PRIORITY_BUDGET_RATIO = 0.9
SPENDING_MULTIPLIER = 1.5
SPENDING_FLOOR = 20.0
HIGH_PRIORITY_SPENDING_PERCENT = 100
SPENDING_WINDOW = timedelta(hours=24)

# Characters encodeURIComponent leaves alone on the client side
_URI_COMPONENT_SAFE = "!*'()"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties upward (client-side Math.round)."""
    return math.floor(value + 0.5)


def _num(value: float) -> str:
    """Render a number for the data payload without a trailing '.0'."""
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def deep_link(base_url: str, highlight: str | None = None, **params: str) -> str:
    """Dashboard URL the client routes to when the notification is clicked."""
    url = f"{base_url}/dashboard"
    if highlight is None:
        return url
    query = urlencode(
        {"highlight": highlight, **params},
        quote_via=quote,
        safe=_URI_COMPONENT_SAFE,
    )
    return f"{url}?{query}"


def is_eligible(user: UserRecord, kind: AlertKind) -> bool:
    """Whether a user should be evaluated for an alert kind at all."""
    if not user.push_token:
        return False
    prefs = user.preferences
    if kind is AlertKind.BUDGET_ALERT:
        return prefs.budget_alerts
    if kind is AlertKind.BILL_REMINDER:
        return prefs.bill_reminders
    if kind is AlertKind.SPENDING_ALERT:
        return prefs.spending_alerts
    return True


def tomorrow_window(now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return [next local midnight, the local midnight after it) for `now`."""
    local_today = now.astimezone(tz).date()
    start = datetime.combine(local_today + timedelta(days=1), time(0, 0), tzinfo=tz)
    end = datetime.combine(local_today + timedelta(days=2), time(0, 0), tzinfo=tz)
    return start, end


# ---------------------------------------------------------------------------
# Budget alert
# ---------------------------------------------------------------------------


def evaluate_budgets(
    user: UserRecord,
    analytics: AnalyticsSnapshot,
    budgets: list[Budget],
    base_url: str,
) -> list[NotificationIntent]:
    """Emit one alert per budget whose spend ratio reaches the user's threshold.

    A budget with a non-positive amount is a configuration error for that
    row only: it is skipped and the remaining budgets are still evaluated.
    """
    threshold = user.preferences.budget_threshold
    intents: list[NotificationIntent] = []

    for budget in budgets:
        if budget.amount <= 0:
            logger.warning(
                "Skipping budget %s for user %s: non-positive amount %r",
                budget.id, user.user_id, budget.amount,
            )
            continue

        spent = analytics.mtd_by_category.get(budget.category, 0.0)
        ratio = spent / budget.amount
        if ratio < threshold:
            continue

        intents.append(NotificationIntent(
            kind=AlertKind.BUDGET_ALERT,
            user_id=user.user_id,
            token=user.push_token or "",
            title="Budget Alert 📊",
            body=(
                f"You've used {round_half_up(ratio * 100)}% of your {budget.category} "
                f"budget (${spent:.0f} of ${budget.amount:.0f})"
            ),
            data={
                "type": AlertKind.BUDGET_ALERT.value,
                "category": budget.category,
                "percentage": _num(ratio),
                "click_action": deep_link(base_url, "budget", category=budget.category),
                "priority": "high" if ratio >= HIGH_PRIORITY_BUDGET_RATIO else "normal",
            },
        ))

    return intents


# ---------------------------------------------------------------------------
# Bill reminder
# ---------------------------------------------------------------------------


def evaluate_bills(
    user: UserRecord,
    recurring: list[RecurringTransaction],
    window: tuple[datetime, datetime],
    base_url: str,
) -> list[NotificationIntent]:
    """Emit one reminder per recurring transaction due inside `window`.

    There is no "already reminded" marker: the daily cadence of the job
    is the only thing keeping a transaction to one reminder per day.
    """
    start, end = window
    intents: list[NotificationIntent] = []

    for txn in recurring:
        if not (start <= txn.next_occurrence < end):
            continue
        intents.append(NotificationIntent(
            kind=AlertKind.BILL_REMINDER,
            user_id=user.user_id,
            token=user.push_token or "",
            title="Bill Reminder 💳",
            body=f"{txn.label} is due tomorrow (${txn.amount:.2f})",
            data={
                "type": AlertKind.BILL_REMINDER.value,
                "recurringId": txn.id,
                "amount": _num(txn.amount),
                "click_action": deep_link(base_url, "bills", id=txn.id),
                "priority": "normal",
            },
        ))

    return intents


# ---------------------------------------------------------------------------
# Spending alert
# ---------------------------------------------------------------------------


def spending_in_window(expenses: list[Expense], now: datetime) -> float:
    """Sum of expense amounts recorded in [now - 24h, now)."""
    start = now - SPENDING_WINDOW
    return sum(e.amount for e in expenses if start <= e.date < now)


def evaluate_spending(
    user: UserRecord,
    analytics: AnalyticsSnapshot,
    expenses: list[Expense],
    now: datetime,
    base_url: str,
) -> list[NotificationIntent]:
    """Emit a single alert when the last 24h of spend is well above average.

    Fires iff spend > 1.5x the daily average AND spend > $20. A zero or
    missing average has no defined ratio and never fires.
    """
    average = analytics.daily_average
    if average <= 0:
        return []

    today_spending = spending_in_window(expenses, now)
    if not (today_spending > average * SPENDING_MULTIPLIER and today_spending > SPENDING_FLOOR):
        return []

    percent_over = round_half_up((today_spending - average) / average * 100)
    run_date = now.astimezone(timezone.utc).date().isoformat()

    return [NotificationIntent(
        kind=AlertKind.SPENDING_ALERT,
        user_id=user.user_id,
        token=user.push_token or "",
        title="Spending Alert 💸",
        body=(
            f"Today's spending: ${today_spending:.0f} ↑ vs ${average:.0f} "
            f"average (+{percent_over}%)"
        ),
        data={
            "type": AlertKind.SPENDING_ALERT.value,
            "amount": _num(today_spending),
            "average": _num(average),
            "click_action": deep_link(base_url, "expenses", date=run_date),
            "priority": "high" if percent_over > HIGH_PRIORITY_SPENDING_PERCENT else "normal",
        },
    )]


# ---------------------------------------------------------------------------
# Test notification
# ---------------------------------------------------------------------------


def build_test_intent(user: UserRecord, base_url: str) -> NotificationIntent:
    return NotificationIntent(
        kind=AlertKind.TEST,
        user_id=user.user_id,
        token=user.push_token or "",
        title="Test Notification 🧪",
        body="This is a test notification from SevaFinance!",
        data={
            "type": AlertKind.TEST.value,
            "click_action": deep_link(base_url),
            "priority": "normal",
        },
    )
