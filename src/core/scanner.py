"""
SevaFinance Functions: Batch Scanner.

One scheduled job per alert kind (budget watcher, bill reminder, spending
alert). Each job enumerates the push-enabled users, fetches the records
its rule needs and runs the evaluator per user, then hands every intent
to the dispatcher once per invocation.

Per-user fetch/evaluate chains run concurrently under a semaphore and are
isolated from one another: a failing user becomes a "failed" outcome and
the batch moves on. Only a failure to list the users themselves
propagates, so the host records the invocation as failed and the next
tick retries.

This module is provider-agnostic: it depends on the UserStore and
PushPort protocols, not on specific implementations.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import TYPE_CHECKING, Awaitable, Callable
from zoneinfo import ZoneInfo

from src.config import settings
from src.core.dispatcher import DeliveryResult, dispatch
from src.core.evaluator import (
    SPENDING_WINDOW,
    evaluate_bills,
    evaluate_budgets,
    evaluate_spending,
    is_eligible,
    tomorrow_window,
)
from src.data.models import AlertKind

if TYPE_CHECKING:
    from src.data.models import NotificationIntent, UserRecord
    from src.ports.notification_port import PushPort
    from src.ports.store_port import UserStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result values
# ---------------------------------------------------------------------------


@dataclass
class UserOutcome:
    """Result of evaluating a single user."""

    user_id: str
    status: str                 # "success" | "skipped" | "failed"
    intents: list[NotificationIntent] = field(default_factory=list)
    reason: str = ""


@dataclass
class ScanReport:
    """Everything one job invocation did, for logging and tests."""

    job: str
    outcomes: list[UserOutcome] = field(default_factory=list)
    deliveries: list[DeliveryResult] = field(default_factory=list)

    @property
    def intents(self) -> list[NotificationIntent]:
        return [intent for outcome in self.outcomes for intent in outcome.intents]

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)


UserEvaluator = Callable[["UserRecord"], Awaitable[UserOutcome]]


# ---------------------------------------------------------------------------
# Generic scan loop
# ---------------------------------------------------------------------------


async def scan(
    job: str,
    kind: AlertKind,
    store: UserStore,
    push: PushPort,
    evaluate_user: UserEvaluator,
    concurrency: int | None = None,
) -> ScanReport:
    """Run `evaluate_user` over every eligible user, then dispatch once."""
    logger.info("%s started", job)

    users = await store.list_push_enabled_users()
    logger.info("Found %d users with push notifications enabled", len(users))

    semaphore = asyncio.Semaphore(max(1, concurrency or settings.SCAN_CONCURRENCY))

    async def _run(user: UserRecord) -> UserOutcome:
        if not is_eligible(user, kind):
            return UserOutcome(user_id=user.user_id, status="skipped", reason="not opted in")
        async with semaphore:
            try:
                return await evaluate_user(user)
            except Exception as exc:
                logger.error("Error processing user %s: %s", user.user_id, exc)
                return UserOutcome(user_id=user.user_id, status="failed", reason=str(exc))

    outcomes = list(await asyncio.gather(*(_run(u) for u in users)))
    report = ScanReport(job=job, outcomes=outcomes)

    intents = report.intents
    if intents:
        logger.info("Sending %d %s notifications", len(intents), kind.value)
        report.deliveries = await dispatch(intents, push)

    logger.info(
        "%s completed: %d evaluated, %d skipped, %d failed",
        job, report.count("success"), report.count("skipped"), report.count("failed"),
    )
    return report


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


async def run_budget_watcher(
    store: UserStore,
    push: PushPort,
    *,
    base_url: str | None = None,
    concurrency: int | None = None,
) -> ScanReport:
    """Hourly: alert users whose category spend crossed their budget threshold."""
    base_url = base_url or settings.APP_BASE_URL

    async def _evaluate(user: UserRecord) -> UserOutcome:
        analytics = await store.get_analytics(user.user_id)
        if analytics is None:
            return UserOutcome(user_id=user.user_id, status="skipped", reason="no analytics")
        budgets = await store.list_budgets(user.user_id)
        intents = evaluate_budgets(user, analytics, budgets, base_url)
        return UserOutcome(user_id=user.user_id, status="success", intents=intents)

    return await scan(
        "Budget Watcher", AlertKind.BUDGET_ALERT, store, push, _evaluate, concurrency,
    )


async def run_bill_reminder(
    store: UserStore,
    push: PushPort,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
    base_url: str | None = None,
    concurrency: int | None = None,
) -> ScanReport:
    """Daily: remind users of recurring transactions due tomorrow."""
    now = now or datetime.now(timezone.utc)
    tz = tz or ZoneInfo(settings.TIMEZONE)
    base_url = base_url or settings.APP_BASE_URL
    window = tomorrow_window(now, tz)

    async def _evaluate(user: UserRecord) -> UserOutcome:
        recurring = await store.list_recurring_between(user.user_id, *window)
        intents = evaluate_bills(user, recurring, window, base_url)
        return UserOutcome(user_id=user.user_id, status="success", intents=intents)

    return await scan(
        "Bill Reminder", AlertKind.BILL_REMINDER, store, push, _evaluate, concurrency,
    )


async def run_spending_alert(
    store: UserStore,
    push: PushPort,
    *,
    now: datetime | None = None,
    base_url: str | None = None,
    concurrency: int | None = None,
) -> ScanReport:
    """Every 6 hours: flag users whose last-24h spend is far above average."""
    now = now or datetime.now(timezone.utc)
    base_url = base_url or settings.APP_BASE_URL

    async def _evaluate(user: UserRecord) -> UserOutcome:
        analytics = await store.get_analytics(user.user_id)
        if analytics is None:
            return UserOutcome(user_id=user.user_id, status="skipped", reason="no analytics")
        expenses = await store.list_expenses_between(user.user_id, now - SPENDING_WINDOW, now)
        intents = evaluate_spending(user, analytics, expenses, now, base_url)
        return UserOutcome(user_id=user.user_id, status="success", intents=intents)

    return await scan(
        "Spending Alert", AlertKind.SPENDING_ALERT, store, push, _evaluate, concurrency,
    )
