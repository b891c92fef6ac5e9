"""
SevaFinance Functions: Scheduled triggers.

Registers the five periodic jobs on an APScheduler AsyncIOScheduler, all
in the configured time zone:

    budget_watcher       every hour, on the hour
    bill_reminder        daily at BILL_REMINDER_HOUR:00
    spending_alert       every 6 hours
    trial_expiry         daily at 00:00
    monthly_usage_reset  1st of the month at 00:00

A failing invocation is logged and dropped; the next tick is the retry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.config import settings
from src.core.maintenance import expire_trials, reset_monthly_usage
from src.core.scanner import run_bill_reminder, run_budget_watcher, run_spending_alert

if TYPE_CHECKING:
    from src.ports.notification_port import PushPort
    from src.ports.store_port import UserStore

logger = logging.getLogger(__name__)


def _guarded(name: str, job: Callable[[], Awaitable[object]]) -> Callable[[], Awaitable[None]]:
    """Wrap a job so an invocation failure is recorded instead of raised."""

    async def _run() -> None:
        try:
            await job()
        except Exception:
            logger.exception("Scheduled job %s failed; next tick will rerun it", name)

    return _run


def build_scheduler(store: UserStore, push: PushPort) -> AsyncIOScheduler:
    """Create a scheduler with every periodic job registered (not started)."""
    tz = ZoneInfo(settings.TIMEZONE)
    scheduler = AsyncIOScheduler(timezone=tz)

    jobs: list[tuple[str, Callable[[], Awaitable[object]], CronTrigger]] = [
        (
            "budget_watcher",
            lambda: run_budget_watcher(store, push),
            CronTrigger(minute=0, timezone=tz),
        ),
        (
            "bill_reminder",
            lambda: run_bill_reminder(store, push, tz=tz),
            CronTrigger(hour=settings.BILL_REMINDER_HOUR, minute=0, timezone=tz),
        ),
        (
            "spending_alert",
            lambda: run_spending_alert(store, push),
            CronTrigger(hour="*/6", minute=0, timezone=tz),
        ),
        (
            "trial_expiry",
            lambda: expire_trials(store),
            CronTrigger(hour=0, minute=0, timezone=tz),
        ),
        (
            "monthly_usage_reset",
            lambda: reset_monthly_usage(store),
            CronTrigger(day=1, hour=0, minute=0, timezone=tz),
        ),
    ]

    for name, job, trigger in jobs:
        scheduler.add_job(
            _guarded(name, job),
            trigger=trigger,
            id=name,
            name=name,
            coalesce=True,
            max_instances=1,
        )

    logger.info("Registered %d scheduled jobs in %s", len(jobs), settings.TIMEZONE)
    return scheduler
