"""
SevaFinance Functions: Periodic Maintenance Jobs.

Bulk state transitions over the user set, each committed as one atomic
batch so a crash mid-sweep leaves nothing half-applied:

- trial expiry sweep (daily at local midnight): revoke Pro from unpaid
  users whose trial started TRIAL_DAYS or more ago
- monthly usage reset (1st of the month): zero scanCountThisMonth and
  drop the monthly usage sub-record for everyone

Both are safe to re-run: a second pass selects nobody new for the sweep
and rewrites zeros for the reset.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from src.config import settings
from src.ports.store_port import BatchWrite

if TYPE_CHECKING:
    from src.ports.store_port import UserStore

logger = logging.getLogger(__name__)


async def expire_trials(
    store: UserStore,
    now: datetime | None = None,
    trial_days: int | None = None,
) -> list[str]:
    """Flip isPro off for expired unpaid trials. Returns the affected user ids."""
    now = now or datetime.now(timezone.utc)
    trial_days = settings.TRIAL_DAYS if trial_days is None else trial_days
    cutoff = now - timedelta(days=trial_days)

    logger.info("Trial expiry sweep started (cutoff %s)", cutoff.isoformat())
    candidates = await store.list_trial_users(cutoff)
    expired = [
        u for u in candidates
        if u.is_pro and not u.has_paid and u.trial_start is not None and u.trial_start <= cutoff
    ]

    if not expired:
        logger.info("Trial expiry sweep completed: no expired trials")
        return []

    writes: list[BatchWrite] = []
    for user in expired:
        writes.append(BatchWrite(kind="update", user_id=user.user_id, data={"isPro": False}))
        writes.append(BatchWrite(
            kind="event",
            user_id=user.user_id,
            event_id=f"trial_expired_{user.trial_start.date().isoformat()}",
            data={
                "event": "trial_expired",
                "trialStart": user.trial_start,
                "timestamp": now,
            },
        ))

    await store.commit_batch(writes)
    logger.info("Trial expiry sweep completed: %d trial(s) expired", len(expired))
    return [u.user_id for u in expired]


async def reset_monthly_usage(store: UserStore) -> int:
    """Zero every user's monthly scan counter. Returns the number of users reset."""
    logger.info("Monthly usage reset started")
    users = await store.list_users()
    if not users:
        logger.info("Monthly usage reset completed: no users")
        return 0

    writes: list[BatchWrite] = []
    for user in users:
        writes.append(BatchWrite(kind="update", user_id=user.user_id, data={"scanCountThisMonth": 0}))
        writes.append(BatchWrite(kind="clear_usage", user_id=user.user_id))

    await store.commit_batch(writes)
    logger.info("Monthly usage reset completed: %d user(s) reset", len(users))
    return len(users)
