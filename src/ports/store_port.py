"""Store port: abstract interface for the user document database.

Core modules depend on this protocol, never on a specific database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from src.data.models import (
    AnalyticsSnapshot,
    Budget,
    Expense,
    RecurringTransaction,
    UserRecord,
)


class StoreError(Exception):
    """Raised when any database operation fails."""


@dataclass
class BatchWrite:
    """One write inside an atomic batch.

    kind "update" merges `data` into the user document; "event" stores an
    analytics record under `event_id`; "clear_usage" deletes the user's
    monthly usage sub-record.
    """

    kind: str
    user_id: str
    data: dict[str, Any] = field(default_factory=dict)
    event_id: str | None = None


class UserStore(Protocol):
    """Abstract document-store interface used by core modules."""

    async def list_push_enabled_users(self) -> list[UserRecord]: ...

    async def list_users(self) -> list[UserRecord]: ...

    async def get_user(self, user_id: str) -> UserRecord | None: ...

    async def get_analytics(self, user_id: str) -> AnalyticsSnapshot | None: ...

    async def list_budgets(self, user_id: str) -> list[Budget]: ...

    async def list_recurring_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[RecurringTransaction]: ...

    async def list_expenses_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[Expense]: ...

    async def find_users_by_customer_id(self, customer_id: str) -> list[UserRecord]: ...

    async def list_trial_users(self, cutoff: datetime) -> list[UserRecord]: ...

    async def update_user(self, user_id: str, patch: dict[str, Any]) -> None: ...

    async def commit_batch(self, writes: list[BatchWrite]) -> None: ...
