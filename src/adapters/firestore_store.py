"""Firestore adapter: implements UserStore on Cloud Firestore.

All Firestore-specific logic lives here. The SDK is synchronous, so every
call is wrapped with asyncio.to_thread. Document layout:

    users/{uid}                               user record
    users/{uid}/budgets/{id}                  Budget
    users/{uid}/recurringTransactions/{id}    RecurringTransaction
    users/{uid}/expenses/{id}                 Expense
    users/{uid}/analyticsEvents/{eventId}     analytics records
    users/{uid}/usage/monthly                 monthly usage sub-record
    analytics/{uid}                           AnalyticsSnapshot
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Iterator, TypeVar

from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from src.data.models import (
    AnalyticsSnapshot,
    Budget,
    Expense,
    RecurringTransaction,
    UserRecord,
    parse_documents,
)
from src.integrations.firebase_app import get_app
from src.ports.store_port import BatchWrite, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Firestore rejects batches with more than 500 writes
MAX_BATCH_WRITES = 500


class FirestoreStore:
    """Cloud Firestore implementation of UserStore."""

    def __init__(self, client: Any | None = None) -> None:
        self._client = client

    @property
    def db(self) -> Any:
        if self._client is None:
            self._client = firestore.client(app=get_app())
        return self._client

    def _user_ref(self, user_id: str) -> Any:
        return self.db.collection("users").document(user_id)

    async def _run(self, op: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except StoreError:
            raise
        except Exception as exc:
            logger.error("Firestore error (%s): %s", op, exc)
            raise StoreError(f"Firestore {op} failed: {exc}") from exc

    @staticmethod
    def _docs(docs: Any) -> Iterator[tuple[str, dict[str, Any]]]:
        return ((d.id, d.to_dict() or {}) for d in docs)

    @classmethod
    def _to_users(cls, docs: Any) -> list[UserRecord]:
        return parse_documents("user", cls._docs(docs), UserRecord.from_document)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def list_push_enabled_users(self) -> list[UserRecord]:
        query = self.db.collection("users").where(filter=FieldFilter("pushEnabled", "==", True))
        return await self._run("list_push_enabled_users", lambda: self._to_users(query.stream()))

    async def list_users(self) -> list[UserRecord]:
        return await self._run(
            "list_users", lambda: self._to_users(self.db.collection("users").stream()),
        )

    async def get_user(self, user_id: str) -> UserRecord | None:
        def _get() -> UserRecord | None:
            snap = self._user_ref(user_id).get()
            if not snap.exists:
                return None
            return UserRecord.from_document(snap.id, snap.to_dict() or {})

        return await self._run("get_user", _get)

    async def get_analytics(self, user_id: str) -> AnalyticsSnapshot | None:
        def _get() -> AnalyticsSnapshot | None:
            snap = self.db.collection("analytics").document(user_id).get()
            if not snap.exists:
                return None
            return AnalyticsSnapshot.from_document(snap.to_dict() or {})

        return await self._run("get_analytics", _get)

    async def list_budgets(self, user_id: str) -> list[Budget]:
        def _list() -> list[Budget]:
            docs = self._user_ref(user_id).collection("budgets").stream()
            return parse_documents("budget", self._docs(docs), Budget.from_document)

        return await self._run("list_budgets", _list)

    async def list_recurring_between(
        self, user_id: str, start: datetime, end: datetime,
    ) -> list[RecurringTransaction]:
        query = (
            self._user_ref(user_id).collection("recurringTransactions")
            .where(filter=FieldFilter("nextOccurrence", ">=", start))
            .where(filter=FieldFilter("nextOccurrence", "<", end))
        )
        return await self._run("list_recurring_between", lambda: parse_documents(
            "recurring transaction", self._docs(query.stream()),
            RecurringTransaction.from_document,
        ))

    async def list_expenses_between(
        self, user_id: str, start: datetime, end: datetime,
    ) -> list[Expense]:
        query = (
            self._user_ref(user_id).collection("expenses")
            .where(filter=FieldFilter("date", ">=", start))
            .where(filter=FieldFilter("date", "<", end))
        )
        return await self._run("list_expenses_between", lambda: parse_documents(
            "expense", self._docs(query.stream()), Expense.from_document,
        ))

    async def find_users_by_customer_id(self, customer_id: str) -> list[UserRecord]:
        # Two results are enough to tell "exactly one" from "ambiguous"
        query = (
            self.db.collection("users")
            .where(filter=FieldFilter("stripeCustomerId", "==", customer_id))
            .limit(2)
        )
        return await self._run("find_users_by_customer_id", lambda: self._to_users(query.stream()))

    async def list_trial_users(self, cutoff: datetime) -> list[UserRecord]:
        # An equality filter on hasPaid would skip documents that never set it
        query = (
            self.db.collection("users")
            .where(filter=FieldFilter("isPro", "==", True))
            .where(filter=FieldFilter("trialStart", "<=", cutoff))
        )

        def _list() -> list[UserRecord]:
            return [u for u in self._to_users(query.stream()) if not u.has_paid]

        return await self._run("list_trial_users", _list)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    async def update_user(self, user_id: str, patch: dict[str, Any]) -> None:
        await self._run("update_user", lambda: self._user_ref(user_id).set(patch, merge=True))

    def _stage(self, batch: Any, write: BatchWrite) -> None:
        user_ref = self._user_ref(write.user_id)
        if write.kind == "update":
            batch.set(user_ref, write.data, merge=True)
        elif write.kind == "event":
            if not write.event_id:
                raise StoreError("Analytics write requires an event_id")
            batch.set(user_ref.collection("analyticsEvents").document(write.event_id), write.data)
        elif write.kind == "clear_usage":
            batch.delete(user_ref.collection("usage").document("monthly"))
        else:
            raise StoreError(f"Unknown batch write kind: {write.kind!r}")

    async def commit_batch(self, writes: list[BatchWrite]) -> None:
        """Commit writes atomically, in WriteBatches of at most 500 writes.

        Each chunk is all-or-nothing; a population larger than one batch
        relies on the jobs being idempotent to recover from a partial run.
        """
        if not writes:
            return

        def _commit() -> None:
            for offset in range(0, len(writes), MAX_BATCH_WRITES):
                batch = self.db.batch()
                chunk = writes[offset:offset + MAX_BATCH_WRITES]
                for write in chunk:
                    self._stage(batch, write)
                batch.commit()
                logger.debug("Committed Firestore batch of %d write(s)", len(chunk))

        await self._run("commit_batch", _commit)
