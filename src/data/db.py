"""
SevaFinance Functions: Local Document Database.

SQLite-backed implementation of the UserStore port for local development
and tests. Each collection is a table of JSON documents keyed the same
way the production document database keys them, so the core modules see
identical shapes from either backend.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from src.data.models import (
    AnalyticsSnapshot,
    Budget,
    Expense,
    RecurringTransaction,
    UserRecord,
    as_datetime,
    parse_documents,
)
from src.ports.store_port import BatchWrite, StoreError

logger = logging.getLogger(__name__)

_TABLES = {
    "users": "user_id TEXT PRIMARY KEY, data TEXT NOT NULL",
    "analytics": "user_id TEXT PRIMARY KEY, data TEXT NOT NULL",
    "usage": "user_id TEXT PRIMARY KEY, data TEXT NOT NULL",
    "budgets": "user_id TEXT NOT NULL, id TEXT NOT NULL, data TEXT NOT NULL, PRIMARY KEY (user_id, id)",
    "recurring_transactions": "user_id TEXT NOT NULL, id TEXT NOT NULL, data TEXT NOT NULL, PRIMARY KEY (user_id, id)",
    "expenses": "user_id TEXT NOT NULL, id TEXT NOT NULL, data TEXT NOT NULL, PRIMARY KEY (user_id, id)",
    "analytics_events": "user_id TEXT NOT NULL, id TEXT NOT NULL, data TEXT NOT NULL, PRIMARY KEY (user_id, id)",
}


def _encode(value: Any) -> str:
    def _default(obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

    return json.dumps(value, default=_default)


def _decode(raw: str) -> dict[str, Any]:
    return json.loads(raw)


class FinanceDB:
    """SQLite-backed document store implementing UserStore."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            for table, columns in _TABLES.items():
                conn.execute(f"CREATE TABLE IF NOT EXISTS {table} ({columns})")
        logger.debug("Finance tables initialized at %s", self._db_path)

    def _query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        try:
            with self._connect() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            logger.error("SQLite error (%s): %s", sql.split()[0], exc)
            raise StoreError(f"Query failed: {exc}") from exc

    # -----------------------------------------------------------------------
    # Document writes (seeding and local tooling)
    # -----------------------------------------------------------------------

    def put_user(self, user_id: str, data: dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO users (user_id, data) VALUES (?, ?)",
                (user_id, _encode(data)),
            )

    def put_analytics(self, user_id: str, data: dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO analytics (user_id, data) VALUES (?, ?)",
                (user_id, _encode(data)),
            )

    def put_usage(self, user_id: str, data: dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO usage (user_id, data) VALUES (?, ?)",
                (user_id, _encode(data)),
            )

    def _put_child(self, table: str, user_id: str, doc_id: str, data: dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {table} (user_id, id, data) VALUES (?, ?, ?)",
                (user_id, doc_id, _encode(data)),
            )

    def put_budget(self, user_id: str, budget_id: str, data: dict[str, Any]) -> None:
        self._put_child("budgets", user_id, budget_id, data)

    def put_recurring(self, user_id: str, recurring_id: str, data: dict[str, Any]) -> None:
        self._put_child("recurring_transactions", user_id, recurring_id, data)

    def put_expense(self, user_id: str, expense_id: str, data: dict[str, Any]) -> None:
        self._put_child("expenses", user_id, expense_id, data)

    # -----------------------------------------------------------------------
    # Document reads (raw)
    # -----------------------------------------------------------------------

    def get_user_document(self, user_id: str) -> dict[str, Any] | None:
        rows = self._query("SELECT data FROM users WHERE user_id = ?", (user_id,))
        return _decode(rows[0]["data"]) if rows else None

    def get_usage(self, user_id: str) -> dict[str, Any] | None:
        rows = self._query("SELECT data FROM usage WHERE user_id = ?", (user_id,))
        return _decode(rows[0]["data"]) if rows else None

    def list_analytics_events(self, user_id: str) -> dict[str, dict[str, Any]]:
        rows = self._query(
            "SELECT id, data FROM analytics_events WHERE user_id = ? ORDER BY id", (user_id,),
        )
        return {r["id"]: _decode(r["data"]) for r in rows}

    # -----------------------------------------------------------------------
    # UserStore port
    # -----------------------------------------------------------------------

    @staticmethod
    def _rows_to_users(rows: list[sqlite3.Row]) -> list[UserRecord]:
        return parse_documents(
            "user", ((r["user_id"], _decode(r["data"])) for r in rows), UserRecord.from_document,
        )

    @staticmethod
    def _child_docs(rows: list[sqlite3.Row]) -> Iterator[tuple[str, dict[str, Any]]]:
        return ((r["id"], _decode(r["data"])) for r in rows)

    async def list_push_enabled_users(self) -> list[UserRecord]:
        rows = self._query(
            "SELECT user_id, data FROM users "
            "WHERE json_extract(data, '$.pushEnabled') = 1 ORDER BY user_id"
        )
        return self._rows_to_users(rows)

    async def list_users(self) -> list[UserRecord]:
        rows = self._query("SELECT user_id, data FROM users ORDER BY user_id")
        return self._rows_to_users(rows)

    async def get_user(self, user_id: str) -> UserRecord | None:
        data = self.get_user_document(user_id)
        if data is None:
            return None
        return UserRecord.from_document(user_id, data)

    async def get_analytics(self, user_id: str) -> AnalyticsSnapshot | None:
        rows = self._query("SELECT data FROM analytics WHERE user_id = ?", (user_id,))
        if not rows:
            return None
        return AnalyticsSnapshot.from_document(_decode(rows[0]["data"]))

    async def list_budgets(self, user_id: str) -> list[Budget]:
        rows = self._query(
            "SELECT id, data FROM budgets WHERE user_id = ? ORDER BY id", (user_id,),
        )
        return parse_documents("budget", self._child_docs(rows), Budget.from_document)

    async def list_recurring_between(
        self, user_id: str, start: datetime, end: datetime,
    ) -> list[RecurringTransaction]:
        rows = self._query(
            "SELECT id, data FROM recurring_transactions WHERE user_id = ? ORDER BY id",
            (user_id,),
        )
        txns = parse_documents(
            "recurring transaction", self._child_docs(rows), RecurringTransaction.from_document,
        )
        return [t for t in txns if start <= t.next_occurrence < end]

    async def list_expenses_between(
        self, user_id: str, start: datetime, end: datetime,
    ) -> list[Expense]:
        rows = self._query(
            "SELECT id, data FROM expenses WHERE user_id = ? ORDER BY id", (user_id,),
        )
        expenses = parse_documents("expense", self._child_docs(rows), Expense.from_document)
        return [e for e in expenses if start <= e.date < end]

    async def find_users_by_customer_id(self, customer_id: str) -> list[UserRecord]:
        rows = self._query(
            "SELECT user_id, data FROM users "
            "WHERE json_extract(data, '$.stripeCustomerId') = ? ORDER BY user_id",
            (customer_id,),
        )
        return self._rows_to_users(rows)

    async def list_trial_users(self, cutoff: datetime) -> list[UserRecord]:
        rows = self._query(
            "SELECT user_id, data FROM users "
            "WHERE json_extract(data, '$.isPro') = 1 "
            "AND COALESCE(json_extract(data, '$.hasPaid'), 0) = 0 "
            "ORDER BY user_id"
        )
        # trialStart may be stored in mixed ISO offsets; compare as datetimes
        return [
            u for u in self._rows_to_users(rows)
            if u.trial_start is not None and u.trial_start <= as_datetime(cutoff)
        ]

    async def update_user(self, user_id: str, patch: dict[str, Any]) -> None:
        await self.commit_batch([BatchWrite(kind="update", user_id=user_id, data=patch)])

    async def commit_batch(self, writes: list[BatchWrite]) -> None:
        """Apply all writes in one transaction; any failure rolls back all of them."""
        if not writes:
            return
        try:
            with self._connect() as conn:
                for write in writes:
                    self._apply(conn, write)
        except (sqlite3.Error, ValueError) as exc:
            logger.error("Batch of %d write(s) rolled back: %s", len(writes), exc)
            raise StoreError(f"Batch commit failed: {exc}") from exc
        logger.debug("Committed batch of %d write(s)", len(writes))

    @staticmethod
    def _apply(conn: sqlite3.Connection, write: BatchWrite) -> None:
        if write.kind == "update":
            row = conn.execute(
                "SELECT data FROM users WHERE user_id = ?", (write.user_id,),
            ).fetchone()
            doc = _decode(row["data"]) if row else {}
            doc.update(write.data)
            conn.execute(
                "INSERT OR REPLACE INTO users (user_id, data) VALUES (?, ?)",
                (write.user_id, _encode(doc)),
            )
        elif write.kind == "event":
            if not write.event_id:
                raise ValueError("Analytics write requires an event_id")
            conn.execute(
                "INSERT OR REPLACE INTO analytics_events (user_id, id, data) VALUES (?, ?, ?)",
                (write.user_id, write.event_id, _encode(write.data)),
            )
        elif write.kind == "clear_usage":
            conn.execute("DELETE FROM usage WHERE user_id = ?", (write.user_id,))
        else:
            raise ValueError(f"Unknown batch write kind: {write.kind!r}")
