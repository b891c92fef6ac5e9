"""Tests for src.data.db: the SQLite-backed UserStore."""

from datetime import datetime, timedelta, timezone

import pytest

from src.data.db import FinanceDB
from src.ports.store_port import BatchWrite, StoreError


class TestInit:
    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "finance.db"
        FinanceDB(db_path=str(path))
        assert path.exists()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestUserQueries:
    @pytest.mark.asyncio
    async def test_push_enabled_filter(self, finance_db, user_doc):
        finance_db.put_user("u1", user_doc())
        finance_db.put_user("u2", user_doc(pushEnabled=False))
        finance_db.put_user("u3", {"email": "c@d.com"})

        users = await finance_db.list_push_enabled_users()
        assert [u.user_id for u in users] == ["u1"]
        assert [u.user_id for u in await finance_db.list_users()] == ["u1", "u2", "u3"]

    @pytest.mark.asyncio
    async def test_get_user(self, finance_db, user_doc):
        finance_db.put_user("u1", user_doc(email="x@y.com"))
        assert (await finance_db.get_user("u1")).email == "x@y.com"
        assert await finance_db.get_user("missing") is None

    @pytest.mark.asyncio
    async def test_find_by_customer_id(self, finance_db, user_doc):
        finance_db.put_user("u1", user_doc(stripeCustomerId="cus_1"))
        finance_db.put_user("u2", user_doc(stripeCustomerId="cus_2"))

        assert [u.user_id for u in await finance_db.find_users_by_customer_id("cus_2")] == ["u2"]
        assert await finance_db.find_users_by_customer_id("cus_none") == []

    @pytest.mark.asyncio
    async def test_trial_users(self, finance_db, user_doc, now):
        cutoff = now - timedelta(days=14)
        finance_db.put_user("old", user_doc(isPro=True, trialStart=now - timedelta(days=20)))
        finance_db.put_user("new", user_doc(isPro=True, trialStart=now - timedelta(days=2)))
        finance_db.put_user("paid", user_doc(isPro=True, hasPaid=True, trialStart=now - timedelta(days=20)))
        finance_db.put_user("free", user_doc(isPro=False, trialStart=now - timedelta(days=20)))

        users = await finance_db.list_trial_users(cutoff)
        assert [u.user_id for u in users] == ["old"]

    @pytest.mark.asyncio
    async def test_malformed_user_is_skipped(self, finance_db, user_doc):
        finance_db.put_user("bad", user_doc(trialStart="not-a-date"))
        finance_db.put_user("count", user_doc(scanCountThisMonth="abc"))
        finance_db.put_user("good", user_doc())

        assert [u.user_id for u in await finance_db.list_push_enabled_users()] == ["good"]
        assert [u.user_id for u in await finance_db.list_users()] == ["good"]


class TestChildCollections:
    @pytest.mark.asyncio
    async def test_analytics_missing_is_none(self, finance_db):
        assert await finance_db.get_analytics("u1") is None

    @pytest.mark.asyncio
    async def test_budgets(self, finance_db):
        finance_db.put_budget("u1", "b1", {"category": "Food", "amount": 100})
        finance_db.put_budget("u2", "b1", {"category": "Rent", "amount": 900})

        budgets = await finance_db.list_budgets("u1")
        assert [(b.id, b.category) for b in budgets] == [("b1", "Food")]

    @pytest.mark.asyncio
    async def test_recurring_range_is_half_open(self, finance_db):
        start = datetime(2026, 3, 11, 4, 0, tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        finance_db.put_recurring("u1", "at_start", {"amount": 1, "nextOccurrence": start})
        finance_db.put_recurring("u1", "at_end", {"amount": 1, "nextOccurrence": end})

        txns = await finance_db.list_recurring_between("u1", start, end)
        assert [t.id for t in txns] == ["at_start"]

    @pytest.mark.asyncio
    async def test_expenses_range(self, finance_db, now):
        finance_db.put_expense("u1", "in", {"amount": 5, "date": now - timedelta(hours=1)})
        finance_db.put_expense("u1", "out", {"amount": 5, "date": now - timedelta(days=3)})

        expenses = await finance_db.list_expenses_between("u1", now - timedelta(days=1), now)
        assert [e.id for e in expenses] == ["in"]

    @pytest.mark.asyncio
    async def test_malformed_budget_is_skipped(self, finance_db):
        finance_db.put_budget("u1", "b0", {"category": "Rent", "amount": "n/a"})
        finance_db.put_budget("u1", "b1", {"category": "Food", "amount": 100})

        budgets = await finance_db.list_budgets("u1")
        assert [(b.category, b.amount) for b in budgets] == [("Food", 100.0)]

    @pytest.mark.asyncio
    async def test_malformed_recurring_and_expenses_are_skipped(self, finance_db, now):
        start, end = now - timedelta(days=1), now + timedelta(days=1)
        finance_db.put_recurring("u1", "r0", {"amount": 10})
        finance_db.put_recurring("u1", "r1", {"amount": 10, "nextOccurrence": now})
        finance_db.put_expense("u1", "e0", {"amount": "lots", "date": now})
        finance_db.put_expense("u1", "e1", {"amount": 5, "date": "yesterday"})
        finance_db.put_expense("u1", "e2", {"amount": 5, "date": now})

        assert [t.id for t in await finance_db.list_recurring_between("u1", start, end)] == ["r1"]
        assert [e.id for e in await finance_db.list_expenses_between("u1", start, end)] == ["e2"]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestWrites:
    @pytest.mark.asyncio
    async def test_update_merges_fields(self, finance_db, user_doc):
        finance_db.put_user("u1", user_doc(email="keep@me.com"))
        await finance_db.update_user("u1", {"isPro": True})

        doc = finance_db.get_user_document("u1")
        assert doc["isPro"] is True
        assert doc["email"] == "keep@me.com"

    @pytest.mark.asyncio
    async def test_analytics_event_overwrites_by_id(self, finance_db):
        for payload in ({"event": "a"}, {"event": "b"}):
            await finance_db.commit_batch([
                BatchWrite(kind="event", user_id="u1", data=payload, event_id="evt_1"),
            ])

        assert finance_db.list_analytics_events("u1") == {"evt_1": {"event": "b"}}

    @pytest.mark.asyncio
    async def test_batch_is_atomic(self, finance_db, user_doc):
        finance_db.put_user("u1", user_doc(isPro=True))

        with pytest.raises(StoreError):
            await finance_db.commit_batch([
                BatchWrite(kind="update", user_id="u1", data={"isPro": False}),
                BatchWrite(kind="event", user_id="u1", data={"event": "x"}),  # no event_id
            ])

        assert finance_db.get_user_document("u1")["isPro"] is True

    @pytest.mark.asyncio
    async def test_unknown_write_kind_rolls_back(self, finance_db, user_doc):
        finance_db.put_user("u1", user_doc(scanCountThisMonth=3))

        with pytest.raises(StoreError):
            await finance_db.commit_batch([
                BatchWrite(kind="update", user_id="u1", data={"scanCountThisMonth": 0}),
                BatchWrite(kind="delete_everything", user_id="u1"),
            ])

        assert finance_db.get_user_document("u1")["scanCountThisMonth"] == 3

    @pytest.mark.asyncio
    async def test_clear_usage(self, finance_db):
        finance_db.put_usage("u1", {"scans": 3})
        await finance_db.commit_batch([BatchWrite(kind="clear_usage", user_id="u1")])
        assert finance_db.get_usage("u1") is None

    @pytest.mark.asyncio
    async def test_empty_batch_is_noop(self, finance_db):
        await finance_db.commit_batch([])
