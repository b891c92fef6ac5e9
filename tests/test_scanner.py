"""Tests for src.core.scanner: the three alert jobs over a real local store."""

from datetime import timedelta
from zoneinfo import ZoneInfo

import pytest
from unittest.mock import AsyncMock, MagicMock

from src.core.scanner import (
    UserOutcome,
    run_bill_reminder,
    run_budget_watcher,
    run_spending_alert,
    scan,
)
from src.data.models import AlertKind
from src.ports.store_port import StoreError

BASE = "https://seva-finance-app.web.app"
NY = ZoneInfo("America/New_York")


# ---------------------------------------------------------------------------
# Budget watcher
# ---------------------------------------------------------------------------


class TestBudgetWatcher:
    @pytest.mark.asyncio
    async def test_alerts_over_threshold_users_only(self, finance_db, push, user_doc):
        finance_db.put_user("u1", user_doc())
        finance_db.put_analytics("u1", {"mtdByCategory": {"Food": 90, "Rent": 100}})
        finance_db.put_budget("u1", "b1", {"category": "Food", "amount": 100})
        finance_db.put_budget("u1", "b2", {"category": "Rent", "amount": 1000})

        finance_db.put_user("u2", user_doc(notificationPreferences={"budgetAlerts": False}))
        finance_db.put_analytics("u2", {"mtdByCategory": {"Food": 500}})
        finance_db.put_budget("u2", "b1", {"category": "Food", "amount": 100})

        finance_db.put_user("u3", user_doc())  # no analytics document

        finance_db.put_user("u4", user_doc(pushEnabled=False))

        report = await run_budget_watcher(finance_db, push, base_url=BASE)

        by_user = {o.user_id: o for o in report.outcomes}
        assert set(by_user) == {"u1", "u2", "u3"}
        assert by_user["u1"].status == "success"
        assert by_user["u2"].status == "skipped"
        assert by_user["u3"].status == "skipped"
        assert by_user["u3"].reason == "no analytics"

        assert len(report.intents) == 1
        assert report.intents[0].data["category"] == "Food"
        push.send.assert_awaited_once()
        assert report.deliveries[0].sent

    @pytest.mark.asyncio
    async def test_user_without_token_is_skipped(self, finance_db, push, user_doc):
        finance_db.put_user("u1", user_doc(pushToken=None))
        finance_db.put_analytics("u1", {"mtdByCategory": {"Food": 99}})
        finance_db.put_budget("u1", "b1", {"category": "Food", "amount": 100})

        report = await run_budget_watcher(finance_db, push, base_url=BASE)

        assert report.count("skipped") == 1
        push.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_user_does_not_abort_batch(self, finance_db, push, user_doc):
        finance_db.put_user("bad", user_doc(trialStart="not-a-date"))
        finance_db.put_analytics("bad", {"mtdByCategory": {"Food": 99}})
        finance_db.put_budget("bad", "b1", {"category": "Food", "amount": 100})

        finance_db.put_user("good", user_doc())
        finance_db.put_analytics("good", {"mtdByCategory": {"Food": 95}})
        finance_db.put_budget("good", "b1", {"category": "Food", "amount": 100})

        report = await run_budget_watcher(finance_db, push, base_url=BASE)

        assert [o.user_id for o in report.outcomes] == ["good"]
        assert len(report.intents) == 1
        assert report.intents[0].user_id == "good"
        push.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bad_budget_row_does_not_hide_valid_ones(self, finance_db, push, user_doc):
        finance_db.put_user("u1", user_doc())
        finance_db.put_analytics("u1", {"mtdByCategory": {"Food": 95, "Rent": 2000}})
        finance_db.put_budget("u1", "b0", {"category": "Rent", "amount": "n/a"})
        finance_db.put_budget("u1", "b1", {"category": "Food", "amount": 100})

        report = await run_budget_watcher(finance_db, push, base_url=BASE)

        assert report.outcomes[0].status == "success"
        assert [i.data["category"] for i in report.intents] == ["Food"]

    @pytest.mark.asyncio
    async def test_no_users(self, finance_db, push):
        report = await run_budget_watcher(finance_db, push, base_url=BASE)
        assert report.outcomes == []
        assert report.deliveries == []


# ---------------------------------------------------------------------------
# Bill reminder
# ---------------------------------------------------------------------------


class TestBillReminder:
    @pytest.mark.asyncio
    async def test_reminds_for_tomorrow_only(self, finance_db, push, user_doc, now):
        finance_db.put_user("u1", user_doc())
        # Window is 2026-03-11 00:00 to 2026-03-12 00:00 New York time
        finance_db.put_recurring("u1", "r1", {
            "amount": 15.99, "description": "Netflix",
            "nextOccurrence": "2026-03-11T13:00:00+00:00",
        })
        finance_db.put_recurring("u1", "r2", {
            "amount": 900, "description": "Rent",
            "nextOccurrence": "2026-03-20T13:00:00+00:00",
        })

        report = await run_bill_reminder(finance_db, push, now=now, tz=NY, base_url=BASE)

        assert [i.data["recurringId"] for i in report.intents] == ["r1"]
        assert report.intents[0].body == "Netflix is due tomorrow ($15.99)"
        push.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bad_bill_row_does_not_hide_valid_ones(self, finance_db, push, user_doc, now):
        finance_db.put_user("u1", user_doc())
        finance_db.put_recurring("u1", "r0", {"amount": 10})  # no nextOccurrence
        finance_db.put_recurring("u1", "r1", {
            "amount": 20, "category": "Gym",
            "nextOccurrence": "2026-03-11T12:00:00+00:00",
        })

        finance_db.put_user("u2", user_doc())
        finance_db.put_recurring("u2", "r2", {
            "amount": 30, "category": "Phone",
            "nextOccurrence": "2026-03-11T15:00:00+00:00",
        })

        report = await run_bill_reminder(finance_db, push, now=now, tz=NY, base_url=BASE)

        assert report.count("success") == 2
        assert sorted(i.data["recurringId"] for i in report.intents) == ["r1", "r2"]
        assert push.send.await_count == 2

    @pytest.mark.asyncio
    async def test_malformed_user_does_not_abort_batch(self, finance_db, push, user_doc, now):
        finance_db.put_user("bad", user_doc(trialStart="not-a-date"))
        finance_db.put_recurring("bad", "r0", {
            "amount": 10, "nextOccurrence": "2026-03-11T12:00:00+00:00",
        })

        finance_db.put_user("good", user_doc())
        finance_db.put_recurring("good", "r1", {
            "amount": 20, "category": "Gym",
            "nextOccurrence": "2026-03-11T12:00:00+00:00",
        })

        report = await run_bill_reminder(finance_db, push, now=now, tz=NY, base_url=BASE)

        assert [o.user_id for o in report.outcomes] == ["good"]
        assert [i.data["recurringId"] for i in report.intents] == ["r1"]
        push.send.assert_awaited_once()


# ---------------------------------------------------------------------------
# Spending alert
# ---------------------------------------------------------------------------


class TestSpendingAlert:
    @pytest.mark.asyncio
    async def test_counts_only_last_24_hours(self, finance_db, push, user_doc, now):
        finance_db.put_user("u1", user_doc())
        finance_db.put_analytics("u1", {"dailyAverage": 40})
        finance_db.put_expense("u1", "e1", {"amount": 70, "date": now - timedelta(hours=3)})
        finance_db.put_expense("u1", "e2", {"amount": 500, "date": now - timedelta(days=2)})

        report = await run_spending_alert(finance_db, push, now=now, base_url=BASE)

        assert len(report.intents) == 1
        intent = report.intents[0]
        assert intent.data["amount"] == "70"
        assert intent.priority == "normal"

    @pytest.mark.asyncio
    async def test_zero_average_sends_nothing(self, finance_db, push, user_doc, now):
        finance_db.put_user("u1", user_doc())
        finance_db.put_analytics("u1", {"dailyAverage": 0})
        finance_db.put_expense("u1", "e1", {"amount": 300, "date": now - timedelta(hours=1)})

        report = await run_spending_alert(finance_db, push, now=now, base_url=BASE)

        assert report.count("success") == 1
        assert report.intents == []
        push.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_user_and_expense_are_skipped(self, finance_db, push, user_doc, now):
        finance_db.put_user("bad", user_doc(scanCountThisMonth="abc"))
        finance_db.put_analytics("bad", {"dailyAverage": 10})
        finance_db.put_expense("bad", "e1", {"amount": 300, "date": now - timedelta(hours=1)})

        finance_db.put_user("good", user_doc())
        finance_db.put_analytics("good", {"dailyAverage": 40})
        finance_db.put_expense("good", "e0", {"amount": "n/a", "date": now - timedelta(hours=2)})
        finance_db.put_expense("good", "e1", {"amount": 70, "date": now - timedelta(hours=1)})

        report = await run_spending_alert(finance_db, push, now=now, base_url=BASE)

        assert [o.user_id for o in report.outcomes] == ["good"]
        assert [i.data["amount"] for i in report.intents] == ["70"]
        push.send.assert_awaited_once()


# ---------------------------------------------------------------------------
# Generic scan loop
# ---------------------------------------------------------------------------


class TestScan:
    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self, push):
        store = MagicMock()
        store.list_push_enabled_users = AsyncMock(side_effect=StoreError("unavailable"))

        with pytest.raises(StoreError):
            await scan("Budget Watcher", AlertKind.BUDGET_ALERT, store, push, AsyncMock())

    @pytest.mark.asyncio
    async def test_push_failure_does_not_fail_job(self, finance_db, user_doc):
        finance_db.put_user("u1", user_doc())
        finance_db.put_analytics("u1", {"mtdByCategory": {"Food": 95}})
        finance_db.put_budget("u1", "b1", {"category": "Food", "amount": 100})

        push = AsyncMock()
        push.send = AsyncMock(side_effect=RuntimeError("provider down"))

        report = await run_budget_watcher(finance_db, push, base_url=BASE)

        assert report.count("success") == 1
        assert [d.status for d in report.deliveries] == ["failed"]

    @pytest.mark.asyncio
    async def test_serial_concurrency_evaluates_everyone(self, finance_db, push, user_doc):
        for uid in ("u1", "u2", "u3"):
            finance_db.put_user(uid, user_doc())

        async def _evaluate(user):
            return UserOutcome(user_id=user.user_id, status="success")

        report = await scan(
            "Budget Watcher", AlertKind.BUDGET_ALERT, finance_db, push, _evaluate, concurrency=1,
        )

        assert sorted(o.user_id for o in report.outcomes) == ["u1", "u2", "u3"]
        assert report.count("success") == 3
