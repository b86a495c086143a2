"""
Tests - AlertScheduler / AlertBoard: re-dérivation sur écriture et sur tick
"""

import pytest

from scheduler_service import AlertScheduler
from services import budget_lifecycle, reminder_engine
from services.alert_board import AlertBoard
from services.record_store import BUDGETS, CLIENTS, REMINDERS
from tests.conftest import NOW, OWNER, TENANT, make_budget, make_reminder


@pytest.fixture
def board():
    return AlertBoard()


@pytest.fixture
def scheduler(store, board):
    return AlertScheduler(store, board, interval_seconds=60)


class TestRefresh:

    @pytest.mark.asyncio
    async def test_tick_derives_notifications(self, store, board, scheduler, clients):
        store.seed(CLIENTS, *clients)
        store.seed(BUDGETS, make_budget(next_follow_up_date="2026-03-09"))

        await scheduler.refresh_all(now=NOW)

        [notification] = board.notifications(TENANT, OWNER)
        assert notification.id == "overdue-budget-1"
        assert notification.client_name == "Padaria Central"

    @pytest.mark.asyncio
    async def test_tick_is_not_truncated(self, store, board, scheduler):
        store.seed(BUDGETS, *[
            make_budget(id=f"budget-{i:04d}", next_follow_up_date="2026-03-09") for i in range(1200)
        ])

        await scheduler.refresh_all(now=NOW)

        assert len(board.notifications(TENANT, OWNER)) == 1200

    @pytest.mark.asyncio
    async def test_refresh_replaces_previous_list(self, store, board, scheduler):
        store.seed(BUDGETS, make_budget(next_follow_up_date="2026-03-09"))
        await scheduler.refresh_all(now=NOW)
        assert len(board.notifications(TENANT, OWNER)) == 1

        await budget_lifecycle.change_status(store, "budget-1", TENANT, "invoiced", now=NOW)
        await scheduler.refresh_all(now=NOW)
        assert board.notifications(TENANT, OWNER) == []

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, store, board, scheduler):
        store.seed(BUDGETS, make_budget(next_follow_up_date="2026-03-09"))
        store.seed(BUDGETS, make_budget(id="budget-b", tenant_id="tenant-b", next_follow_up_date="2026-03-10"))

        await scheduler.refresh_all(now=NOW)

        assert [n.budget_id for n in board.notifications(TENANT, OWNER)] == ["budget-1"]
        assert [n.budget_id for n in board.notifications("tenant-b", OWNER)] == ["budget-b"]

    @pytest.mark.asyncio
    async def test_reminder_slot_follows_dismiss(self, store, board, scheduler):
        store.seed(REMINDERS, make_reminder(reminder_date_time="2026-03-10T14:00:00+00:00"))

        await scheduler.refresh_tenant(TENANT, now=NOW)
        assert board.reminder_evaluation(TENANT, OWNER).triggering["id"] == "reminder-1"

        await reminder_engine.dismiss_reminder(store, "reminder-1", TENANT, slot=board.slot(TENANT, OWNER))
        await scheduler.refresh_tenant(TENANT, now=NOW)
        assert board.reminder_evaluation(TENANT, OWNER).triggering is None

    @pytest.mark.asyncio
    async def test_deleted_reminder_clears_slot(self, store, board, scheduler):
        store.seed(REMINDERS, make_reminder(reminder_date_time="2026-03-10T14:00:00+00:00"))
        await scheduler.refresh_tenant(TENANT, now=NOW)

        store.collections[REMINDERS].clear()
        await scheduler.refresh_tenant(TENANT, now=NOW)
        assert board.reminder_evaluation(TENANT, OWNER).triggering is None
        assert board.slot(TENANT, OWNER).reminder_id is None


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_write_triggers_rederivation(self, store, board, scheduler):
        scheduler.start()
        try:
            assert scheduler.scheduler.get_job("alert_refresh") is not None
            assert scheduler.scheduler.get_job("alert_day_boundary") is not None

            # far in the past: overdue whatever the wall clock says
            await budget_lifecycle.create_budget(
                store, TENANT, OWNER,
                {"client_id": "client-1", "title": "Telhado", "value": 900,
                 "date_sent": "2020-01-01", "next_follow_up_date": "2020-01-02"},
            )
            [notification] = board.notifications(TENANT, OWNER)
            assert notification.type.value == "overdue"
        finally:
            scheduler.stop()

    @pytest.mark.asyncio
    async def test_deleting_tenant_last_reminder_clears_board(self, store, board, scheduler):
        store.seed(REMINDERS, make_reminder(reminder_date_time="2026-03-10T14:00:00+00:00"))
        store.seed(REMINDERS, make_reminder(id="reminder-b", tenant_id="tenant-b"))
        scheduler.subscribe()
        try:
            await scheduler.refresh_all(now=NOW)
            assert board.reminder_evaluation(TENANT, OWNER).triggering["id"] == "reminder-1"

            await reminder_engine.delete_reminder(store, "reminder-1", TENANT)

            evaluation = board.reminder_evaluation(TENANT, OWNER)
            assert evaluation.triggering is None
            assert evaluation.sorted == []
            assert board.reminder_evaluation("tenant-b", OWNER).triggering is not None
        finally:
            scheduler.stop()

    @pytest.mark.asyncio
    async def test_deleting_tenant_last_budget_clears_board(self, store, board, scheduler):
        store.seed(BUDGETS, make_budget(next_follow_up_date="2020-01-02"))
        scheduler.subscribe()
        try:
            await scheduler.refresh_all()
            assert len(board.notifications(TENANT, OWNER)) == 1

            await store.delete(BUDGETS, "budget-1", tenant_id=TENANT)
            assert board.notifications(TENANT, OWNER) == []
        finally:
            scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, store, board, scheduler):
        scheduler.start()
        scheduler.stop()

        store.seed(BUDGETS, make_budget(next_follow_up_date="2020-01-02"))
        await store.notify(BUDGETS, TENANT)
        assert board.notifications(TENANT, OWNER) == []

    @pytest.mark.asyncio
    async def test_listener_error_does_not_fail_write(self, store):
        async def broken(records):
            raise RuntimeError("boom")

        store.subscribe(BUDGETS, {}, broken)
        budget = await budget_lifecycle.create_budget(
            store, TENANT, OWNER,
            {"client_id": "client-1", "title": "Telhado", "value": 900, "date_sent": "2026-03-02"},
        )
        assert store.all(BUDGETS)[0]["id"] == budget["id"]
