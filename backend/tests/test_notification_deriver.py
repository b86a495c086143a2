"""
Tests - dérivation des notifications de relance (fonction pure)
"""

from datetime import datetime

from models.notification import NotificationType
from services.notification_deriver import UNKNOWN_CLIENT, derive_notifications
from tests.conftest import NOW, SAO_PAULO, make_budget


class TestDeriveNotifications:

    def test_yesterday_follow_up_is_overdue(self, clients):
        budget = make_budget(value=1000, status="sent", next_follow_up_date="2026-03-09")

        notifications = derive_notifications([budget], clients, NOW, SAO_PAULO)

        assert len(notifications) == 1
        notification = notifications[0]
        assert notification.type is NotificationType.OVERDUE
        assert notification.id == "overdue-budget-1"
        assert notification.budget_id == "budget-1"
        assert notification.client_name == "Padaria Central"
        assert notification.message == "Follow-up overdue for Painéis solares"

    def test_today(self, clients):
        budget = make_budget(status="following_up", next_follow_up_date="2026-03-10")
        [notification] = derive_notifications([budget], clients, NOW, SAO_PAULO)
        assert notification.type is NotificationType.TODAY
        assert notification.id == "today-budget-1"

    def test_at_most_one_per_budget_and_never_for_closed(self, clients):
        budgets = [
            make_budget(id="b1", next_follow_up_date="2026-03-01"),
            make_budget(id="b2", next_follow_up_date="2026-03-10"),
            make_budget(id="b3", next_follow_up_date="2026-03-20"),
            make_budget(id="b4", status="invoiced", next_follow_up_date="2026-03-01"),
            make_budget(id="b5", status="lost", next_follow_up_date="2026-03-10"),
            make_budget(id="b6", status="on_hold", next_follow_up_date="2026-03-01"),
            make_budget(id="b7", next_follow_up_date=None),
        ]

        notifications = derive_notifications(budgets, clients, NOW, SAO_PAULO)

        budget_ids = [n.budget_id for n in notifications]
        assert sorted(budget_ids) == ["b1", "b2"]
        assert len(budget_ids) == len(set(budget_ids))

    def test_overdue_first_then_by_date_then_id(self, clients):
        budgets = [
            make_budget(id="b-today", next_follow_up_date="2026-03-10"),
            make_budget(id="b-late-2", next_follow_up_date="2026-03-05"),
            make_budget(id="b-late-1", next_follow_up_date="2026-03-05"),
            make_budget(id="b-oldest", next_follow_up_date="2026-02-20"),
        ]
        notifications = derive_notifications(budgets, clients, NOW, SAO_PAULO)
        assert [n.budget_id for n in notifications] == ["b-oldest", "b-late-1", "b-late-2", "b-today"]

    def test_unknown_client(self):
        budget = make_budget(client_id="ghost", next_follow_up_date="2026-03-09")
        [notification] = derive_notifications([budget], [], NOW, SAO_PAULO)
        assert notification.client_name == UNKNOWN_CLIENT

    def test_clients_as_mapping(self):
        budget = make_budget(next_follow_up_date="2026-03-09")
        [notification] = derive_notifications([budget], {"client-1": "Padaria Central"}, NOW, SAO_PAULO)
        assert notification.client_name == "Padaria Central"

    def test_rederivation_is_idempotent(self, clients):
        budgets = [make_budget(id=f"b{i}", next_follow_up_date=f"2026-03-0{i}") for i in range(1, 10)]
        first = derive_notifications(budgets, clients, NOW, SAO_PAULO)
        second = derive_notifications(list(reversed(budgets)), clients, NOW, SAO_PAULO)
        assert first == second

    def test_no_budgets(self, clients):
        assert derive_notifications([], clients, NOW, SAO_PAULO) == []

    def test_naive_now_at_local_midnight(self, clients):
        """Naive now is tenant wall clock, not UTC"""
        budget = make_budget(next_follow_up_date="2026-03-09")
        [notification] = derive_notifications([budget], clients, datetime(2026, 3, 10), SAO_PAULO)
        assert notification.type is NotificationType.OVERDUE
