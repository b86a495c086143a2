"""
Funil CRM - Alert Board

Host-side holder of the latest derived alerts per (tenant, owner):
- follow-up notifications (replaced wholesale on every refresh)
- reminder evaluation + the one-slot surfaced reminder

The /notifications and /reminders/active endpoints read from here.
"""

from collections import defaultdict
from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Optional, Set, Tuple

from models.notification import Notification
from services.notification_deriver import derive_notifications
from services.reminder_engine import ReminderEvaluation, ReminderSlot

Key = Tuple[str, str]


def _by_owner(records: Iterable[dict]) -> Dict[str, List[dict]]:
    grouped = defaultdict(list)
    for record in records:
        grouped[record.get("owner_id")].append(record)
    return grouped


class AlertBoard:

    def __init__(self):
        self._notifications: Dict[Key, List[Notification]] = {}
        self._reminders: Dict[Key, ReminderEvaluation] = {}
        self._slots: Dict[Key, ReminderSlot] = {}

    def slot(self, tenant_id: str, owner_id: str) -> ReminderSlot:
        key = (tenant_id, owner_id)
        if key not in self._slots:
            self._slots[key] = ReminderSlot()
        return self._slots[key]

    def refresh_budgets(
        self,
        tenant_id: str,
        budgets: Iterable[dict],
        clients,
        now: datetime,
        tz: Optional[tzinfo] = None,
    ) -> Dict[str, List[Notification]]:
        fresh = {
            owner_id: derive_notifications(owned, clients, now, tz)
            for owner_id, owned in _by_owner(budgets).items()
        }
        for key in [k for k in self._notifications if k[0] == tenant_id]:
            del self._notifications[key]
        for owner_id, notifications in fresh.items():
            self._notifications[(tenant_id, owner_id)] = notifications
        return fresh

    def refresh_reminders(
        self,
        tenant_id: str,
        reminders: Iterable[dict],
        now: datetime,
        tz: Optional[tzinfo] = None,
    ) -> Dict[str, ReminderEvaluation]:
        grouped = _by_owner(reminders)
        # owners whose reminders all disappeared still need their slot cleared
        owners = set(grouped) | {k[1] for k in self._slots if k[0] == tenant_id}

        fresh = {}
        for owner_id in owners:
            fresh[owner_id] = self.slot(tenant_id, owner_id).evaluate(grouped.get(owner_id, []), now, tz)
        for key in [k for k in self._reminders if k[0] == tenant_id]:
            del self._reminders[key]
        for owner_id, evaluation in fresh.items():
            self._reminders[(tenant_id, owner_id)] = evaluation
        return fresh

    def tenants(self) -> Set[str]:
        """Tenants with any derived alert or slot held on the board"""
        keys = set(self._notifications) | set(self._reminders) | set(self._slots)
        return {tenant_id for tenant_id, _ in keys}

    def clear(self):
        self._notifications.clear()
        self._reminders.clear()
        self._slots.clear()

    def notifications(self, tenant_id: str, owner_id: str) -> List[Notification]:
        return list(self._notifications.get((tenant_id, owner_id), []))

    def reminder_evaluation(self, tenant_id: str, owner_id: str) -> ReminderEvaluation:
        return self._reminders.get((tenant_id, owner_id), ReminderEvaluation(None, []))


alert_board = AlertBoard()
