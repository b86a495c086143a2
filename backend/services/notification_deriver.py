"""
Funil CRM - Notification Deriver

Pure function: (budgets, clients, now) -> notifications.
Never persisted, never patched: the consumer replaces its whole list with
the result of every call.
"""

from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Mapping, Optional, Union

from models.notification import Notification, NotificationType
from services.follow_up_scheduler import FollowUpTiming, classify_budget, follow_up_sort_key

UNKNOWN_CLIENT = "Unknown client"

_TIMING_TO_TYPE = {
    FollowUpTiming.OVERDUE: NotificationType.OVERDUE,
    FollowUpTiming.DUE_TODAY: NotificationType.TODAY,
}

_MESSAGES = {
    NotificationType.OVERDUE: "Follow-up overdue for {title}",
    NotificationType.TODAY: "Follow-up today for {title}",
}


def client_names(clients: Union[Iterable[dict], Mapping[str, str], None]) -> Dict[str, str]:
    """Accepts a list of client documents or an id -> name mapping"""
    if not clients:
        return {}
    if isinstance(clients, Mapping):
        return dict(clients)
    return {c["id"]: c.get("name") or UNKNOWN_CLIENT for c in clients if c.get("id")}


def derive_notifications(
    budgets: Iterable[dict],
    clients: Union[Iterable[dict], Mapping[str, str], None],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> List[Notification]:
    names = client_names(clients)
    ranked = []

    for budget in budgets:
        notification_type = _TIMING_TO_TYPE.get(classify_budget(budget, now, tz))
        if notification_type is None:
            continue

        notification = Notification(
            id=f"{notification_type.value}-{budget['id']}",
            type=notification_type,
            budget_id=budget["id"],
            message=_MESSAGES[notification_type].format(title=budget.get("title", "")),
            client_name=names.get(budget.get("client_id"), UNKNOWN_CLIENT),
        )
        rank = 0 if notification_type is NotificationType.OVERDUE else 1
        ranked.append((rank, follow_up_sort_key(budget["next_follow_up_date"], tz), budget["id"], notification))

    ranked.sort(key=lambda item: item[:3])
    return [item[3] for item in ranked]
