"""
Funil CRM - Task Board

Unified view of follow-ups and reminders:
- overdue / today / upcoming (follow-ups of open budgets + active reminders)
- stale: open budgets with no activity for stale_after_days days
- potential_value: sum of the open budgets with a scheduled follow-up
"""

from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Optional

from config import STALE_AFTER_DAYS
from services.follow_up_scheduler import (
    FollowUpTiming,
    classify_budget,
    days_since_last_activity,
    follow_up_day,
    follow_up_sort_key,
    is_stale,
    last_activity_at,
    local_today,
    parse_instant,
)
from services.formatting import to_amount
from services.notification_deriver import client_names


def _follow_up_task(budget: dict, timing: FollowUpTiming, names: Dict[str, str], tz) -> dict:
    return {
        "id": f"budget-{budget['id']}",
        "type": "follow_up",
        "date": follow_up_sort_key(budget["next_follow_up_date"], tz).isoformat(),
        "title": budget.get("title", ""),
        "client_name": names.get(budget.get("client_id")),
        "value": budget.get("value"),
        "budget_id": budget["id"],
        "is_overdue": timing is FollowUpTiming.OVERDUE,
        "is_today": timing is FollowUpTiming.DUE_TODAY,
    }


def _reminder_task(reminder: dict, now: datetime, tz) -> dict:
    instant = parse_instant(reminder["reminder_date_time"], tz)
    day = follow_up_day(instant, tz)
    today = local_today(now, tz)
    completed = bool(reminder.get("is_completed"))
    return {
        "id": f"reminder-{reminder['id']}",
        "type": "reminder",
        "date": instant.isoformat(),
        "title": reminder.get("title", ""),
        "reminder_id": reminder["id"],
        "is_completed": completed,
        "is_overdue": not completed and day < today,
        "is_today": not completed and day == today,
    }


def build_task_board(
    budgets: Iterable[dict],
    clients,
    reminders: Iterable[dict],
    now: datetime,
    tz: Optional[tzinfo] = None,
    stale_after_days: int = STALE_AFTER_DAYS,
) -> dict:
    names = client_names(clients)
    tasks: List[dict] = []
    stale: List[dict] = []
    potential_value = to_amount(0)

    for budget in budgets:
        if is_stale(budget, now, tz, stale_after_days):
            last = last_activity_at(budget, tz)
            stale.append({
                "id": f"stale-{budget['id']}",
                "type": "stale",
                "date": last.isoformat(),
                "title": budget.get("title", ""),
                "client_name": names.get(budget.get("client_id")),
                "value": budget.get("value"),
                "budget_id": budget["id"],
                "days_since": days_since_last_activity(budget, now, tz),
            })

        timing = classify_budget(budget, now, tz)
        if timing is FollowUpTiming.NONE:
            continue
        tasks.append(_follow_up_task(budget, timing, names, tz))
        potential_value += to_amount(budget.get("value") or 0)

    for reminder in reminders:
        if reminder.get("is_dismissed"):
            continue
        tasks.append(_reminder_task(reminder, now, tz))

    open_tasks = [t for t in tasks if not t.get("is_completed")]

    def by_date(task):
        return (datetime.fromisoformat(task["date"]), task["id"])

    return {
        "overdue": sorted((t for t in open_tasks if t["is_overdue"]), key=by_date),
        "today": sorted((t for t in open_tasks if t["is_today"]), key=by_date),
        "upcoming": sorted((t for t in open_tasks if not t["is_overdue"] and not t["is_today"]), key=by_date),
        "stale": sorted(stale, key=lambda t: datetime.fromisoformat(t["date"]), reverse=True),
        "potential_value": float(potential_value),
    }
