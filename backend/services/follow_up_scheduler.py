"""
Funil CRM - Follow-up Scheduler

Classifies a budget's next_follow_up_date against the clock:
none | future | due_today | overdue.

- Calendar-day granularity in the tenant timezone, even when the stored
  date carries a time of day.
- Only budgets in SCHEDULABLE_STATUSES are classified; the status is
  re-checked here even though terminal transitions clear the date.
"""

import logging
from datetime import date, datetime, time, tzinfo
from enum import Enum
from typing import Optional, Union

from config import DEFAULT_TIMEZONE, STALE_AFTER_DAYS
from models.budget import BudgetStatus, SCHEDULABLE_STATUSES
from services.errors import ValidationError
from services.settings import get_timezone

logger = logging.getLogger("follow_up_scheduler")

DateLike = Union[str, date, datetime, None]


class FollowUpTiming(str, Enum):
    NONE = "none"
    FUTURE = "future"
    DUE_TODAY = "due_today"
    OVERDUE = "overdue"


def default_tz() -> tzinfo:
    return get_timezone(DEFAULT_TIMEZONE)


def localize(dt: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Attach `tz` to a naive wall-clock datetime (pytz zones need localize)"""
    tz = tz or default_tz()
    if hasattr(tz, "localize"):
        return tz.localize(dt)
    return dt.replace(tzinfo=tz)


def parse_instant(value: Union[str, datetime], tz: Optional[tzinfo] = None) -> datetime:
    """
    ISO string / datetime -> timezone-aware datetime.
    Naive values are wall-clock time in `tz`.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = localize(dt, tz)
    return dt


def normalize_follow_up_date(value: DateLike) -> Optional[str]:
    """
    Validates a follow-up date before it is written.
    Accepts "YYYY-MM-DD", "YYYY-MM-DDTHH:MM[:SS]" (with or without offset),
    date or datetime. Empty -> None (clears the schedule).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    if not text:
        return None
    try:
        if len(text) == 10:
            return date.fromisoformat(text).isoformat()
        parse_instant(text)
    except ValueError:
        raise ValidationError(f"Invalid follow-up date: {value!r}")
    return text


def follow_up_day(value: DateLike, tz: Optional[tzinfo] = None) -> Optional[date]:
    """Calendar day of a stored follow-up date, in the tenant timezone"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return value
    else:
        text = str(value).strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        dt = parse_instant(text, tz)
    if dt.tzinfo is None:
        return dt.date()
    return dt.astimezone(tz or default_tz()).date()


def local_today(now: datetime, tz: Optional[tzinfo] = None) -> date:
    """Naive `now` is wall-clock time in `tz`, like stored dates"""
    if now.tzinfo is None:
        now = localize(now, tz)
    return now.astimezone(tz or default_tz()).date()


def classify_follow_up(
    next_follow_up_date: DateLike,
    status: Union[str, BudgetStatus],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> FollowUpTiming:
    try:
        status = BudgetStatus(status)
    except ValueError:
        logger.warning(f"[SCHEDULER] Unknown budget status '{status}', not classified")
        return FollowUpTiming.NONE

    if status not in SCHEDULABLE_STATUSES or not next_follow_up_date:
        return FollowUpTiming.NONE

    try:
        day = follow_up_day(next_follow_up_date, tz)
    except ValueError:
        logger.warning(f"[SCHEDULER] Unparseable follow-up date {next_follow_up_date!r}")
        return FollowUpTiming.NONE

    today = local_today(now, tz)
    if day < today:
        return FollowUpTiming.OVERDUE
    if day == today:
        return FollowUpTiming.DUE_TODAY
    return FollowUpTiming.FUTURE


def classify_budget(budget: dict, now: datetime, tz: Optional[tzinfo] = None) -> FollowUpTiming:
    return classify_follow_up(budget.get("next_follow_up_date"), budget.get("status"), now, tz)


def follow_up_sort_key(value: DateLike, tz: Optional[tzinfo] = None) -> datetime:
    """Instant used to order follow-ups; date-only values sort at local midnight"""
    tz = tz or default_tz()
    if isinstance(value, date) and not isinstance(value, datetime):
        return localize(datetime.combine(value, time.min), tz)
    text = str(value).strip()
    if len(text) == 10:
        return localize(datetime.combine(date.fromisoformat(text), time.min), tz)
    return parse_instant(value, tz)


# ==================== STALE BUDGETS ====================

def last_activity_at(budget: dict, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Most recent follow-up timestamp, else the day the budget was sent"""
    tz = tz or default_tz()
    stamps = []
    for follow_up in budget.get("follow_ups") or []:
        created_at = follow_up.get("created_at")
        if not created_at:
            continue
        try:
            stamps.append(parse_instant(created_at, tz))
        except ValueError:
            logger.warning(f"[SCHEDULER] Bad follow-up timestamp on budget {budget.get('id')}")
    if stamps:
        return max(stamps)

    date_sent = budget.get("date_sent")
    if not date_sent:
        return None
    try:
        return follow_up_sort_key(date_sent, tz)
    except ValueError:
        return None


def days_since_last_activity(budget: dict, now: datetime, tz: Optional[tzinfo] = None) -> Optional[int]:
    last = last_activity_at(budget, tz)
    if last is None:
        return None
    return (local_today(now, tz) - last.astimezone(tz or default_tz()).date()).days


def is_stale(budget: dict, now: datetime, tz: Optional[tzinfo] = None, threshold_days: int = STALE_AFTER_DAYS) -> bool:
    """Open budget (sent / following_up) with no activity for threshold_days or more"""
    if budget.get("status") not in {s.value for s in SCHEDULABLE_STATUSES}:
        return False
    days = days_since_last_activity(budget, now, tz)
    return days is not None and days >= threshold_days
