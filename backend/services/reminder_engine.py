"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Funil CRM - Reminder Engine                                                 ║
║                                                                              ║
║  Lembretes autonomes (indépendants des budgets)                              ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - triggering  <=> !is_dismissed && !is_completed && date_time <= now        ║
║    (comparaison à l'instant près, pas au jour calendaire)                    ║
║  - is_dismissed=True est définitif: plus jamais triggering                   ║
║  - toggle ne touche que is_completed                                         ║
║  - UN SEUL rappel affiché à la fois (ReminderSlot), conservé jusqu'au        ║
║    dismiss; sélection = le plus ancien dû, puis id                           ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from datetime import datetime, tzinfo
from typing import Iterable, List, NamedTuple, Optional

from config import new_id, now_iso
from services.errors import NotFoundError, ValidationError
from services.event_logger import log_event
from services.follow_up_scheduler import localize, parse_instant
from services.record_store import REMINDERS

logger = logging.getLogger("reminder_engine")


class ReminderEvaluation(NamedTuple):
    triggering: Optional[dict]
    sorted: List[dict]


def _instant(reminder: dict, tz: Optional[tzinfo] = None) -> datetime:
    return parse_instant(reminder["reminder_date_time"], tz)


def _aware(now: datetime, tz: Optional[tzinfo] = None) -> datetime:
    return now if now.tzinfo else localize(now, tz)


def is_triggering(reminder: dict, now: datetime, tz: Optional[tzinfo] = None) -> bool:
    if reminder.get("is_dismissed") or reminder.get("is_completed"):
        return False
    return _instant(reminder, tz) <= _aware(now, tz)


def sort_reminders(reminders: Iterable[dict], tz: Optional[tzinfo] = None) -> List[dict]:
    """Incomplete first, then ascending date time (id breaks ties)"""
    return sorted(
        reminders,
        key=lambda r: (bool(r.get("is_completed")), _instant(r, tz), r.get("id", "")),
    )


def evaluate_reminders(
    reminders: Iterable[dict],
    now: datetime,
    surfaced_id: Optional[str] = None,
    tz: Optional[tzinfo] = None,
) -> ReminderEvaluation:
    """
    Returns the reminder to surface (or None) and the listing order.

    A reminder already surfaced (surfaced_id) keeps the slot while it is
    still triggering; newly due reminders wait for it to be dismissed.
    Dismissed reminders are left out of the listing.
    """
    active = [r for r in reminders if not r.get("is_dismissed")]
    listing = sort_reminders(active, tz)
    due = [r for r in listing if is_triggering(r, now, tz)]

    triggering = None
    if surfaced_id:
        triggering = next((r for r in due if r.get("id") == surfaced_id), None)
    if triggering is None and due:
        # listing order == earliest due first among incomplete reminders
        triggering = due[0]

    return ReminderEvaluation(triggering=triggering, sorted=listing)


class ReminderSlot:
    """One-slot holder for the reminder currently surfaced to a user"""

    def __init__(self):
        self.reminder_id: Optional[str] = None

    def evaluate(self, reminders: Iterable[dict], now: datetime, tz: Optional[tzinfo] = None) -> ReminderEvaluation:
        result = evaluate_reminders(reminders, now, self.reminder_id, tz)
        self.reminder_id = result.triggering["id"] if result.triggering else None
        return result

    def release(self, reminder_id: Optional[str] = None):
        if reminder_id is None or reminder_id == self.reminder_id:
            self.reminder_id = None


# ════════════════════════════════════════════════════════════════════════════
# OPERATIONS
# ════════════════════════════════════════════════════════════════════════════

def _normalize_date_time(value, tz: Optional[tzinfo]) -> str:
    if not value:
        raise ValidationError("reminder_date_time is required")
    try:
        return parse_instant(value, tz).isoformat()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid reminder date time: {value!r}")


async def _load_reminder(store, reminder_id: str, tenant_id: str) -> dict:
    reminder = await store.get(REMINDERS, reminder_id, tenant_id)
    if not reminder:
        raise NotFoundError(REMINDERS, reminder_id)
    return reminder


async def create_reminder(
    store,
    tenant_id: str,
    owner_id: str,
    title: str,
    reminder_date_time,
    tz: Optional[tzinfo] = None,
) -> dict:
    if not title or not title.strip():
        raise ValidationError("Reminder title is required")

    now = now_iso()
    reminder = {
        "id": new_id(),
        "tenant_id": tenant_id,
        "owner_id": owner_id,
        "title": title.strip(),
        "reminder_date_time": _normalize_date_time(reminder_date_time, tz),
        "is_completed": False,
        "is_dismissed": False,
        "created_at": now,
        "updated_at": now,
    }
    await store.create(REMINDERS, reminder)
    logger.info(f"[REMINDER] Created {reminder['id']} for {owner_id} at {reminder['reminder_date_time']}")
    return reminder


async def update_reminder(
    store,
    reminder_id: str,
    tenant_id: str,
    title: Optional[str] = None,
    reminder_date_time=None,
    tz: Optional[tzinfo] = None,
) -> dict:
    await _load_reminder(store, reminder_id, tenant_id)

    changes = {}
    if title is not None:
        if not title.strip():
            raise ValidationError("Reminder title is required")
        changes["title"] = title.strip()
    if reminder_date_time is not None:
        changes["reminder_date_time"] = _normalize_date_time(reminder_date_time, tz)
    changes["updated_at"] = now_iso()

    updated = await store.update(REMINDERS, reminder_id, changes, tenant_id=tenant_id)
    if updated is None:
        raise NotFoundError(REMINDERS, reminder_id)
    return updated


async def toggle_reminder(store, reminder_id: str, tenant_id: str) -> dict:
    """Flips is_completed; is_dismissed is untouched"""
    reminder = await _load_reminder(store, reminder_id, tenant_id)
    updated = await store.update(
        REMINDERS, reminder_id,
        {"is_completed": not reminder.get("is_completed", False), "updated_at": now_iso()},
        tenant_id=tenant_id,
    )
    if updated is None:
        raise NotFoundError(REMINDERS, reminder_id)
    logger.info(f"[REMINDER] {reminder_id} -> is_completed={updated['is_completed']}")
    return updated


async def dismiss_reminder(
    store,
    reminder_id: str,
    tenant_id: str,
    user: str = "system",
    slot: Optional[ReminderSlot] = None,
) -> dict:
    """Permanent: a dismissed reminder never triggers again. Releases the slot."""
    await _load_reminder(store, reminder_id, tenant_id)
    updated = await store.update(
        REMINDERS, reminder_id,
        {"is_dismissed": True, "updated_at": now_iso()},
        tenant_id=tenant_id,
    )
    if updated is None:
        raise NotFoundError(REMINDERS, reminder_id)
    if slot is not None:
        slot.release(reminder_id)

    await log_event(store, "dismiss_reminder", "reminder", reminder_id, user=user, tenant_id=tenant_id)
    logger.info(f"[REMINDER] {reminder_id} -> dismissed")
    return updated


async def delete_reminder(
    store,
    reminder_id: str,
    tenant_id: str,
    user: str = "system",
    slot: Optional[ReminderSlot] = None,
) -> None:
    deleted = await store.delete(REMINDERS, reminder_id, tenant_id=tenant_id)
    if not deleted:
        raise NotFoundError(REMINDERS, reminder_id)
    if slot is not None:
        slot.release(reminder_id)
    await log_event(store, "delete_reminder", "reminder", reminder_id, user=user, tenant_id=tenant_id)
