"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Funil CRM - Budget Lifecycle (State Machine)                                ║
║                                                                              ║
║  SEUL CE MODULE modifie status / follow_ups / next_follow_up_date            ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - value > 0 TOUJOURS                                                        ║
║  - follow_ups append-only                                                    ║
║  - status terminal (invoiced, lost) IMPLIQUE next_follow_up_date = null      ║
║  - gain partiel: original.value + sibling.value == valeur avant split        ║
║  - aucune écriture si la validation échoue                                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import copy
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import NamedTuple, Optional

from config import new_id, utc_now
from models.budget import (
    BudgetStatus,
    FollowUpStatus,
    LostReason,
    LOST_REASONS,
    TERMINAL_STATUSES,
)
from services.errors import (
    InvalidTransitionError,
    NotFoundError,
    PartialFailure,
    ValidationError,
)
from services.event_logger import log_event
from services.follow_up_scheduler import normalize_follow_up_date
from services.formatting import format_amount, to_amount
from services.record_store import BUDGETS, PROSPECTS
from services.settings import get_tenant_settings

logger = logging.getLogger("budget_lifecycle")

PARTIAL_LOSS_PREFIX = "[Partial loss]"

EDITABLE_FIELDS = {"title", "value", "observations", "contact_id"}


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

_ANY_STATUS = frozenset(BudgetStatus)

VALID_BUDGET_TRANSITIONS = {
    BudgetStatus.SENT: _ANY_STATUS,
    BudgetStatus.FOLLOWING_UP: _ANY_STATUS,
    BudgetStatus.ORDER_PLACED: _ANY_STATUS,
    BudgetStatus.ON_HOLD: _ANY_STATUS,
    BudgetStatus.INVOICED: frozenset(),  # TERMINAL
    BudgetStatus.LOST: frozenset(),      # TERMINAL
}

_uncovered = set(BudgetStatus) - set(VALID_BUDGET_TRANSITIONS)
if _uncovered:
    raise RuntimeError(f"VALID_BUDGET_TRANSITIONS missing statuses: {sorted(s.value for s in _uncovered)}")


class WinResult(NamedTuple):
    budget: dict
    lost_sibling: Optional[dict]


class WinPlan(NamedTuple):
    original_changes: dict
    sibling: Optional[dict]


# ════════════════════════════════════════════════════════════════════════════
# VALIDATION (pure)
# ════════════════════════════════════════════════════════════════════════════

def coerce_status(value) -> BudgetStatus:
    try:
        return BudgetStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown budget status: {value!r}")


def validate_status_transition(budget_id: str, from_status, to_status) -> bool:
    from_status = coerce_status(from_status)
    to_status = coerce_status(to_status)
    valid_next = VALID_BUDGET_TRANSITIONS[from_status]
    if to_status not in valid_next:
        raise InvalidTransitionError(budget_id, from_status.value, to_status.value, [s.value for s in valid_next])
    return True


def validate_amount(value, label: str = "value") -> Decimal:
    """Monetary amount > 0, rounded to the cent"""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label} is required")
    try:
        amount = to_amount(value)
    except (ArithmeticError, InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{label} must be a number, got {value!r}")
    if amount <= 0:
        raise ValidationError(f"{label} must be greater than zero, got {value!r}")
    return amount


def validate_date_sent(value) -> str:
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError:
        raise ValidationError(f"date_sent must be YYYY-MM-DD, got {value!r}")


def build_follow_up(
    note: Optional[str],
    media_url: Optional[str],
    follow_up_status,
    now: datetime,
) -> dict:
    note = (note or "").strip()
    media_url = (media_url or "").strip() or None
    if not note and not media_url:
        raise ValidationError("A follow-up needs a note or an attached media")

    status = None
    if follow_up_status is not None:
        try:
            status = FollowUpStatus(follow_up_status).value
        except ValueError:
            raise ValidationError(f"Unknown follow-up status: {follow_up_status!r}")

    entry = {"id": new_id(), "created_at": now.isoformat(), "notes": note}
    if media_url:
        entry["media_url"] = media_url
    if status:
        entry["status"] = status
    return entry


# ════════════════════════════════════════════════════════════════════════════
# PLANNERS (pure): compute the new state, never write
# ════════════════════════════════════════════════════════════════════════════

def status_change_fields(
    budget: dict,
    new_status,
    now: datetime,
    lost_reason: Optional[str] = None,
    lost_notes: Optional[str] = None,
) -> Optional[dict]:
    """Fields to $set for a status override; None when nothing changes"""
    new_status = coerce_status(new_status)
    current = coerce_status(budget.get("status"))
    if new_status is current:
        return None

    validate_status_transition(budget["id"], current, new_status)

    changes = {"status": new_status.value, "updated_at": now.isoformat()}
    if new_status in TERMINAL_STATUSES:
        changes["next_follow_up_date"] = None
    if new_status is BudgetStatus.LOST:
        changes["lost_reason"] = lost_reason
        changes["lost_notes"] = lost_notes
    return changes


def plan_win(budget: dict, closing_value, now: datetime, locale: str = "pt-BR") -> WinPlan:
    """
    closing >= value -> same budget invoiced at closing value, no sibling.
    closing <  value -> original invoiced at closing value + new lost
                        sibling holding the remainder.
    """
    closing = validate_amount(closing_value, "closing_value")
    current = coerce_status(budget.get("status"))
    validate_status_transition(budget["id"], current, BudgetStatus.INVOICED)

    original_value = to_amount(budget["value"])
    stamp = now.isoformat()
    original_changes = {
        "value": float(closing),
        "status": BudgetStatus.INVOICED.value,
        "next_follow_up_date": None,
        "updated_at": stamp,
    }

    if closing >= original_value:
        return WinPlan(original_changes, None)

    lost_value = original_value - closing
    narration = (
        f"Partial win: closed for {format_amount(closing, locale)} out of "
        f"{format_amount(original_value, locale)}. "
        f"Remaining {format_amount(lost_value, locale)} recorded as lost."
    )

    sibling = {
        "id": new_id(),
        "tenant_id": budget["tenant_id"],
        "owner_id": budget["owner_id"],
        "client_id": budget["client_id"],
        "contact_id": budget.get("contact_id"),
        "title": f"{PARTIAL_LOSS_PREFIX} {budget.get('title', '')}".strip(),
        "value": float(lost_value),
        "status": BudgetStatus.LOST.value,
        "date_sent": budget.get("date_sent"),
        "next_follow_up_date": None,
        "follow_ups": copy.deepcopy(budget.get("follow_ups") or []) + [
            {"id": new_id(), "created_at": stamp, "notes": narration}
        ],
        "observations": budget.get("observations"),
        "lost_reason": LostReason.PARTIAL_WIN.value,
        "lost_notes": narration,
        "split_from": budget["id"],
        "created_at": stamp,
        "updated_at": stamp,
    }
    return WinPlan(original_changes, sibling)


# ════════════════════════════════════════════════════════════════════════════
# OPERATIONS (read -> compute -> write)
# ════════════════════════════════════════════════════════════════════════════

async def _load_budget(store, budget_id: str, tenant_id: str) -> dict:
    budget = await store.get(BUDGETS, budget_id, tenant_id)
    if not budget:
        raise NotFoundError(BUDGETS, budget_id)
    return budget


async def _write(store, budget_id: str, tenant_id: str, changes: dict, append: Optional[dict] = None) -> dict:
    updated = await store.update(BUDGETS, budget_id, changes, append=append, tenant_id=tenant_id)
    if updated is None:
        # Deleted between read and write
        raise NotFoundError(BUDGETS, budget_id)
    return updated


async def create_budget(
    store,
    tenant_id: str,
    owner_id: str,
    data: dict,
    user: str = "system",
    now: Optional[datetime] = None,
) -> dict:
    """New budget: status sent, empty follow-up history"""
    now = now or utc_now()
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")
    if not data.get("client_id"):
        raise ValidationError("client_id is required")

    stamp = now.isoformat()
    budget = {
        "id": new_id(),
        "tenant_id": tenant_id,
        "owner_id": owner_id,
        "client_id": data["client_id"],
        "contact_id": data.get("contact_id"),
        "title": title,
        "value": float(validate_amount(data.get("value"))),
        "status": BudgetStatus.SENT.value,
        "date_sent": validate_date_sent(data.get("date_sent") or now.date()),
        "next_follow_up_date": normalize_follow_up_date(data.get("next_follow_up_date")),
        "follow_ups": [],
        "observations": data.get("observations"),
        "lost_reason": None,
        "lost_notes": None,
        "created_at": stamp,
        "updated_at": stamp,
    }
    await store.create(BUDGETS, budget)
    await log_event(
        store, "create_budget", "budget", budget["id"], user=user, tenant_id=tenant_id,
        details={"value": budget["value"]}, related={"client_id": budget["client_id"]},
    )
    logger.info(f"[BUDGET] Created {budget['id']} | value={budget['value']} | client={budget['client_id']}")
    return budget


async def update_budget(
    store,
    budget_id: str,
    tenant_id: str,
    changes: dict,
    user: str = "system",
    now: Optional[datetime] = None,
) -> dict:
    """Edit title / value / observations / contact. Status goes through the state machine."""
    now = now or utc_now()
    forbidden = set(changes) - EDITABLE_FIELDS
    if forbidden:
        raise ValidationError(f"Fields not editable here: {sorted(forbidden)}")

    await _load_budget(store, budget_id, tenant_id)

    fields = {k: v for k, v in changes.items() if v is not None}
    if "title" in fields:
        fields["title"] = fields["title"].strip()
        if not fields["title"]:
            raise ValidationError("title is required")
    if "value" in fields:
        fields["value"] = float(validate_amount(fields["value"]))
    if not fields:
        return await _load_budget(store, budget_id, tenant_id)

    fields["updated_at"] = now.isoformat()
    updated = await _write(store, budget_id, tenant_id, fields)
    await log_event(store, "update_budget", "budget", budget_id, user=user, tenant_id=tenant_id,
                    details={k: v for k, v in fields.items() if k != "updated_at"})
    return updated


async def record_follow_up(
    store,
    budget_id: str,
    tenant_id: str,
    note: Optional[str],
    next_date=None,
    media_url: Optional[str] = None,
    follow_up_status=None,
    user: str = "system",
    now: Optional[datetime] = None,
) -> dict:
    """
    Appends a follow-up, moves the budget to following_up and sets (or
    clears, when next_date is None) the next follow-up date.
    """
    now = now or utc_now()
    entry = build_follow_up(note, media_url, follow_up_status, now)
    next_follow_up_date = normalize_follow_up_date(next_date)

    budget = await _load_budget(store, budget_id, tenant_id)
    current = coerce_status(budget.get("status"))
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(budget_id, current.value, BudgetStatus.FOLLOWING_UP.value, [])

    updated = await _write(
        store, budget_id, tenant_id,
        {
            "status": BudgetStatus.FOLLOWING_UP.value,
            "next_follow_up_date": next_follow_up_date,
            "updated_at": now.isoformat(),
        },
        append={"follow_ups": [entry]},
    )
    await log_event(
        store, "record_follow_up", "budget", budget_id, user=user, tenant_id=tenant_id,
        details={"old_status": current.value, "next_follow_up_date": next_follow_up_date},
        related={"follow_up_id": entry["id"]},
    )
    logger.info(f"[BUDGET] {budget_id} {current.value} -> following_up | next={next_follow_up_date}")
    return updated


async def change_status(
    store,
    budget_id: str,
    tenant_id: str,
    new_status,
    user: str = "system",
    lost_reason: Optional[str] = None,
    lost_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Direct status override. Moving to the current status is a no-op
    (nothing written). Terminal targets clear next_follow_up_date.
    """
    now = now or utc_now()
    budget = await _load_budget(store, budget_id, tenant_id)
    changes = status_change_fields(budget, new_status, now, lost_reason, lost_notes)
    if changes is None:
        return budget

    updated = await _write(store, budget_id, tenant_id, changes)
    await log_event(
        store, "change_status", "budget", budget_id, user=user, tenant_id=tenant_id,
        details={"old_status": budget.get("status"), "new_status": changes["status"], "lost_reason": lost_reason},
    )
    logger.info(f"[BUDGET] {budget_id} {budget.get('status')} -> {changes['status']}")
    return updated


async def mark_lost(
    store,
    budget_id: str,
    tenant_id: str,
    reason,
    notes: Optional[str] = None,
    user: str = "system",
    now: Optional[datetime] = None,
) -> dict:
    """Lost with a selectable reason; 'other' requires notes"""
    reason = getattr(reason, "value", reason)
    if reason not in LOST_REASONS:
        raise ValidationError(f"Unknown lost reason: {reason!r}. Valid: {LOST_REASONS}")
    notes = (notes or "").strip() or None
    if reason == LostReason.OTHER.value and not notes:
        raise ValidationError("Notes are required when the lost reason is 'other'")

    return await change_status(
        store, budget_id, tenant_id, BudgetStatus.LOST,
        user=user, lost_reason=reason, lost_notes=notes, now=now,
    )


async def confirm_win(
    store,
    budget_id: str,
    tenant_id: str,
    closing_value,
    user: str = "system",
    locale: Optional[str] = None,
    now: Optional[datetime] = None,
) -> WinResult:
    """
    🔒 Closes a budget as invoiced.

    Partial win (closing < value): a new lost sibling holds the remainder.
    Both writes run in one transaction when the store supports it;
    otherwise: create sibling, update original, and delete the sibling
    again if the update fails. PartialFailure if that delete fails too.
    """
    now = now or utc_now()
    validate_amount(closing_value, "closing_value")
    budget = await _load_budget(store, budget_id, tenant_id)

    if locale is None:
        locale = (await get_tenant_settings(store, tenant_id))["locale"]

    plan = plan_win(budget, closing_value, now, locale)

    if plan.sibling is None:
        updated = await _write(store, budget_id, tenant_id, plan.original_changes)
    elif store.supports_transactions:
        async with store.transaction() as scope:
            await store.create(BUDGETS, plan.sibling, scope=scope)
            updated = await store.update(BUDGETS, budget_id, plan.original_changes, tenant_id=tenant_id, scope=scope)
            if updated is None:
                raise NotFoundError(BUDGETS, budget_id)
    else:
        updated = await _split_with_compensation(store, budget_id, tenant_id, plan)

    details = {"old_value": budget["value"], "closing_value": plan.original_changes["value"]}
    related = {"client_id": budget.get("client_id")}
    if plan.sibling is not None:
        details["lost_value"] = plan.sibling["value"]
        related["sibling_id"] = plan.sibling["id"]
    await log_event(store, "confirm_win", "budget", budget_id, user=user, tenant_id=tenant_id,
                    details=details, related=related)

    if plan.sibling is not None:
        logger.info(
            f"[BUDGET] {budget_id} -> invoiced (partial) | value={plan.original_changes['value']} | "
            f"lost sibling {plan.sibling['id']} value={plan.sibling['value']}"
        )
    else:
        logger.info(f"[BUDGET] {budget_id} -> invoiced | value={plan.original_changes['value']}")

    return WinResult(budget=updated, lost_sibling=plan.sibling)


async def _split_with_compensation(store, budget_id: str, tenant_id: str, plan: WinPlan) -> dict:
    sibling = plan.sibling

    # 1. Sibling first: if this fails nothing was written
    await store.create(BUDGETS, sibling)

    # 2. Original
    try:
        return await _write(store, budget_id, tenant_id, plan.original_changes)
    except Exception as write_error:
        logger.warning(
            f"[BUDGET] Split of {budget_id} failed on original update ({write_error}) "
            f"- removing sibling {sibling['id']}"
        )
        try:
            await store.delete(BUDGETS, sibling["id"], tenant_id=tenant_id)
        except Exception as compensation_error:
            logger.error(
                f"[BUDGET] PARTIAL FAILURE: sibling {sibling['id']} left behind for budget {budget_id} "
                f"({compensation_error})"
            )
            raise PartialFailure(budget_id, sibling["id"], cause=compensation_error) from write_error
        raise


async def convert_prospect(
    store,
    prospect_id: str,
    tenant_id: str,
    owner_id: str,
    data: dict,
    user: str = "system",
    now: Optional[datetime] = None,
) -> dict:
    """
    Prospect -> budget (status sent).
    The budget is persisted BEFORE the prospect is deleted: a failed or
    abandoned creation leaves the prospect in place.
    """
    prospect = await store.get(PROSPECTS, prospect_id, tenant_id)
    if not prospect:
        raise NotFoundError(PROSPECTS, prospect_id)

    payload = dict(data)
    if not payload.get("observations") and prospect.get("notes"):
        payload["observations"] = prospect["notes"]

    budget = await create_budget(store, tenant_id, owner_id, payload, user=user, now=now)
    await store.delete(PROSPECTS, prospect_id, tenant_id=tenant_id)

    await log_event(store, "convert_prospect", "prospect", prospect_id, user=user, tenant_id=tenant_id,
                    related={"budget_id": budget["id"]})
    logger.info(f"[BUDGET] Prospect {prospect_id} converted to budget {budget['id']}")
    return budget
