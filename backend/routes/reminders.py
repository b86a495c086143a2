"""
Funil CRM - Routes Reminders (lembretes)

Les dates sans offset sont interprétées dans le fuseau du tenant.
"""

from fastapi import APIRouter, Depends, Query

from models.reminder import ReminderCreate, ReminderUpdate, ReminderEvaluationResponse
from routes.deps import get_record_store, get_scope
from services import reminder_engine
from services.alert_board import alert_board
from services.record_store import REMINDERS
from services.settings import get_tenant_timezone

router = APIRouter(prefix="/reminders", tags=["Reminders"])


async def _owned_reminders(store, scope: dict):
    return await store.find(
        REMINDERS,
        {"tenant_id": scope["tenant_id"], "owner_id": scope["user_id"]},
    )


@router.get("")
async def list_reminders(
    include_dismissed: bool = Query(False),
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    tz = await get_tenant_timezone(store, scope["tenant_id"])
    reminders = await _owned_reminders(store, scope)
    if not include_dismissed:
        reminders = [r for r in reminders if not r.get("is_dismissed")]
    return {"reminders": reminder_engine.sort_reminders(reminders, tz), "count": len(reminders)}


@router.get("/active", response_model=ReminderEvaluationResponse)
async def active_reminder(scope: dict = Depends(get_scope)):
    """Rappel à afficher (un seul) + liste ordonnée, depuis l'AlertBoard"""
    evaluation = alert_board.reminder_evaluation(scope["tenant_id"], scope["user_id"])
    return ReminderEvaluationResponse(triggering=evaluation.triggering, sorted=evaluation.sorted)


@router.post("")
async def create_reminder(
    data: ReminderCreate,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    tz = await get_tenant_timezone(store, scope["tenant_id"])
    reminder = await reminder_engine.create_reminder(
        store, scope["tenant_id"], scope["user_id"], data.title, data.reminder_date_time, tz
    )
    return {"success": True, "reminder": reminder}


@router.patch("/{reminder_id}")
async def update_reminder(
    reminder_id: str,
    data: ReminderUpdate,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    tz = await get_tenant_timezone(store, scope["tenant_id"])
    reminder = await reminder_engine.update_reminder(
        store, reminder_id, scope["tenant_id"], data.title, data.reminder_date_time, tz
    )
    return {"success": True, "reminder": reminder}


@router.post("/{reminder_id}/toggle")
async def toggle_reminder(
    reminder_id: str,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    reminder = await reminder_engine.toggle_reminder(store, reminder_id, scope["tenant_id"])
    return {"success": True, "reminder": reminder}


@router.post("/{reminder_id}/dismiss")
async def dismiss_reminder(
    reminder_id: str,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    reminder = await reminder_engine.dismiss_reminder(
        store, reminder_id, scope["tenant_id"], user=scope["user_id"],
        slot=alert_board.slot(scope["tenant_id"], scope["user_id"]),
    )
    return {"success": True, "reminder": reminder}


@router.delete("/{reminder_id}")
async def delete_reminder(
    reminder_id: str,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    await reminder_engine.delete_reminder(
        store, reminder_id, scope["tenant_id"], user=scope["user_id"],
        slot=alert_board.slot(scope["tenant_id"], scope["user_id"]),
    )
    return {"success": True}
