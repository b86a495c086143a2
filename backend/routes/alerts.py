"""
Funil CRM - Routes Alertes

Notifications: lues depuis l'AlertBoard (re-dérivé à chaque écriture et à
chaque tick, jamais persisté).
Tableau des tâches: recalculé depuis le store à chaque appel.
"""

from fastapi import APIRouter, Depends

from config import utc_now
from routes.deps import get_record_store, get_scope
from services.alert_board import alert_board
from services.record_store import BUDGETS, CLIENTS, REMINDERS
from services.settings import get_tenant_settings, get_tenant_timezone
from services.task_board import build_task_board

router = APIRouter(tags=["Alerts"])


async def _owned_budgets(store, scope: dict):
    return await store.find(BUDGETS, {"tenant_id": scope["tenant_id"], "owner_id": scope["user_id"]})


@router.get("/notifications")
async def list_notifications(scope: dict = Depends(get_scope)):
    notifications = alert_board.notifications(scope["tenant_id"], scope["user_id"])
    return {
        "notifications": [n.model_dump(mode="json") for n in notifications],
        "count": len(notifications),
    }


@router.get("/tasks")
async def task_board(
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    settings = await get_tenant_settings(store, scope["tenant_id"])
    tz = await get_tenant_timezone(store, scope["tenant_id"])
    budgets = await _owned_budgets(store, scope)
    clients = await store.find(CLIENTS, {"tenant_id": scope["tenant_id"]})
    reminders = await store.find(REMINDERS, {"tenant_id": scope["tenant_id"], "owner_id": scope["user_id"]})

    return build_task_board(
        budgets, clients, reminders, utc_now(), tz,
        stale_after_days=settings["stale_after_days"],
    )
