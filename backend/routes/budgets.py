"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Funil CRM - Routes Budgets                                                  ║
║                                                                              ║
║  Toutes les transitions passent par services.budget_lifecycle                ║
║  Multi-tenant strict: toutes les requêtes filtrées par tenant_id             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from models.budget import (
    BudgetCreate,
    BudgetUpdate,
    BudgetStatus,
    FollowUpCreate,
    StatusChange,
    WinConfirmation,
    LostDeclaration,
    LOST_REASONS,
)
from routes.deps import get_record_store, get_scope
from services import budget_lifecycle
from services.errors import NotFoundError
from services.record_store import BUDGETS

router = APIRouter(prefix="/budgets", tags=["Budgets"])


@router.get("")
async def list_budgets(
    status: Optional[BudgetStatus] = Query(None, description="Filtrer par statut"),
    all_owners: bool = Query(False, description="Tous les budgets du tenant"),
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    query = {"tenant_id": scope["tenant_id"]}
    if not all_owners:
        query["owner_id"] = scope["user_id"]
    if status:
        query["status"] = status.value

    budgets = await store.find(BUDGETS, query, sort=[("date_sent", -1)])
    return {"budgets": budgets, "count": len(budgets)}


@router.get("/lost-reasons")
async def list_lost_reasons():
    return {"reasons": LOST_REASONS}


@router.post("")
async def create_budget(
    data: BudgetCreate,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    budget = await budget_lifecycle.create_budget(
        store, scope["tenant_id"], scope["user_id"], data.model_dump(), user=scope["user_id"]
    )
    return {"success": True, "budget": budget}


@router.get("/{budget_id}")
async def get_budget(
    budget_id: str,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    budget = await store.get(BUDGETS, budget_id, scope["tenant_id"])
    if not budget:
        raise NotFoundError(BUDGETS, budget_id)
    return budget


@router.patch("/{budget_id}")
async def update_budget(
    budget_id: str,
    data: BudgetUpdate,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    budget = await budget_lifecycle.update_budget(
        store, budget_id, scope["tenant_id"], data.model_dump(exclude_none=True), user=scope["user_id"]
    )
    return {"success": True, "budget": budget}


@router.post("/{budget_id}/follow-ups")
async def record_follow_up(
    budget_id: str,
    data: FollowUpCreate,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    budget = await budget_lifecycle.record_follow_up(
        store, budget_id, scope["tenant_id"],
        note=data.notes,
        next_date=data.next_follow_up_date,
        media_url=data.media_url,
        follow_up_status=data.status,
        user=scope["user_id"],
    )
    return {"success": True, "budget": budget}


@router.post("/{budget_id}/status")
async def change_status(
    budget_id: str,
    data: StatusChange,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    budget = await budget_lifecycle.change_status(
        store, budget_id, scope["tenant_id"], data.status, user=scope["user_id"]
    )
    return {"success": True, "budget": budget}


@router.post("/{budget_id}/win")
async def confirm_win(
    budget_id: str,
    data: WinConfirmation,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    result = await budget_lifecycle.confirm_win(
        store, budget_id, scope["tenant_id"], data.closing_value, user=scope["user_id"]
    )
    return {"success": True, "budget": result.budget, "lost_sibling": result.lost_sibling}


@router.post("/{budget_id}/lost")
async def mark_lost(
    budget_id: str,
    data: LostDeclaration,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    budget = await budget_lifecycle.mark_lost(
        store, budget_id, scope["tenant_id"], data.reason, data.notes, user=scope["user_id"]
    )
    return {"success": True, "budget": budget}
