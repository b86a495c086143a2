"""
Funil CRM - Routes Prospects

Seule la conversion prospect -> budget relève de ce service.
"""

from fastapi import APIRouter, Depends

from models.budget import BudgetCreate
from routes.deps import get_record_store, get_scope
from services.budget_lifecycle import convert_prospect

router = APIRouter(prefix="/prospects", tags=["Prospects"])


@router.post("/{prospect_id}/convert")
async def convert(
    prospect_id: str,
    data: BudgetCreate,
    scope: dict = Depends(get_scope),
    store=Depends(get_record_store),
):
    """Crée le budget puis consomme le prospect"""
    budget = await convert_prospect(
        store, prospect_id, scope["tenant_id"], scope["user_id"], data.model_dump(), user=scope["user_id"]
    )
    return {"success": True, "budget": budget}
