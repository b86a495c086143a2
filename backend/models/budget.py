"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Funil CRM - Modèle Budget (Orçamento / devis)                               ║
║                                                                              ║
║  RÈGLES FONDAMENTALES:                                                       ║
║  1. Un budget est créé en status "sent" avec follow_ups vide                 ║
║  2. value > 0 TOUJOURS                                                       ║
║  3. follow_ups est append-only (jamais supprimé ni modifié)                  ║
║  4. Status terminal (invoiced, lost) => next_follow_up_date = null           ║
║  5. date_sent immuable                                                       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator


class BudgetStatus(str, Enum):
    """
    Statuts d'un budget. Tout ajout ici doit être reporté dans
    VALID_BUDGET_TRANSITIONS (vérifié à l'import de budget_lifecycle).
    """
    SENT = "sent"
    FOLLOWING_UP = "following_up"
    ORDER_PLACED = "order_placed"
    ON_HOLD = "on_hold"
    INVOICED = "invoiced"   # TERMINAL
    LOST = "lost"           # TERMINAL


TERMINAL_STATUSES = frozenset({BudgetStatus.INVOICED, BudgetStatus.LOST})

# Seuls ces statuts ont une sémantique "overdue / today"
SCHEDULABLE_STATUSES = frozenset({BudgetStatus.SENT, BudgetStatus.FOLLOWING_UP})


class FollowUpStatus(str, Enum):
    """Tag optionnel d'un follow-up"""
    COMPLETED = "completed"
    WAITING_RESPONSE = "waiting_response"
    RESCHEDULED = "rescheduled"


class LostReason(str, Enum):
    PRICE = "price"
    COMPETITION = "competition"
    TIMING = "timing"
    NO_BUDGET = "no_budget"
    NOT_A_FIT = "not_a_fit"
    NO_RESPONSE = "no_response"
    PARTIAL_WIN = "partial_win"  # Reliquat d'un gain partiel (jamais saisi à la main)
    OTHER = "other"              # notes obligatoires


# Motifs sélectionnables par l'utilisateur
LOST_REASONS = [r.value for r in LostReason if r is not LostReason.PARTIAL_WIN]


class FollowUp(BaseModel):
    """Entrée d'historique de contact - immuable une fois ajoutée"""
    id: str
    created_at: str
    notes: str = ""
    media_url: Optional[str] = None
    status: Optional[FollowUpStatus] = None


class BudgetDocument(BaseModel):
    """
    Structure complète d'un budget en base de données
    """
    model_config = ConfigDict(extra="ignore")  # Ignore MongoDB's _id field

    id: str

    # Multi-tenant
    tenant_id: str
    owner_id: str

    # Relations (entités externes)
    client_id: str
    contact_id: Optional[str] = None

    title: str
    value: float
    status: BudgetStatus = BudgetStatus.SENT

    date_sent: str
    next_follow_up_date: Optional[str] = None
    follow_ups: List[FollowUp] = Field(default_factory=list)
    observations: Optional[str] = None

    # Perte
    lost_reason: Optional[str] = None
    lost_notes: Optional[str] = None

    # Gain partiel: id du budget d'origine
    split_from: Optional[str] = None

    created_at: str = ""
    updated_at: str = ""


class BudgetCreate(BaseModel):
    """
    Création d'un budget

    Exemple:
    {
        "client_id": "xxx",
        "contact_id": "yyy",
        "title": "Painéis solares - galpão 2",
        "value": 15000.0,
        "date_sent": "2026-03-02",
        "next_follow_up_date": "2026-03-09"
    }
    """
    client_id: str
    contact_id: Optional[str] = None
    title: str
    value: float
    date_sent: str
    next_follow_up_date: Optional[str] = None
    observations: Optional[str] = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v or not v.strip():
            raise ValueError("title est obligatoire")
        return v.strip()


class BudgetUpdate(BaseModel):
    """Édition d'un budget (hors status / follow_ups / date_sent)"""
    title: Optional[str] = None
    value: Optional[float] = None
    observations: Optional[str] = None
    contact_id: Optional[str] = None


class FollowUpCreate(BaseModel):
    notes: str = ""
    media_url: Optional[str] = None
    status: Optional[FollowUpStatus] = None
    next_follow_up_date: Optional[str] = None


class StatusChange(BaseModel):
    status: BudgetStatus


class WinConfirmation(BaseModel):
    closing_value: float


class LostDeclaration(BaseModel):
    reason: LostReason
    notes: Optional[str] = ""
