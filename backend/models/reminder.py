"""
Funil CRM - Modèle Reminder (lembrete autonome, indépendant des budgets)

is_dismissed=True => exclu définitivement.
is_completed se bascule librement et n'implique pas is_dismissed.
"""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict, field_validator


class ReminderDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    tenant_id: str
    owner_id: str
    title: str
    reminder_date_time: str
    is_completed: bool = False
    is_dismissed: bool = False
    created_at: str = ""
    updated_at: str = ""


class ReminderCreate(BaseModel):
    title: str
    reminder_date_time: str

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v or not v.strip():
            raise ValueError("title est obligatoire")
        return v.strip()


class ReminderUpdate(BaseModel):
    title: Optional[str] = None
    reminder_date_time: Optional[str] = None


class ReminderEvaluationResponse(BaseModel):
    triggering: Optional[ReminderDocument] = None
    sorted: List[ReminderDocument]
