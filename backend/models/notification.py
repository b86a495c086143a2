"""
Funil CRM - Notification (dérivée, JAMAIS persistée)
"""

from enum import Enum
from pydantic import BaseModel


class NotificationType(str, Enum):
    OVERDUE = "overdue"
    TODAY = "today"


class Notification(BaseModel):
    id: str
    type: NotificationType
    budget_id: str
    message: str
    client_name: str
