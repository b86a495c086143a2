"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Funil CRM - Models Package                                                  ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import BudgetStatus, BudgetCreate, ReminderCreate, etc.         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Budget (orçamento)
from .budget import (
    BudgetStatus,
    TERMINAL_STATUSES,
    SCHEDULABLE_STATUSES,
    FollowUpStatus,
    LostReason,
    LOST_REASONS,
    FollowUp,
    BudgetDocument,
    BudgetCreate,
    BudgetUpdate,
    FollowUpCreate,
    StatusChange,
    WinConfirmation,
    LostDeclaration,
)

# Reminder (lembrete)
from .reminder import (
    ReminderDocument,
    ReminderCreate,
    ReminderUpdate,
    ReminderEvaluationResponse,
)

# Notification (dérivée)
from .notification import (
    NotificationType,
    Notification,
)

__all__ = [
    # Budget
    "BudgetStatus",
    "TERMINAL_STATUSES",
    "SCHEDULABLE_STATUSES",
    "FollowUpStatus",
    "LostReason",
    "LOST_REASONS",
    "FollowUp",
    "BudgetDocument",
    "BudgetCreate",
    "BudgetUpdate",
    "FollowUpCreate",
    "StatusChange",
    "WinConfirmation",
    "LostDeclaration",
    # Reminder
    "ReminderDocument",
    "ReminderCreate",
    "ReminderUpdate",
    "ReminderEvaluationResponse",
    # Notification
    "NotificationType",
    "Notification",
]
