"""
Funil CRM - Event Logger

Centralized audit trail for budget and reminder actions.
Single function to call from any service.
Best-effort: the audited write has already happened when this runs, so a
failed event_log insert is logged and never raised.
"""

import logging

from config import new_id, now_iso
from services.record_store import EVENT_LOG

logger = logging.getLogger("event_logger")


async def log_event(
    store,
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    tenant_id: str = "",
    details: dict = None,
    related: dict = None
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. record_follow_up, change_status, confirm_win, dismiss_reminder
        entity_type: budget | reminder | prospect
        entity_id: ID of the primary entity
        user: id of the user performing the action
        tenant_id: tenant owning the entity
        details: free-form dict (old_status, new_status, amounts, etc.)
        related: linked entity IDs (client_id, sibling_id, prospect_id, etc.)
    """
    try:
        await store.create(EVENT_LOG, {
            "id": new_id(),
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "tenant_id": tenant_id,
            "user": user,
            "details": details or {},
            "related": related or {},
            "created_at": now_iso()
        })
    except Exception:
        logger.exception(f"[EVENT_LOG] {action} on {entity_type} {entity_id} not recorded (non-blocking)")
