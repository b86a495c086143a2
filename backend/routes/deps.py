"""
Funil CRM - Dépendances FastAPI partagées par les routes

Authentification hors périmètre: l'appelant s'identifie par les headers
X-Tenant-Id et X-User-Id (posés par la gateway d'auth).
"""

from fastapi import Header, HTTPException

from services.record_store import get_default_store

_store = None


def get_record_store():
    """Store unique du process (partagé avec le scheduler)"""
    global _store
    if _store is None:
        _store = get_default_store()
    return _store


async def get_scope(
    x_tenant_id: str = Header(None),
    x_user_id: str = Header(None),
) -> dict:
    if not x_tenant_id or not x_user_id:
        raise HTTPException(status_code=401, detail="Headers X-Tenant-Id et X-User-Id requis")
    return {"tenant_id": x_tenant_id, "user_id": x_user_id}
