"""
Funil CRM - Service Settings

Parametres par tenant.
Collection: tenant_settings (chaque doc identifie par id = tenant_id)

Settings disponibles:
- locale: formatage des montants (pt-BR, en-US, fr-FR, de-DE)
- timezone: fuseau pour les comparaisons "aujourd'hui / en retard"
- stale_after_days: seuil "budget oublie"
"""

import logging
from datetime import tzinfo
from typing import Dict, Any

import pytz

from config import DEFAULT_LOCALE, DEFAULT_TIMEZONE, STALE_AFTER_DAYS, now_iso
from services.record_store import TENANT_SETTINGS
from services.formatting import SUPPORTED_LOCALES

logger = logging.getLogger("settings")


def default_settings() -> Dict[str, Any]:
    return {
        "locale": DEFAULT_LOCALE,
        "timezone": DEFAULT_TIMEZONE,
        "stale_after_days": STALE_AFTER_DAYS,
    }


async def get_tenant_settings(store, tenant_id: str) -> Dict[str, Any]:
    """Retourne les settings du tenant (avec defaults)"""
    settings = default_settings()
    doc = await store.get(TENANT_SETTINGS, tenant_id)
    if doc:
        settings.update({k: v for k, v in doc.items() if k in settings and v is not None})
    return settings


async def upsert_tenant_settings(store, tenant_id: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
    """Cree ou met a jour les settings d'un tenant"""
    changes = {k: v for k, v in data.items() if k in default_settings()}
    if "locale" in changes and changes["locale"] not in SUPPORTED_LOCALES:
        raise ValueError(f"Locale non supportee: {changes['locale']}")
    if "timezone" in changes:
        get_timezone(changes["timezone"])

    changes["updated_at"] = now_iso()
    changes["updated_by"] = updated_by

    existing = await store.get(TENANT_SETTINGS, tenant_id)
    if existing:
        await store.update(TENANT_SETTINGS, tenant_id, changes)
    else:
        changes["id"] = tenant_id
        changes["created_at"] = now_iso()
        await store.create(TENANT_SETTINGS, changes)

    return await get_tenant_settings(store, tenant_id)


async def get_tenant_timezone(store, tenant_id: str) -> tzinfo:
    settings = await get_tenant_settings(store, tenant_id)
    try:
        return get_timezone(settings["timezone"])
    except ValueError:
        logger.warning(f"Fuseau invalide pour {tenant_id}: {settings['timezone']} - defaut {DEFAULT_TIMEZONE}")
        return get_timezone(DEFAULT_TIMEZONE)


def get_timezone(name: str) -> tzinfo:
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"Fuseau horaire inconnu: {name}")
