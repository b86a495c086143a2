"""
Configuration et utilitaires partagés
"""

import os
import uuid
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'funil_crm')

# Multi-document transactions need a replica set
MONGO_TRANSACTIONS = os.environ.get('MONGO_TRANSACTIONS', 'false').lower() in ('1', 'true', 'yes')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Tenant defaults (overridable per tenant in tenant_settings)
DEFAULT_LOCALE = os.environ.get('DEFAULT_LOCALE', 'pt-BR')
DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'America/Sao_Paulo')

# Alerting
ALERT_REFRESH_SECONDS = int(os.environ.get('ALERT_REFRESH_SECONDS', '60'))
STALE_AFTER_DAYS = int(os.environ.get('STALE_AFTER_DAYS', '7'))

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')


# ==================== HELPERS ====================

def utc_now() -> datetime:
    """Instant courant (UTC, timezone-aware)"""
    return datetime.now(timezone.utc)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return utc_now().isoformat()

def new_id() -> str:
    """Identifiant opaque pour un nouveau document"""
    return str(uuid.uuid4())
