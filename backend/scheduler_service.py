"""
Scheduler pour la re-évaluation des alertes Funil CRM
- Re-dérivation à chaque écriture (abonnement au RecordStore)
- Tick périodique (ALERT_REFRESH_SECONDS): un budget devient "en retard"
  par le simple passage du temps, sans aucune écriture
- Tick de minuit (changement de jour calendaire)
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import ALERT_REFRESH_SECONDS, DEFAULT_TIMEZONE, utc_now
from services.alert_board import AlertBoard
from services.record_store import BUDGETS, CLIENTS, REMINDERS
from services.settings import get_tenant_timezone

logger = logging.getLogger("scheduler")


def _group_by_tenant(records):
    grouped = defaultdict(list)
    for record in records:
        grouped[record.get("tenant_id")].append(record)
    return grouped


class AlertScheduler:
    """Gestionnaire de la re-évaluation des alertes"""

    def __init__(self, store, board: AlertBoard, interval_seconds: int = ALERT_REFRESH_SECONDS,
                 timezone: str = DEFAULT_TIMEZONE):
        self.store = store
        self.board = board
        self.interval_seconds = interval_seconds
        self.scheduler = AsyncIOScheduler(timezone=timezone)
        self._unsubscribers = []

    def start(self):
        """Démarre le scheduler et les abonnements"""
        self.scheduler.add_job(
            self.refresh_all,
            IntervalTrigger(seconds=self.interval_seconds),
            id="alert_refresh",
            name="Re-évaluation des alertes",
            replace_existing=True
        )

        self.scheduler.add_job(
            self.refresh_all,
            CronTrigger(hour=0, minute=0),
            id="alert_day_boundary",
            name="Changement de jour",
            replace_existing=True
        )

        self.subscribe()
        self.scheduler.start()
        logger.info(f"Scheduler démarré (tick {self.interval_seconds}s)")

    def subscribe(self):
        """Re-dérivation à chaque écriture sur budgets / reminders"""
        self._unsubscribers.append(self.store.subscribe(BUDGETS, {}, self.on_budgets_changed))
        self._unsubscribers.append(self.store.subscribe(REMINDERS, {}, self.on_reminders_changed))

    def stop(self):
        """Arrête le scheduler"""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler arrêté")

    # ==================== RE-ÉVALUATION ====================

    async def on_budgets_changed(self, budgets, now: Optional[datetime] = None):
        now = now or utc_now()
        grouped = _group_by_tenant(budgets)
        # a tenant whose last budget was deleted is absent from the set
        for tenant_id in set(grouped) | self.board.tenants():
            await self._refresh_budgets(tenant_id, grouped.get(tenant_id, []), now)

    async def on_reminders_changed(self, reminders, now: Optional[datetime] = None):
        now = now or utc_now()
        grouped = _group_by_tenant(reminders)
        for tenant_id in set(grouped) | self.board.tenants():
            await self._refresh_reminders(tenant_id, grouped.get(tenant_id, []), now)

    async def refresh_tenant(self, tenant_id: str, now: Optional[datetime] = None):
        now = now or utc_now()
        budgets = await self.store.find(BUDGETS, {"tenant_id": tenant_id})
        reminders = await self.store.find(REMINDERS, {"tenant_id": tenant_id})
        await self._refresh_budgets(tenant_id, budgets, now)
        await self._refresh_reminders(tenant_id, reminders, now)

    async def refresh_all(self, now: Optional[datetime] = None):
        """Tick: toutes les alertes de tous les tenants"""
        now = now or utc_now()
        budgets = _group_by_tenant(await self.store.find(BUDGETS, {}))
        reminders = _group_by_tenant(await self.store.find(REMINDERS, {}))

        for tenant_id in set(budgets) | set(reminders) | self.board.tenants():
            try:
                await self._refresh_budgets(tenant_id, budgets.get(tenant_id, []), now)
                await self._refresh_reminders(tenant_id, reminders.get(tenant_id, []), now)
            except Exception as e:
                # un tenant en erreur ne bloque pas les autres
                logger.error(f"[ALERTS] Refresh failed for tenant {tenant_id}: {e}")

    async def _refresh_budgets(self, tenant_id: str, budgets, now: datetime):
        tz = await get_tenant_timezone(self.store, tenant_id)
        clients = await self.store.find(CLIENTS, {"tenant_id": tenant_id})
        fresh = self.board.refresh_budgets(tenant_id, budgets, clients, now, tz)
        total = sum(len(n) for n in fresh.values())
        logger.debug(f"[ALERTS] {tenant_id}: {total} follow-up notifications")

    async def _refresh_reminders(self, tenant_id: str, reminders, now: datetime):
        tz = await get_tenant_timezone(self.store, tenant_id)
        fresh = self.board.refresh_reminders(tenant_id, reminders, now, tz)
        for owner_id, evaluation in fresh.items():
            if evaluation.triggering:
                logger.debug(f"[ALERTS] Reminder {evaluation.triggering['id']} surfaced for {owner_id}")
