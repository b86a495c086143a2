"""
Funil CRM - Fixtures de test

FakeRecordStore: RecordStore en mémoire (remplace MongoDB) avec injection
de pannes par id de document, et mode transactionnel optionnel
(snapshot / restauration).
"""

import copy
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest
import pytz

from services.record_store import BUDGETS, CLIENTS, REMINDERS, RecordStore, TransactionScope

TENANT = "tenant-a"
OWNER = "user-1"

# 2026-03-10 12:00 in Sao Paulo (UTC-3, no DST)
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
SAO_PAULO = pytz.timezone("America/Sao_Paulo")


class StoreFailure(Exception):
    """Injected store write failure"""


class FakeRecordStore(RecordStore):

    def __init__(self, transactional: bool = False):
        super().__init__()
        self.collections = defaultdict(dict)
        self.supports_transactions = transactional
        self.fail_insert_on = set()   # collection names
        self.fail_update_on = set()   # record ids
        self.fail_delete_on = set()   # record ids
        self.fail_every_delete = False
        self.commits = 0

    @staticmethod
    def _matches(doc: dict, query: dict) -> bool:
        return all(doc.get(k) == v for k, v in (query or {}).items())

    def seed(self, collection: str, *docs: dict):
        for doc in docs:
            self.collections[collection][doc["id"]] = copy.deepcopy(doc)

    def all(self, collection: str):
        return [copy.deepcopy(d) for d in self.collections[collection].values()]

    async def get(self, collection, record_id, tenant_id=None):
        doc = self.collections[collection].get(record_id)
        if doc is None or (tenant_id and doc.get("tenant_id") != tenant_id):
            return None
        return copy.deepcopy(doc)

    async def find(self, collection, query=None, sort=None, limit=None):
        docs = [copy.deepcopy(d) for d in self.collections[collection].values() if self._matches(d, query)]
        for key, direction in reversed(sort or []):
            docs.sort(key=lambda d: d.get(key) or "", reverse=direction < 0)
        return docs[:limit] if limit else docs

    async def _insert(self, collection, doc, session=None):
        if collection in self.fail_insert_on:
            raise StoreFailure(f"insert into {collection} failed")
        self.collections[collection][doc["id"]] = copy.deepcopy(doc)

    async def _update(self, collection, record_id, fields, append, tenant_id, session=None):
        if record_id in self.fail_update_on:
            raise StoreFailure(f"update of {record_id} failed")
        doc = self.collections[collection].get(record_id)
        if doc is None or (tenant_id and doc.get("tenant_id") != tenant_id):
            return None
        doc.update(copy.deepcopy(fields))
        for key, items in (append or {}).items():
            doc.setdefault(key, []).extend(copy.deepcopy(list(items)))
        return copy.deepcopy(doc)

    async def _remove(self, collection, record_id, tenant_id, session=None):
        if self.fail_every_delete or record_id in self.fail_delete_on:
            raise StoreFailure(f"delete of {record_id} failed")
        doc = self.collections[collection].get(record_id)
        if doc is None or (tenant_id and doc.get("tenant_id") != tenant_id):
            return False
        del self.collections[collection][record_id]
        return True

    @asynccontextmanager
    async def transaction(self):
        if not self.supports_transactions:
            raise NotImplementedError("transactions disabled")
        snapshot = copy.deepcopy(self.collections)
        scope = TransactionScope("fake-session")
        try:
            yield scope
        except BaseException:
            self.collections = snapshot
            raise
        self.commits += 1
        await self._notify_scope(scope)


def make_budget(**overrides) -> dict:
    budget = {
        "id": "budget-1",
        "tenant_id": TENANT,
        "owner_id": OWNER,
        "client_id": "client-1",
        "contact_id": None,
        "title": "Painéis solares",
        "value": 1000.0,
        "status": "sent",
        "date_sent": "2026-03-02",
        "next_follow_up_date": None,
        "follow_ups": [],
        "observations": None,
        "lost_reason": None,
        "lost_notes": None,
        "created_at": "2026-03-02T10:00:00+00:00",
        "updated_at": "2026-03-02T10:00:00+00:00",
    }
    budget.update(overrides)
    return budget


def make_reminder(**overrides) -> dict:
    reminder = {
        "id": "reminder-1",
        "tenant_id": TENANT,
        "owner_id": OWNER,
        "title": "Ligar para o cliente",
        "reminder_date_time": "2026-03-10T14:00:00+00:00",
        "is_completed": False,
        "is_dismissed": False,
        "created_at": "2026-03-01T10:00:00+00:00",
        "updated_at": "2026-03-01T10:00:00+00:00",
    }
    reminder.update(overrides)
    return reminder


@pytest.fixture
def store():
    return FakeRecordStore()


@pytest.fixture
def tx_store():
    return FakeRecordStore(transactional=True)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def tz():
    return SAO_PAULO


@pytest.fixture
def clients():
    return [
        {"id": "client-1", "tenant_id": TENANT, "name": "Padaria Central"},
        {"id": "client-2", "tenant_id": TENANT, "name": "Oficina do Zé"},
    ]


@pytest.fixture
def seeded_store(store, clients):
    store.seed(CLIENTS, *clients)
    store.seed(BUDGETS, make_budget())
    store.seed(REMINDERS, make_reminder())
    return store
