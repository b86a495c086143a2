"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Funil CRM - Record Store                                                    ║
║                                                                              ║
║  Stockage clé/valeur des documents (budgets, reminders, ...)                 ║
║  - create / update / delete / get / find                                     ║
║  - subscribe: re-livre l'ensemble COMPLET des documents correspondants       ║
║    après chaque écriture sur la collection                                   ║
║  - transaction(): multi-documents si le store le supporte                    ║
║                                                                              ║
║  RÈGLE: toute écriture métier passe par ce module (jamais db.xxx direct)     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

logger = logging.getLogger("record_store")

# Collections
BUDGETS = "budgets"
REMINDERS = "reminders"
CLIENTS = "clients"
PROSPECTS = "prospects"
EVENT_LOG = "event_log"
TENANT_SETTINGS = "tenant_settings"

Listener = Callable[[List[dict]], Awaitable[None]]


class TransactionScope:
    """Handle passed to writes executed inside store.transaction()"""

    def __init__(self, raw: Any = None):
        self.raw = raw
        self.touched: Dict[str, set] = {}

    def touch(self, collection: str, tenant_id: Optional[str]):
        self.touched.setdefault(collection, set()).add(tenant_id)


class RecordStore:
    """
    Base store: subscription plumbing + public write API.
    Adapters implement the underscore primitives.
    """

    supports_transactions = False

    def __init__(self):
        self._subscriptions: Dict[str, List[Tuple[int, dict, Listener]]] = {}
        self._next_token = 0

    # ==================== PRIMITIVES (adapter) ====================

    async def get(self, collection: str, record_id: str, tenant_id: Optional[str] = None) -> Optional[dict]:
        raise NotImplementedError

    async def find(
        self,
        collection: str,
        query: Optional[dict] = None,
        sort: Optional[List[Tuple[str, int]]] = None,
        limit: Optional[int] = None,
    ) -> List[dict]:
        """Every matching record unless `limit` is given"""
        raise NotImplementedError

    async def _insert(self, collection: str, doc: dict, session: Any = None) -> None:
        raise NotImplementedError

    async def _update(
        self,
        collection: str,
        record_id: str,
        fields: dict,
        append: Optional[dict],
        tenant_id: Optional[str],
        session: Any = None,
    ) -> Optional[dict]:
        raise NotImplementedError

    async def _remove(self, collection: str, record_id: str, tenant_id: Optional[str], session: Any = None) -> bool:
        raise NotImplementedError

    @asynccontextmanager
    async def transaction(self):
        raise NotImplementedError("this store does not support multi-document transactions")
        yield  # pragma: no cover

    # ==================== WRITES ====================

    async def create(self, collection: str, doc: dict, scope: Optional[TransactionScope] = None) -> dict:
        """Insert a new document. Returns the stored document."""
        await self._insert(collection, dict(doc), session=scope.raw if scope else None)
        await self._after_write(collection, doc.get("tenant_id"), scope)
        return doc

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: dict,
        append: Optional[dict] = None,
        tenant_id: Optional[str] = None,
        scope: Optional[TransactionScope] = None,
    ) -> Optional[dict]:
        """
        Partial update ($set of the given fields only).
        `append` pushes items at the end of list fields (follow_ups).
        Returns the updated document, or None if nothing matched.
        """
        updated = await self._update(
            collection, record_id, dict(fields), append, tenant_id,
            session=scope.raw if scope else None,
        )
        if updated is not None:
            await self._after_write(collection, updated.get("tenant_id"), scope)
        return updated

    async def delete(
        self,
        collection: str,
        record_id: str,
        tenant_id: Optional[str] = None,
        scope: Optional[TransactionScope] = None,
    ) -> bool:
        deleted = await self._remove(collection, record_id, tenant_id, session=scope.raw if scope else None)
        if deleted:
            await self._after_write(collection, tenant_id, scope)
        return deleted

    # ==================== SUBSCRIPTIONS ====================

    def subscribe(self, collection: str, query: dict, listener: Listener) -> Callable[[], None]:
        """
        Register a listener receiving the full current matching set after
        every write on `collection`. Returns an unsubscribe callable.
        """
        self._next_token += 1
        token = self._next_token
        self._subscriptions.setdefault(collection, []).append((token, dict(query or {}), listener))

        def unsubscribe():
            subs = self._subscriptions.get(collection, [])
            self._subscriptions[collection] = [s for s in subs if s[0] != token]

        return unsubscribe

    async def _after_write(self, collection: str, tenant_id: Optional[str], scope: Optional[TransactionScope]):
        if scope is not None:
            # Notified on commit
            scope.touch(collection, tenant_id)
            return
        await self.notify(collection, tenant_id)

    async def notify(self, collection: str, tenant_id: Optional[str] = None):
        for _, query, listener in list(self._subscriptions.get(collection, [])):
            if tenant_id and query.get("tenant_id") not in (None, tenant_id):
                continue
            records = await self.find(collection, query)
            try:
                await listener(records)
            except Exception:
                # A broken listener must not fail a write that already happened
                logger.exception(f"[STORE] Listener error on {collection}")

    async def _notify_scope(self, scope: TransactionScope):
        for collection, tenants in scope.touched.items():
            for tenant_id in tenants:
                await self.notify(collection, tenant_id)


class MongoRecordStore(RecordStore):
    """RecordStore over a motor database. Documents keyed by `id`."""

    def __init__(self, database, mongo_client=None, use_transactions: bool = False):
        super().__init__()
        self.db = database
        self.mongo_client = mongo_client
        self.supports_transactions = bool(use_transactions and mongo_client is not None)

    @staticmethod
    def _key(record_id: str, tenant_id: Optional[str]) -> dict:
        query = {"id": record_id}
        if tenant_id:
            query["tenant_id"] = tenant_id
        return query

    async def get(self, collection, record_id, tenant_id=None):
        return await self.db[collection].find_one(self._key(record_id, tenant_id), {"_id": 0})

    async def find(self, collection, query=None, sort=None, limit=None):
        cursor = self.db[collection].find(query or {}, {"_id": 0})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(limit)

    async def _insert(self, collection, doc, session=None):
        await self.db[collection].insert_one(doc, session=session)

    async def _update(self, collection, record_id, fields, append, tenant_id, session=None):
        operation = {"$set": fields}
        if append:
            operation["$push"] = {k: {"$each": list(v)} for k, v in append.items()}
        return await self.db[collection].find_one_and_update(
            self._key(record_id, tenant_id),
            operation,
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    async def _remove(self, collection, record_id, tenant_id, session=None):
        result = await self.db[collection].delete_one(self._key(record_id, tenant_id), session=session)
        return result.deleted_count > 0

    @asynccontextmanager
    async def transaction(self):
        if not self.supports_transactions:
            raise NotImplementedError("MONGO_TRANSACTIONS is disabled")
        async with await self.mongo_client.start_session() as session:
            scope = TransactionScope(session)
            async with session.start_transaction():
                yield scope
        await self._notify_scope(scope)

    async def create_indexes(self):
        await self.db[BUDGETS].create_index("id", unique=True)
        await self.db[BUDGETS].create_index([("tenant_id", 1), ("owner_id", 1), ("status", 1)])
        await self.db[BUDGETS].create_index("next_follow_up_date")
        await self.db[REMINDERS].create_index("id", unique=True)
        await self.db[REMINDERS].create_index([("tenant_id", 1), ("owner_id", 1)])
        await self.db[EVENT_LOG].create_index("created_at")
        logger.info("✅ Index MongoDB créés")


def get_default_store() -> MongoRecordStore:
    """Store bound to the configured database (config.db)"""
    from config import client, db, MONGO_TRANSACTIONS
    return MongoRecordStore(db, client, use_transactions=MONGO_TRANSACTIONS)
