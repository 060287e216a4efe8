import asyncio
import hashlib
import logging
import os
import uuid
from typing import Optional, List, Dict, Any, Sequence

from config import settings
from models.errors import (
    ChangeFeedUnavailable, DuplicateRecordError, StoreError, TransientStoreError,
)
from services.store import ChangeEvent, ChangeFeed, StateStore, key_of

logger = logging.getLogger(__name__)


def _doc_id_for(table: str, key: Dict[str, Any]) -> str:
    """Deterministic document id for a unique key tuple, so create()/set() collide on it."""
    raw = "|".join(f"{k}={key[k]}" for k in sorted(key))
    return f"{table[:8]}-" + hashlib.sha1(raw.encode("utf-8")).hexdigest()[:24]


class _FirestoreFeed(ChangeFeed):
    """Bridges Firestore's on_snapshot thread callbacks into an asyncio queue."""

    def __init__(self, table: str, loop: asyncio.AbstractEventLoop):
        self.table = table
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._watch = None
        self._primed = False

    def attach(self, watch) -> None:
        self._watch = watch

    def on_snapshot(self, docs, changes, read_time) -> None:
        # The first snapshot replays current state; only later ones are changes
        if not self._primed:
            self._primed = True
            return
        for change in changes:
            kind = "insert" if change.type.name == "ADDED" else "update"
            if change.type.name == "REMOVED":
                continue
            record = change.document.to_dict()
            event = ChangeEvent(table=self.table, kind=kind, record=record)
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def __anext__(self) -> ChangeEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        if self._watch is not None:
            self._watch.unsubscribe()
            self._watch = None
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)


class FirestoreService(StateStore):
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop. Switch to AsyncClient once stable.

    Each table is a top-level collection. Conditional updates run inside a
    Firestore transaction, which re-reads the document and retries on
    contention, so only one of several racing writers can satisfy the
    expected fields.
    """

    def __init__(self):
        if settings.firestore_emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
        # Lazy import so the service can be instantiated before GCP creds exist
        from google.cloud import firestore
        from google.api_core import exceptions as api_exceptions
        self._firestore = firestore
        self._api_exceptions = api_exceptions
        self.db = firestore.Client(project=settings.google_cloud_project or None)

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    async def _call(self, fn, table: str = "", key: Optional[Dict[str, Any]] = None):
        """Run fn with a bounded timeout and map Google API errors onto the store taxonomy."""
        exc_mod = self._api_exceptions
        try:
            return await asyncio.wait_for(self._run(fn), timeout=settings.store_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise TransientStoreError(f"Firestore call timed out ({table})") from exc
        except exc_mod.AlreadyExists as exc:
            raise DuplicateRecordError(table, key) from exc
        except (
            exc_mod.ServiceUnavailable,
            exc_mod.DeadlineExceeded,
            exc_mod.InternalServerError,
            exc_mod.Aborted,
            exc_mod.TooManyRequests,
        ) as exc:
            raise TransientStoreError(str(exc)) from exc
        except exc_mod.GoogleAPICallError as exc:
            raise StoreError(str(exc)) from exc

    # ── Collection helpers ────────────────────────────────────────────────────

    def _collection(self, table: str):
        return self.db.collection(table)

    def _query(self, table: str, filters: Optional[Dict[str, Any]], order_by: Sequence[str] = ()):
        from google.cloud.firestore_v1.base_query import FieldFilter
        query = self._collection(table)
        for field, value in (filters or {}).items():
            query = query.where(filter=FieldFilter(field, "==", value))
        for field in order_by:
            direction = (
                self._firestore.Query.DESCENDING if field.startswith("-")
                else self._firestore.Query.ASCENDING
            )
            query = query.order_by(field.lstrip("-"), direction=direction)
        return query

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._call(lambda: self._collection(table).document(record_id).get(), table)
        if doc.exists:
            return doc.to_dict()
        return None

    async def list(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        query = self._query(table, filters, order_by)
        docs = await self._call(lambda: list(query.stream()), table)
        return [d.to_dict() for d in docs]

    # ── Writes ────────────────────────────────────────────────────────────────

    async def insert(
        self,
        table: str,
        record: Dict[str, Any],
        unique_key: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        data = dict(record)
        key = key_of(data, unique_key) if unique_key else None
        if key:
            # The key decides the document id; a concurrent insert hits AlreadyExists
            data["id"] = _doc_id_for(table, key)
        else:
            data.setdefault("id", str(uuid.uuid4()))
        ref = self._collection(table).document(data["id"])
        await self._call(lambda: ref.create(data), table, key or {"id": data["id"]})
        return data

    async def upsert(
        self, table: str, record: Dict[str, Any], conflict_keys: Sequence[str]
    ) -> Dict[str, Any]:
        data = dict(record)
        data["id"] = _doc_id_for(table, key_of(data, conflict_keys))
        ref = self._collection(table).document(data["id"])
        await self._call(lambda: ref.set(data), table)
        return data

    async def conditional_update(
        self,
        table: str,
        record_id: str,
        new_fields: Dict[str, Any],
        expected: Dict[str, Any],
    ) -> bool:
        ref = self._collection(table).document(record_id)
        firestore = self._firestore

        @firestore.transactional
        def _apply(transaction) -> bool:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            current = snapshot.to_dict()
            if any(current.get(k) != v for k, v in expected.items()):
                return False
            transaction.update(ref, new_fields)
            return True

        return await self._call(lambda: _apply(self.db.transaction()), table)

    # ── Change feed ───────────────────────────────────────────────────────────

    async def subscribe(
        self, table: str, filters: Optional[Dict[str, Any]] = None
    ) -> ChangeFeed:
        feed = _FirestoreFeed(table, asyncio.get_running_loop())
        try:
            if filters and set(filters) == {"id"}:
                target = self._collection(table).document(filters["id"])
            else:
                target = self._query(table, filters)
            watch = await self._call(lambda: target.on_snapshot(feed.on_snapshot), table)
        except StoreError as exc:
            raise ChangeFeedUnavailable(f"Firestore listener unavailable: {exc}") from exc
        feed.attach(watch)
        return feed

    async def close(self) -> None:
        await self._run(self.db.close)
