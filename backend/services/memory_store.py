import asyncio
import copy
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence

from models.errors import ChangeFeedUnavailable, DuplicateRecordError
from services.store import ChangeEvent, ChangeFeed, StateStore, key_of

logger = logging.getLogger(__name__)


def _matches(record: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    return all(record.get(k) == v for k, v in filters.items())


def _sort(records: List[Dict[str, Any]], order_by: Sequence[str]) -> List[Dict[str, Any]]:
    # Stable sorts applied last-key-first give a multi-key ordering
    for field in reversed(list(order_by)):
        descending = field.startswith("-")
        name = field.lstrip("-")
        records.sort(key=lambda r: (r.get(name) is None, r.get(name)), reverse=descending)
    return records


class _MemoryFeed(ChangeFeed):

    def __init__(self, store: "InMemoryStore", table: str, filters: Optional[Dict[str, Any]]):
        self._store = store
        self.table = table
        self.filters = filters or {}
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def push(self, event: ChangeEvent) -> None:
        if not self._closed and event.table == self.table and _matches(event.record, self.filters):
            self._queue.put_nowait(event)

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)
            self._store._feeds.discard(self)


class InMemoryStore(StateStore):
    """
    Process-local store with the same contract as the shared backends.
    Every client created against the same instance sees the same records,
    which is how tests and simulate.py model many independent clients.

    latency: seconds each call yields to the event loop before touching state,
             so concurrent callers genuinely interleave between reads and writes.
    change_feed: False makes subscribe() raise ChangeFeedUnavailable (polling-only mode).
    """

    def __init__(self, latency: float = 0.0, change_feed: bool = True):
        self.latency = latency
        self.change_feed = change_feed
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._lock = asyncio.Lock()
        self._feeds: set = set()

    async def _yield(self) -> None:
        await asyncio.sleep(self.latency)

    def _notify(self, table: str, kind: str, record: Dict[str, Any]) -> None:
        event = ChangeEvent(table=table, kind=kind, record=copy.deepcopy(record))
        for feed in list(self._feeds):
            feed.push(event)

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        await self._yield()
        record = self._tables[table].get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def list(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        await self._yield()
        rows = [copy.deepcopy(r) for r in self._tables[table].values() if _matches(r, filters)]
        return _sort(rows, order_by)

    # ── Writes ────────────────────────────────────────────────────────────────

    async def insert(
        self,
        table: str,
        record: Dict[str, Any],
        unique_key: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        await self._yield()
        async with self._lock:
            rows = self._tables[table]
            if unique_key:
                key = key_of(record, unique_key)
                if any(_matches(r, key) for r in rows.values()):
                    raise DuplicateRecordError(table, key)
            data = dict(record)
            data.setdefault("id", str(uuid.uuid4()))
            if data["id"] in rows:
                raise DuplicateRecordError(table, {"id": data["id"]})
            rows[data["id"]] = data
            self._notify(table, "insert", data)
            return copy.deepcopy(data)

    async def upsert(
        self, table: str, record: Dict[str, Any], conflict_keys: Sequence[str]
    ) -> Dict[str, Any]:
        await self._yield()
        async with self._lock:
            rows = self._tables[table]
            key = key_of(record, conflict_keys)
            existing = next((r for r in rows.values() if _matches(r, key)), None)
            data = dict(record)
            if existing is not None:
                data["id"] = existing["id"]
                kind = "update"
            else:
                data.setdefault("id", str(uuid.uuid4()))
                kind = "insert"
            rows[data["id"]] = data
            self._notify(table, kind, data)
            return copy.deepcopy(data)

    async def conditional_update(
        self,
        table: str,
        record_id: str,
        new_fields: Dict[str, Any],
        expected: Dict[str, Any],
    ) -> bool:
        await self._yield()
        async with self._lock:
            current = self._tables[table].get(record_id)
            if current is None or not _matches(current, expected):
                return False
            current.update(new_fields)
            self._notify(table, "update", current)
            return True

    # ── Change feed ───────────────────────────────────────────────────────────

    async def subscribe(
        self, table: str, filters: Optional[Dict[str, Any]] = None
    ) -> ChangeFeed:
        if not self.change_feed:
            raise ChangeFeedUnavailable("In-memory change feed disabled")
        feed = _MemoryFeed(self, table, filters)
        self._feeds.add(feed)
        return feed

    async def close(self) -> None:
        for feed in list(self._feeds):
            feed.close()
