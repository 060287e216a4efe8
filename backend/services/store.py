"""
Shared State Store — the only thing clients of a game have in common.

Every client reads and writes the same six tables (games, players, rounds,
prompts, frames, player_submissions). There is no locking: concurrent writers
are expected, and the only mutual-exclusion primitive is conditional_update(),
which applies a write only while the stored fields still hold their expected
values.

Backends:
  InMemoryStore     services.memory_store     (local play, tests, simulation)
  FirestoreService  services.firestore_service (shared production store)
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from config import settings

logger = logging.getLogger(__name__)

GAMES = "games"
PLAYERS = "players"
ROUNDS = "rounds"
PROMPTS = "prompts"
FRAMES = "frames"
SUBMISSIONS = "player_submissions"


class ChangeEvent(BaseModel):
    table: str
    kind: str  # insert | update
    record: Dict[str, Any]


class ChangeFeed(ABC):
    """Best-effort async stream of record changes. Delivery is not guaranteed."""

    def __aiter__(self) -> "ChangeFeed":
        return self

    @abstractmethod
    async def __anext__(self) -> ChangeEvent:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class StateStore(ABC):

    @abstractmethod
    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """Equality-filtered read. order_by fields prefixed with '-' sort descending."""

    @abstractmethod
    async def insert(
        self,
        table: str,
        record: Dict[str, Any],
        unique_key: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Insert a record. Raises DuplicateRecordError if unique_key collides."""

    @abstractmethod
    async def upsert(
        self, table: str, record: Dict[str, Any], conflict_keys: Sequence[str]
    ) -> Dict[str, Any]:
        """Insert, or atomically overwrite the record sharing conflict_keys."""

    @abstractmethod
    async def conditional_update(
        self,
        table: str,
        record_id: str,
        new_fields: Dict[str, Any],
        expected: Dict[str, Any],
    ) -> bool:
        """Apply new_fields only if every expected field still matches. Returns applied."""

    @abstractmethod
    async def subscribe(
        self, table: str, filters: Optional[Dict[str, Any]] = None
    ) -> ChangeFeed:
        """Open a change feed. May raise ChangeFeedUnavailable."""

    async def close(self) -> None:
        return None


def key_of(record: Dict[str, Any], keys: Sequence[str]) -> Dict[str, Any]:
    return {k: record.get(k) for k in keys}


_store: Optional[StateStore] = None


def get_store() -> StateStore:
    """Lazy singleton — initialised on first call, not at import time.
    The Firestore client is only constructed when that backend is selected.
    """
    global _store
    if _store is None:
        if settings.store_backend == "firestore":
            from services.firestore_service import FirestoreService
            _store = FirestoreService()
        else:
            from services.memory_store import InMemoryStore
            _store = InMemoryStore()
        logger.info("State store initialised (%s)", settings.store_backend)
    return _store


def set_store(store: Optional[StateStore]) -> None:
    """Replace the process-wide store (tests, simulation)."""
    global _store
    _store = store
