"""Firestore adapter pieces that run without a Firestore backend."""
import asyncio
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as api_exceptions

from models.errors import DuplicateRecordError, StoreError, TransientStoreError
from services.firestore_service import FirestoreService, _doc_id_for, _FirestoreFeed


def _offline_service() -> FirestoreService:
    # Skips __init__, which would build a real client
    service = FirestoreService.__new__(FirestoreService)
    service._api_exceptions = api_exceptions
    return service


def _raiser(exc: Exception):
    def fn():
        raise exc
    return fn


class TestDocIdFor:

    def test_same_key_same_id(self) -> None:
        a = _doc_id_for("players", {"game_id": "g1", "turn_order": 2})
        b = _doc_id_for("players", {"turn_order": 2, "game_id": "g1"})
        assert a == b

    def test_different_keys_differ(self) -> None:
        a = _doc_id_for("players", {"game_id": "g1", "turn_order": 2})
        b = _doc_id_for("players", {"game_id": "g1", "turn_order": 3})
        assert a != b


class TestErrorMapping:

    @pytest.mark.asyncio
    async def test_success_passes_through(self) -> None:
        assert await _offline_service()._call(lambda: 42, "games") == 42

    @pytest.mark.asyncio
    async def test_already_exists_is_duplicate(self) -> None:
        with pytest.raises(DuplicateRecordError) as err:
            await _offline_service()._call(
                _raiser(api_exceptions.AlreadyExists("taken")), "rounds", {"round_number": 2},
            )
        assert err.value.table == "rounds"
        assert err.value.key == {"round_number": 2}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc_type", [
        api_exceptions.ServiceUnavailable,
        api_exceptions.DeadlineExceeded,
        api_exceptions.Aborted,
        api_exceptions.TooManyRequests,
        api_exceptions.InternalServerError,
    ])
    async def test_transient_errors(self, exc_type) -> None:
        with pytest.raises(TransientStoreError):
            await _offline_service()._call(_raiser(exc_type("flaky")), "games")

    @pytest.mark.asyncio
    async def test_other_api_errors_are_permanent(self) -> None:
        with pytest.raises(StoreError) as err:
            await _offline_service()._call(_raiser(api_exceptions.PermissionDenied("no")), "games")
        assert not isinstance(err.value, TransientStoreError)


def _change(kind: str, record: dict):
    return SimpleNamespace(
        type=SimpleNamespace(name=kind),
        document=SimpleNamespace(to_dict=lambda: record),
    )


class TestFirestoreFeed:

    @pytest.mark.asyncio
    async def test_skips_initial_snapshot_and_bridges_changes(self) -> None:
        feed = _FirestoreFeed("games", asyncio.get_running_loop())
        feed.on_snapshot([], [_change("ADDED", {"id": "old"})], None)
        feed.on_snapshot([], [
            _change("MODIFIED", {"id": "g1", "status": "drawing"}),
            _change("REMOVED", {"id": "gone"}),
        ], None)

        event = await asyncio.wait_for(feed.__anext__(), timeout=1)
        assert event.kind == "update"
        assert event.record["status"] == "drawing"

        feed.close()
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(feed.__anext__(), timeout=1)
