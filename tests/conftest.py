from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pytest

from models.game import Game, GameStatus, Player
from services.game_records import GameRecords
from services.memory_store import InMemoryStore
from services.store import set_store

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """Fixed, strictly ordered timestamps for latest-wins assertions."""
    return T0 + timedelta(seconds=seconds)


def make_players(game_id: str, n: int) -> List[Player]:
    return [
        Player(
            id=f"p{i}",
            game_id=game_id,
            nickname=f"Player {i}",
            turn_order=i,
            is_host=(i == 1),
        )
        for i in range(1, n + 1)
    ]


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def records(store) -> GameRecords:
    return GameRecords(store)


@pytest.fixture
def seed_game(records):
    """Factory: insert a game in any state plus n players p1..pn."""

    async def _seed(
        n: int = 3,
        status: GameStatus = GameStatus.PROMPT,
        current_round: int = 1,
        total_rounds: Optional[int] = None,
        frames_per_round: int = 3,
        game_id: str = "g1",
    ) -> Tuple[Game, List[Player]]:
        players = make_players(game_id, n)
        game = Game(
            id=game_id,
            room_code="sunny creek inn",
            host_player_id=players[0].id if players else "nobody",
            status=status,
            current_round=current_round,
            total_rounds=total_rounds if total_rounds is not None else max(n, 1),
            frames_per_round=frames_per_round,
            player_count=n,
        )
        await records.insert_game(game)
        for p in players:
            await records.add_player(p)
        return game, players

    return _seed


@pytest.fixture
def app_store():
    """A fresh in-memory store installed as the process-wide store for HTTP tests."""
    store = InMemoryStore()
    set_store(store)
    yield store
    set_store(None)
