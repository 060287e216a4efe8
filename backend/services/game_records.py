"""
Typed access to the shared tables.

GameRecords converts between pydantic models and the store's plain dicts and
is the single place where duplicate Round / Prompt / Frame rows are collapsed
(latest timestamp wins). Callers never see raw duplicates.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from models.game import (
    Frame, Game, GameStateKey, GameStatus, Player, Prompt, Round, SubmissionPhase,
    SubmissionRecord,
)
from services.store import (
    FRAMES, GAMES, PLAYERS, PROMPTS, ROUNDS, SUBMISSIONS, StateStore,
)
from utils.latest import latest_by_key, latest_values

logger = logging.getLogger(__name__)

PROMPT_KEY = ("game_id", "round_number", "player_id")
FRAME_KEY = ("round_id", "player_id", "frame_number")
SUBMISSION_KEY = ("game_id", "round_number", "player_id", "phase")
ROUND_KEY = ("game_id", "round_number")
TURN_ORDER_KEY = ("game_id", "turn_order")


def _dump(model) -> dict:
    return model.model_dump(mode="json")


class GameRecords:

    def __init__(self, store: StateStore):
        self.store = store

    # ── Games ─────────────────────────────────────────────────────────────────

    async def get_game(self, game_id: str) -> Optional[Game]:
        data = await self.store.get(GAMES, game_id)
        return Game.model_validate(data) if data else None

    async def insert_game(self, game: Game) -> Game:
        await self.store.insert(GAMES, _dump(game))
        return game

    async def find_games_by_room_code(self, room_code: str) -> List[Game]:
        """Newest first — room codes are short phrases and may be reused over time."""
        rows = await self.store.list(GAMES, {"room_code": room_code})
        games = [Game.model_validate(r) for r in rows]
        return sorted(games, key=lambda g: g.created_at, reverse=True)

    async def transition_game(
        self,
        game_id: str,
        expected: GameStateKey,
        target: GameStateKey,
        extra_fields: Optional[dict] = None,
        expected_fields: Optional[dict] = None,
    ) -> bool:
        """
        Compare-and-swap on (status, current_round), plus any expected_fields.
        Returns whether this write applied.
        """
        new_fields = {
            **target.as_fields(),
            **(extra_fields or {}),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        return await self.store.conditional_update(
            GAMES, game_id, new_fields, {**expected.as_fields(), **(expected_fields or {})}
        )

    async def reserve_seat(self, game_id: str, seats_taken: int) -> bool:
        """lobby with seats_taken seats -> seats_taken + 1. False if the game moved on."""
        return await self.store.conditional_update(
            GAMES,
            game_id,
            {
                "player_count": seats_taken + 1,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            {"status": GameStatus.LOBBY.value, "player_count": seats_taken},
        )

    # ── Players ───────────────────────────────────────────────────────────────

    async def get_players(self, game_id: str) -> List[Player]:
        """Roster in ring order (turn_order ascending)."""
        rows = await self.store.list(PLAYERS, {"game_id": game_id}, order_by=("turn_order",))
        players = [Player.model_validate(r) for r in rows]
        return sorted(players, key=lambda p: p.turn_order)

    async def get_player(self, player_id: str) -> Optional[Player]:
        data = await self.store.get(PLAYERS, player_id)
        return Player.model_validate(data) if data else None

    async def add_player(self, player: Player) -> Player:
        """Raises DuplicateRecordError if the turn_order slot is already taken."""
        data = await self.store.insert(PLAYERS, _dump(player), unique_key=TURN_ORDER_KEY)
        return Player.model_validate(data)

    # ── Rounds ────────────────────────────────────────────────────────────────

    async def get_round_rows(self, game_id: str, round_number: Optional[int] = None) -> List[Round]:
        """Every round row, duplicates included."""
        filters = {"game_id": game_id}
        if round_number is not None:
            filters["round_number"] = round_number
        rows = await self.store.list(ROUNDS, filters)
        return [Round.model_validate(r) for r in rows]

    async def latest_round(self, game_id: str, round_number: int) -> Optional[Round]:
        rows = await self.get_round_rows(game_id, round_number)
        return latest_by_key(rows, lambda r: r.round_number, lambda r: r.started_at).get(round_number)

    async def insert_round(self, round_: Round) -> Round:
        """Raises DuplicateRecordError when the backend already holds this round_number."""
        data = await self.store.insert(ROUNDS, _dump(round_), unique_key=ROUND_KEY)
        return Round.model_validate(data)

    # ── Prompts ───────────────────────────────────────────────────────────────

    async def upsert_prompt(self, prompt: Prompt) -> Prompt:
        data = await self.store.upsert(PROMPTS, _dump(prompt), PROMPT_KEY)
        return Prompt.model_validate(data)

    async def get_prompts(self, game_id: str, round_number: Optional[int] = None) -> List[Prompt]:
        filters = {"game_id": game_id}
        if round_number is not None:
            filters["round_number"] = round_number
        rows = [Prompt.model_validate(r) for r in await self.store.list(PROMPTS, filters)]
        return latest_values(
            rows,
            key=lambda p: (p.round_number, p.player_id),
            timestamp=lambda p: p.updated_at,
            sort_key=lambda p: (p.round_number, p.player_id),
        )

    async def get_prompt(self, game_id: str, round_number: int, player_id: str) -> Optional[Prompt]:
        rows = await self.store.list(
            PROMPTS, {"game_id": game_id, "round_number": round_number, "player_id": player_id}
        )
        prompts = [Prompt.model_validate(r) for r in rows]
        return latest_by_key(prompts, lambda p: p.player_id, lambda p: p.updated_at).get(player_id)

    # ── Frames ────────────────────────────────────────────────────────────────

    async def save_frame(self, frame: Frame) -> Frame:
        data = await self.store.upsert(FRAMES, _dump(frame), FRAME_KEY)
        return Frame.model_validate(data)

    async def get_frame_rows(self, round_id: str, player_id: Optional[str] = None) -> List[Frame]:
        filters = {"round_id": round_id}
        if player_id is not None:
            filters["player_id"] = player_id
        return [Frame.model_validate(r) for r in await self.store.list(FRAMES, filters)]

    async def get_game_frame_rows(self, rounds: List[Round]) -> List[Frame]:
        frames: List[Frame] = []
        for round_ in rounds:
            frames.extend(await self.get_frame_rows(round_.id))
        return frames

    # ── Submissions ───────────────────────────────────────────────────────────

    async def upsert_submission(self, record: SubmissionRecord) -> SubmissionRecord:
        data = await self.store.upsert(SUBMISSIONS, _dump(record), SUBMISSION_KEY)
        return SubmissionRecord.model_validate(data)

    async def get_submissions(
        self, game_id: str, round_number: int, phase: SubmissionPhase
    ) -> List[SubmissionRecord]:
        rows = await self.store.list(
            SUBMISSIONS,
            {"game_id": game_id, "round_number": round_number, "phase": phase.value},
        )
        return [SubmissionRecord.model_validate(r) for r in rows]

    async def get_submission(
        self, game_id: str, round_number: int, player_id: str, phase: SubmissionPhase
    ) -> Optional[SubmissionRecord]:
        rows = await self.store.list(
            SUBMISSIONS,
            {
                "game_id": game_id,
                "round_number": round_number,
                "player_id": player_id,
                "phase": phase.value,
            },
        )
        return SubmissionRecord.model_validate(rows[0]) if rows else None
