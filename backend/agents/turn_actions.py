"""
Player turn actions: what should I do now, and the writes that do it.

Every action re-reads the game and rejects itself with a GameActionError when
the game is no longer in the phase (or round) the player was acting on. None
of these advance the game; callers follow a successful submission with
PhaseCoordinator.try_advance().
"""
import logging
from typing import List, Optional

from models.errors import GameActionError
from models.game import (
    Frame, Game, GameStatus, MAX_PROMPT_LENGTH, Player, PlayerTask, Prompt, SubmissionPhase,
)
from services.game_records import GameRecords
from agents.phase_coordinator import PhaseCoordinator
from agents.rotation import prompt_source_for, ring_index
from agents.submission_tracker import SubmissionTracker
from utils.latest import latest_values

logger = logging.getLogger(__name__)


class TurnActions:

    def __init__(
        self,
        records: GameRecords,
        tracker: Optional[SubmissionTracker] = None,
        coordinator: Optional[PhaseCoordinator] = None,
    ):
        self.records = records
        self.tracker = tracker or SubmissionTracker(records)
        self.coordinator = coordinator or PhaseCoordinator(records, self.tracker)

    # ── Guards ────────────────────────────────────────────────────────────────

    async def _require_game(self, game_id: str) -> Game:
        game = await self.records.get_game(game_id)
        if game is None:
            raise GameActionError("GAME_NOT_FOUND", "Game not found", status_code=404)
        return game

    async def _require_roster(self, game: Game, player_id: str) -> List[Player]:
        players = await self.records.get_players(game.id)
        if ring_index(players, player_id) is None:
            raise GameActionError("NOT_IN_GAME", "You are not a player in this game", 403)
        return players

    @staticmethod
    def _require_phase(game: Game, status: GameStatus, round_number: Optional[int]) -> None:
        if game.status != status:
            raise GameActionError(
                "WRONG_PHASE",
                f"The game is in the {game.status.value} phase, not {status.value}",
            )
        if round_number is not None and round_number != game.current_round:
            raise GameActionError(
                "STALE_ROUND",
                f"Round {round_number} is over; the game is on round {game.current_round}",
            )

    async def _drawing_frames(self, game_id: str, round_number: int, player_id: str) -> List[Frame]:
        """The player's drawing for a round, across every row of that round."""
        rows: List[Frame] = []
        for round_ in await self.records.get_round_rows(game_id, round_number):
            rows.extend(await self.records.get_frame_rows(round_.id, player_id))
        return latest_values(
            rows,
            key=lambda f: f.frame_number,
            timestamp=lambda f: f.saved_at,
            sort_key=lambda f: f.frame_number,
        )

    # ── Read ──────────────────────────────────────────────────────────────────

    async def player_task(self, game_id: str, player_id: str) -> PlayerTask:
        game = await self._require_game(game_id)
        players = await self._require_roster(game, player_id)
        task = PlayerTask(
            action="wait",
            status=game.status,
            round_number=game.current_round,
            frames_per_round=game.frames_per_round,
        )

        if game.status == GameStatus.COMPLETE:
            task.action = "view_chains"
            return task
        if game.status == GameStatus.LOBBY:
            return task

        phase = SubmissionPhase(game.status.value)
        if await self.tracker.has_submitted(game_id, game.current_round, player_id, phase):
            task.submitted = True
            return task

        if game.status == GameStatus.PROMPT:
            task.action = "write_prompt"
            if game.current_round > 1:
                task.reference_frames = await self._drawing_frames(
                    game_id, game.current_round - 1, player_id
                )
            return task

        task.action = "draw"
        source = prompt_source_for(players, player_id)
        if source is not None:
            task.prompt_author_id = source.id
            prompt = await self.records.get_prompt(game_id, game.current_round, source.id)
            task.prompt = prompt.text if prompt else None
        return task

    # ── Prompt phase ──────────────────────────────────────────────────────────

    async def submit_prompt(
        self,
        game_id: str,
        player_id: str,
        text: str,
        round_number: Optional[int] = None,
    ) -> bool:
        """Write the prompt and mark it submitted. False if already submitted this round."""
        game = await self._require_game(game_id)
        await self._require_roster(game, player_id)
        self._require_phase(game, GameStatus.PROMPT, round_number)

        r = game.current_round
        if await self.tracker.has_submitted(game_id, r, player_id, SubmissionPhase.PROMPT):
            return False

        await self.records.upsert_prompt(Prompt(
            game_id=game_id,
            round_number=r,
            player_id=player_id,
            text=(text or "").strip()[:MAX_PROMPT_LENGTH],
        ))
        await self.tracker.record_submission(game_id, r, player_id, SubmissionPhase.PROMPT)
        return True

    # ── Drawing phase ─────────────────────────────────────────────────────────

    async def save_frame(
        self,
        game_id: str,
        player_id: str,
        frame_number: int,
        image_data: str,
        round_number: Optional[int] = None,
    ) -> Frame:
        """Autosave one frame of the player's current drawing."""
        game = await self._require_game(game_id)
        await self._require_roster(game, player_id)
        self._require_phase(game, GameStatus.DRAWING, round_number)
        if not 0 <= frame_number < game.frames_per_round:
            raise GameActionError(
                "INVALID_FRAME",
                f"Frame number must be between 0 and {game.frames_per_round - 1}",
                status_code=422,
            )

        round_ = await self.coordinator.ensure_round(game_id, game.current_round)
        if round_ is None:
            raise GameActionError("ROUND_UNAVAILABLE", "Round is not ready yet", 503)
        return await self.records.save_frame(Frame(
            round_id=round_.id,
            player_id=player_id,
            frame_number=frame_number,
            image_data=image_data,
        ))

    async def submit_drawing(
        self,
        game_id: str,
        player_id: str,
        force: bool = False,
        round_number: Optional[int] = None,
    ) -> bool:
        """
        Mark the drawing submitted. A manual submit needs every frame drawn;
        force=True (deadline expiry) submits whatever exists, even nothing.
        False if already submitted this round.
        """
        game = await self._require_game(game_id)
        await self._require_roster(game, player_id)
        self._require_phase(game, GameStatus.DRAWING, round_number)

        r = game.current_round
        if await self.tracker.has_submitted(game_id, r, player_id, SubmissionPhase.DRAWING):
            return False

        if not force:
            frames = await self._drawing_frames(game_id, r, player_id)
            drawn = {f.frame_number for f in frames if f.has_content}
            missing = [n for n in range(game.frames_per_round) if n not in drawn]
            if missing:
                raise GameActionError(
                    "INCOMPLETE_DRAWING",
                    f"Draw every frame before submitting (missing {len(missing)} "
                    f"of {game.frames_per_round})",
                    status_code=422,
                )

        await self.tracker.record_submission(game_id, r, player_id, SubmissionPhase.DRAWING)
        if force:
            logger.info(f"[{game_id}] {player_id} drawing for round {r} submitted on deadline")
        return True
