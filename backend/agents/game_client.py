"""
Game Client — one player's runtime.

Each GameClient is an independent participant: it shares nothing with other
clients except the store. Three things make it re-check the game:

  - a poll loop every poll_interval_seconds (always on; correctness relies on it)
  - the store change feed for the game and its submissions (best effort)
  - its own submissions and its deadline driver

Every check observes the game (feeding the deadline driver) and calls
PhaseCoordinator.try_advance() with the state it just observed.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from config import settings
from models.errors import ChangeFeedUnavailable, GameActionError, StoreError
from models.game import Frame, Game, GameStatus, PlayerTask, SubmissionPhase, phase_of
from services.game_records import GameRecords
from services.store import GAMES, SUBMISSIONS, ChangeFeed
from agents.deadline_driver import DeadlineDriver
from agents.phase_coordinator import PhaseCoordinator, TransitionResult
from agents.submission_tracker import SubmissionTracker
from agents.turn_actions import TurnActions

logger = logging.getLogger(__name__)


class GameClient:

    def __init__(
        self,
        records: GameRecords,
        game_id: str,
        player_id: str,
        poll_interval: Optional[float] = None,
        durations: Optional[Dict[SubmissionPhase, float]] = None,
        coordinator: Optional[PhaseCoordinator] = None,
        deadline_tick: float = 0.5,
    ):
        self.records = records
        self.game_id = game_id
        self.player_id = player_id
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.poll_interval_seconds
        )
        self.tracker = SubmissionTracker(records)
        self.coordinator = coordinator or PhaseCoordinator(records, self.tracker)
        self.actions = TurnActions(records, self.tracker, self.coordinator)
        self.deadline = DeadlineDriver(
            on_expire=self._on_deadline,
            has_submitted=self._has_submitted,
            durations=durations,
            tick=deadline_tick,
            label=f"{game_id}:{player_id[:8]}",
        )

        self.game: Optional[Game] = None
        self.draft_prompt = ""  # submitted as-is if the prompt deadline expires
        self.last_result: Optional[TransitionResult] = None
        self._checking = False
        self._changed = asyncio.Condition()
        self._tasks: List[asyncio.Task] = []
        self._feeds: List[ChangeFeed] = []

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        await self.refresh()
        self._tasks = [
            asyncio.create_task(self._poll_loop()),
            asyncio.create_task(self._listen(GAMES, {"id": self.game_id})),
            asyncio.create_task(self._listen(SUBMISSIONS, {"game_id": self.game_id})),
        ]

    async def stop(self) -> None:
        self.deadline.cancel()
        for feed in self._feeds:
            feed.close()
        self._feeds.clear()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _poll_loop(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.poll_interval)

    async def _listen(self, table: str, filters: Dict[str, str]) -> None:
        try:
            feed = await self.records.store.subscribe(table, filters)
        except ChangeFeedUnavailable as exc:
            logger.info(f"[{self.game_id}] No change feed for {table} ({exc}); polling only")
            return
        self._feeds.append(feed)
        try:
            async for _event in feed:
                await self.check()
        except StoreError as exc:
            logger.warning(
                f"[{self.game_id}] Change feed for {table} dropped; polling only: {exc}",
                exc_info=True,
            )
        finally:
            feed.close()

    # ── Observation ───────────────────────────────────────────────────────────

    async def refresh(self) -> Optional[Game]:
        game = await self.records.get_game(self.game_id)
        if game is not None:
            await self._observe(game)
        return game

    async def _observe(self, game: Game) -> None:
        previous = self.game
        self.game = game
        self.deadline.observe(game.current_round, phase_of(game.status))
        if previous is None or previous.state != game.state:
            if previous is not None:
                self.draft_prompt = ""
            async with self._changed:
                self._changed.notify_all()

    async def check(self) -> Optional[TransitionResult]:
        """Observe the game and try to advance it. Skipped while another check is running."""
        if self._checking:
            return None
        self._checking = True
        try:
            game = await self.refresh()
            if game is None or phase_of(game.status) is None:
                return None
            result = await self.coordinator.try_advance(self.game_id, observed=game.state)
            self.last_result = result
            if result.moved:
                await self.refresh()
            return result
        except StoreError as exc:
            logger.warning(f"[{self.game_id}] Check failed: {exc}", exc_info=True)
            return None
        finally:
            self._checking = False

    async def wait_for_status(self, status: GameStatus, timeout: Optional[float] = None) -> Game:
        """Wait until this client has observed `status`. Raises asyncio.TimeoutError."""
        async with self._changed:
            await asyncio.wait_for(
                self._changed.wait_for(
                    lambda: self.game is not None and self.game.status == status
                ),
                timeout,
            )
        return self.game

    # ── Player actions ────────────────────────────────────────────────────────

    def _current_round(self) -> Optional[int]:
        return self.game.current_round if self.game else None

    async def task(self) -> PlayerTask:
        return await self.actions.player_task(self.game_id, self.player_id)

    async def submit_prompt(self, text: str) -> bool:
        submitted = await self.actions.submit_prompt(
            self.game_id, self.player_id, text, round_number=self._current_round()
        )
        await self.check()
        return submitted

    async def save_frame(self, frame_number: int, image_data: str) -> Frame:
        return await self.actions.save_frame(
            self.game_id, self.player_id, frame_number, image_data,
            round_number=self._current_round(),
        )

    async def submit_drawing(self, force: bool = False) -> bool:
        submitted = await self.actions.submit_drawing(
            self.game_id, self.player_id, force=force, round_number=self._current_round()
        )
        await self.check()
        return submitted

    # ── Deadline hooks ────────────────────────────────────────────────────────

    async def _has_submitted(self, round_number: int, phase: SubmissionPhase) -> bool:
        return await self.tracker.has_submitted(self.game_id, round_number, self.player_id, phase)

    async def _on_deadline(self, round_number: int, phase: SubmissionPhase) -> None:
        # Runs inside the deadline task: must not call refresh(), which would cancel it
        game = await self.records.get_game(self.game_id)
        if game is None or game.current_round != round_number or phase_of(game.status) != phase:
            logger.debug(f"[{self.game_id}] Deadline for {phase.value}({round_number}) is stale")
            return
        try:
            if phase == SubmissionPhase.PROMPT:
                await self.actions.submit_prompt(
                    self.game_id, self.player_id, self.draft_prompt, round_number=round_number
                )
            else:
                await self.actions.submit_drawing(
                    self.game_id, self.player_id, force=True, round_number=round_number
                )
        except GameActionError as exc:
            logger.info(f"[{self.game_id}] Auto-submit skipped: {exc.message}")
            return
        self.last_result = await self.coordinator.try_advance(self.game_id, observed=game.state)
