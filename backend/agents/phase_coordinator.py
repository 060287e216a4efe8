"""
Phase Transition Coordinator — deterministic, no central authority.

Every client runs try_advance() whenever it might be time to move on (after
its own submission, on a change-feed event, on each poll). They all race; the
only arbiter is the store's conditional update on (status, current_round):

    lobby → prompt(1) → drawing(1) → prompt(2) → … → drawing(N) → complete

Exactly one conditional update succeeds per (round, phase). Losers re-read,
see the game already at the target and report `converged`.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel

from config import settings
from models.errors import DuplicateRecordError, StoreError
from models.game import GameStateKey, GameStatus, Round, phase_of
from services.game_records import GameRecords
from agents.submission_tracker import SubmissionTracker
from utils.retry import bounded_retry

logger = logging.getLogger(__name__)


class TransitionOutcome(str, Enum):
    ADVANCED = "advanced"      # this client's conditional update applied
    CONVERGED = "converged"    # another client already made the same transition
    NOT_READY = "not_ready"    # quorum not met yet
    STALE = "stale"            # the caller's observed state is out of date
    INACTIVE = "inactive"      # lobby, complete, or no such game
    GAVE_UP = "gave_up"        # lost every race; the next poll will re-check
    ERROR = "error"            # permanent store failure (logged)


class TransitionResult(BaseModel):
    outcome: TransitionOutcome
    from_state: Optional[GameStateKey] = None
    to_state: Optional[GameStateKey] = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def moved(self) -> bool:
        """True when the game is now at to_state, whoever wrote it."""
        return self.outcome in (TransitionOutcome.ADVANCED, TransitionOutcome.CONVERGED)


def next_state(status: GameStatus, current_round: int, total_rounds: int) -> Optional[GameStateKey]:
    """Pure successor function. None where no automatic transition exists."""
    if status == GameStatus.PROMPT:
        return GameStateKey(status=GameStatus.DRAWING, current_round=current_round)
    if status == GameStatus.DRAWING:
        if current_round < total_rounds:
            return GameStateKey(status=GameStatus.PROMPT, current_round=current_round + 1)
        return GameStateKey(status=GameStatus.COMPLETE, current_round=current_round)
    return None


@dataclass
class _Attempt:
    outcome: TransitionOutcome
    from_state: Optional[GameStateKey] = None
    to_state: Optional[GameStateKey] = None
    lost_race: bool = False


class PhaseCoordinator:

    def __init__(
        self,
        records: GameRecords,
        tracker: Optional[SubmissionTracker] = None,
        attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ):
        self.records = records
        self.tracker = tracker or SubmissionTracker(records)
        self.attempts = attempts if attempts is not None else settings.transition_retry_attempts
        self.base_delay = (
            base_delay if base_delay is not None else settings.retry_base_delay_seconds
        )

    # ── Round creation ────────────────────────────────────────────────────────

    async def ensure_round(self, game_id: str, round_number: int) -> Optional[Round]:
        """
        Make sure a Round row exists for round_number. Safe to call from any
        number of clients at once: losing the insert race counts as success.
        Returns the authoritative (latest) round row.
        """
        existing = await self.records.latest_round(game_id, round_number)
        if existing is not None:
            return existing
        try:
            created = await self.records.insert_round(
                Round(game_id=game_id, round_number=round_number)
            )
            logger.info(f"[{game_id}] Round {round_number} created")
            return created
        except DuplicateRecordError:
            logger.debug(f"[{game_id}] Round {round_number} already created by another client")
            return await self.records.latest_round(game_id, round_number)

    # ── Automatic transitions ─────────────────────────────────────────────────

    async def _attempt_advance(
        self, game_id: str, observed: Optional[GameStateKey], seen: Dict[str, GameStateKey]
    ) -> _Attempt:
        game = await self.records.get_game(game_id)
        if game is None:
            return _Attempt(TransitionOutcome.INACTIVE)
        if observed is not None and game.state != observed:
            return _Attempt(TransitionOutcome.STALE, from_state=game.state)

        target = next_state(game.status, game.current_round, game.total_rounds)
        phase = phase_of(game.status)
        if target is None or phase is None:
            return _Attempt(TransitionOutcome.INACTIVE, from_state=game.state)
        seen["target"] = target

        quorum = await self.tracker.check_quorum(game_id, game.current_round, phase)
        if not quorum.satisfied:
            return _Attempt(TransitionOutcome.NOT_READY, from_state=game.state, to_state=target)

        fresh = await self.records.get_game(game_id)
        if fresh is None:
            return _Attempt(TransitionOutcome.INACTIVE)
        if fresh.state != game.state:
            return _Attempt(
                TransitionOutcome.GAVE_UP, from_state=game.state, to_state=target, lost_race=True
            )

        if target.status == GameStatus.PROMPT:
            await self.ensure_round(game_id, target.current_round)

        applied = await self.records.transition_game(game_id, fresh.state, target)
        if applied:
            return _Attempt(TransitionOutcome.ADVANCED, from_state=fresh.state, to_state=target)
        return _Attempt(
            TransitionOutcome.GAVE_UP, from_state=fresh.state, to_state=target, lost_race=True
        )

    async def _at_target(self, game_id: str, seen: Dict[str, GameStateKey]) -> bool:
        target = seen.get("target")
        if target is None:
            return False
        game = await self.records.get_game(game_id)
        return game is not None and game.state == target

    async def try_advance(
        self, game_id: str, observed: Optional[GameStateKey] = None
    ) -> TransitionResult:
        """
        Advance the game one step if the current phase has quorum.

        `observed` is the (status, round) the caller last rendered; if the game
        has moved on since, nothing is written and the result is `stale`.
        Never raises for store failures: they come back as `error`.
        """
        seen: Dict[str, GameStateKey] = {}

        async def _reconcile(_last: Optional[_Attempt]) -> bool:
            return await self._at_target(game_id, seen)

        try:
            outcome = await bounded_retry(
                lambda: self._attempt_advance(game_id, observed, seen),
                should_retry=lambda a: a.lost_race,
                reconcile=_reconcile,
                attempts=self.attempts,
                base_delay=self.base_delay,
                label=f"[{game_id}] advance",
            )
        except StoreError as exc:
            logger.error(f"[{game_id}] try_advance failed: {exc}", exc_info=True)
            return TransitionResult(outcome=TransitionOutcome.ERROR, error=str(exc))

        attempt = outcome.value
        from_state = attempt.from_state if attempt else None
        to_state = attempt.to_state if attempt else seen.get("target")

        if outcome.reconciled:
            logger.debug(f"[{game_id}] Converged on {to_state}")
            return TransitionResult(
                outcome=TransitionOutcome.CONVERGED,
                from_state=from_state,
                to_state=seen.get("target"),
                attempts=outcome.attempts,
            )
        if outcome.exhausted:
            logger.info(
                f"[{game_id}] Gave up advancing after {outcome.attempts} attempts; "
                f"next poll will re-check"
            )
            return TransitionResult(
                outcome=TransitionOutcome.GAVE_UP,
                from_state=from_state,
                to_state=to_state,
                attempts=outcome.attempts,
                error=str(outcome.error) if outcome.error else None,
            )

        if attempt.outcome == TransitionOutcome.ADVANCED:
            logger.info(f"[{game_id}] Advanced {attempt.from_state} → {attempt.to_state}")
        return TransitionResult(
            outcome=attempt.outcome,
            from_state=attempt.from_state,
            to_state=attempt.to_state,
            attempts=outcome.attempts,
        )

    # ── Game start ────────────────────────────────────────────────────────────

    async def start_game(self, game_id: str) -> TransitionResult:
        """
        lobby(0) → prompt(1), fixing total_rounds to the seat count in the same
        conditional write. No quorum: only the host calls this. Round 1 is
        created first so no client ever sees prompt(1) without it.

        The write also expects the player_count it read, so a join that
        reserves a seat in between makes it fail and recount. A reserved seat
        whose player row is not written yet holds the start back.
        """
        expected = GameStateKey(status=GameStatus.LOBBY, current_round=0)
        target = GameStateKey(status=GameStatus.PROMPT, current_round=1)
        seated = {"count": 0}

        async def _attempt() -> bool:
            game = await self.records.get_game(game_id)
            if game is None or game.status != GameStatus.LOBBY:
                return False
            players = await self.records.get_players(game_id)
            if len(players) != game.player_count:
                logger.debug(
                    f"[{game_id}] {game.player_count} seats reserved, "
                    f"{len(players)} taken; waiting on a join"
                )
                return False
            seated["count"] = game.player_count
            await self.ensure_round(game_id, 1)
            return await self.records.transition_game(
                game_id,
                expected,
                target,
                {"total_rounds": game.player_count},
                expected_fields={"player_count": game.player_count},
            )

        async def _already_started(_applied: Optional[bool]) -> bool:
            game = await self.records.get_game(game_id)
            return game is not None and game.status != GameStatus.LOBBY

        try:
            outcome = await bounded_retry(
                _attempt,
                should_retry=lambda applied: not applied,
                reconcile=_already_started,
                attempts=self.attempts,
                base_delay=self.base_delay,
                label=f"[{game_id}] start",
            )
        except StoreError as exc:
            logger.error(f"[{game_id}] start_game failed: {exc}", exc_info=True)
            return TransitionResult(outcome=TransitionOutcome.ERROR, error=str(exc))

        if outcome.reconciled:
            return TransitionResult(
                outcome=TransitionOutcome.CONVERGED,
                from_state=expected,
                to_state=target,
                attempts=outcome.attempts,
            )
        if outcome.exhausted:
            return TransitionResult(
                outcome=TransitionOutcome.GAVE_UP,
                from_state=expected,
                to_state=target,
                attempts=outcome.attempts,
                error=str(outcome.error) if outcome.error else None,
            )
        logger.info(f"[{game_id}] Game started with {seated['count']} players")
        return TransitionResult(
            outcome=TransitionOutcome.ADVANCED,
            from_state=expected,
            to_state=target,
            attempts=outcome.attempts,
        )
