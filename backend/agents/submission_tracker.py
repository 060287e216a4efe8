"""
Submission Tracker — answers "has everyone finished this (round, phase)?"

Quorum is a set comparison between the roster and the distinct player ids that
have a SubmissionRecord for the (round, phase). Counting rows instead of ids
would let a retried upsert or a duplicate row satisfy quorum early, so rows
are always collapsed to ids first.

check_quorum() is read-only; any number of clients may call it at once.
"""
import logging
from typing import Optional

from config import settings
from models.game import QuorumResult, SubmissionPhase, SubmissionRecord
from services.game_records import GameRecords
from utils.retry import bounded_retry

logger = logging.getLogger(__name__)


class SubmissionTracker:

    def __init__(
        self,
        records: GameRecords,
        attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ):
        self.records = records
        self.attempts = attempts if attempts is not None else settings.quorum_retry_attempts
        self.base_delay = (
            base_delay if base_delay is not None else settings.retry_base_delay_seconds
        )

    async def _read_quorum(
        self, game_id: str, round_number: int, phase: SubmissionPhase
    ) -> QuorumResult:
        players = await self.records.get_players(game_id)
        submissions = await self.records.get_submissions(game_id, round_number, phase)

        roster = {p.id for p in players}
        submitted = {s.player_id for s in submissions} & roster
        missing = [p.id for p in players if p.id not in submitted]
        return QuorumResult(
            satisfied=bool(roster) and not missing,
            submitted_count=len(submitted),
            player_count=len(roster),
            missing_player_ids=missing,
        )

    async def check_quorum(
        self, game_id: str, round_number: int, phase: SubmissionPhase
    ) -> QuorumResult:
        """
        Transient read failures are retried with backoff. If every attempt
        fails the result is unsatisfied with `error` set; permanent store
        errors propagate.
        """
        outcome = await bounded_retry(
            lambda: self._read_quorum(game_id, round_number, phase),
            attempts=self.attempts,
            base_delay=self.base_delay,
            label=f"[{game_id}] quorum {phase.value}({round_number})",
        )
        if outcome.exhausted:
            logger.warning(
                f"[{game_id}] Quorum read for {phase.value}({round_number}) "
                f"failed after {outcome.attempts} attempts: {outcome.error}"
            )
            return QuorumResult(
                satisfied=False,
                submitted_count=0,
                player_count=0,
                error=str(outcome.error) if outcome.error else "quorum read failed",
            )
        return outcome.value

    async def record_submission(
        self, game_id: str, round_number: int, player_id: str, phase: SubmissionPhase
    ) -> SubmissionRecord:
        """Idempotent: re-submitting overwrites the same (game, round, player, phase) marker."""
        record = await self.records.upsert_submission(
            SubmissionRecord(
                game_id=game_id,
                round_number=round_number,
                player_id=player_id,
                phase=phase,
            )
        )
        logger.info(f"[{game_id}] {player_id} submitted {phase.value}({round_number})")
        return record

    async def has_submitted(
        self, game_id: str, round_number: int, player_id: str, phase: SubmissionPhase
    ) -> bool:
        record = await self.records.get_submission(game_id, round_number, player_id, phase)
        return record is not None
