"""
Deadline Driver — per-client phase timer.

A deadline is a monotonic start timestamp plus a duration; remaining time is
always recomputed from the clock, never decremented, so a slow event loop or a
missed tick cannot stretch the phase. When it expires and this client's player
has not submitted, on_expire() runs once for that (round, phase). It only ever
acts for its own player.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from models.game import PHASE_DURATIONS, SubmissionPhase

logger = logging.getLogger(__name__)

DeadlineKey = Tuple[int, SubmissionPhase]


@dataclass(frozen=True)
class Deadline:
    round_number: int
    phase: SubmissionPhase
    duration: float
    started_at: float

    @property
    def key(self) -> DeadlineKey:
        return (self.round_number, self.phase)

    def remaining(self, now: float) -> float:
        return max(0.0, self.duration - (now - self.started_at))


class DeadlineDriver:

    def __init__(
        self,
        on_expire: Callable[[int, SubmissionPhase], Awaitable[None]],
        has_submitted: Callable[[int, SubmissionPhase], Awaitable[bool]],
        durations: Optional[Dict[SubmissionPhase, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        tick: float = 0.5,
        label: str = "",
    ):
        self.on_expire = on_expire
        self.has_submitted = has_submitted
        self.durations = dict(durations or PHASE_DURATIONS)
        self.clock = clock
        self.tick = tick
        self.label = label
        self.current: Optional[Deadline] = None
        self._fired: Set[DeadlineKey] = set()
        self._task: Optional[asyncio.Task] = None

    def observe(self, round_number: int, phase: Optional[SubmissionPhase]) -> None:
        """
        Report the (round, phase) this client currently sees. The first
        observation starts the deadline; repeats are ignored; a new
        (round, phase) replaces it. phase=None (lobby / complete) stops it.
        """
        if phase is None:
            self.cancel()
            return
        if self.current is not None and self.current.key == (round_number, phase):
            return
        self.cancel()
        self.current = Deadline(
            round_number=round_number,
            phase=phase,
            duration=self.durations[phase],
            started_at=self.clock(),
        )
        logger.debug(
            f"[{self.label}] Deadline started for {phase.value}({round_number}): "
            f"{self.current.duration:.1f}s"
        )
        if (round_number, phase) not in self._fired:
            self._task = asyncio.create_task(self._run(self.current))

    def remaining(self) -> Optional[float]:
        if self.current is None:
            return None
        return self.current.remaining(self.clock())

    async def check(self) -> bool:
        """Fire now if the current deadline has expired. Returns whether on_expire ran."""
        deadline = self.current
        if deadline is None or deadline.remaining(self.clock()) > 0:
            return False
        return await self._fire(deadline)

    async def _run(self, deadline: Deadline) -> None:
        while True:
            left = deadline.remaining(self.clock())
            if left <= 0:
                break
            await asyncio.sleep(min(self.tick, left))
        try:
            await self._fire(deadline)
        except Exception as exc:
            logger.warning(
                f"[{self.label}] Auto-submit for {deadline.phase.value}"
                f"({deadline.round_number}) failed: {exc}",
                exc_info=True,
            )

    async def _fire(self, deadline: Deadline) -> bool:
        if deadline.key in self._fired:
            return False
        self._fired.add(deadline.key)
        try:
            submitted = await self.has_submitted(deadline.round_number, deadline.phase)
        except Exception:
            # Let a later check() try again
            self._fired.discard(deadline.key)
            raise
        if submitted:
            logger.debug(
                f"[{self.label}] Deadline for {deadline.phase.value}({deadline.round_number}) "
                f"expired after submission; nothing to do"
            )
            return False
        logger.info(
            f"[{self.label}] Deadline expired for {deadline.phase.value}"
            f"({deadline.round_number}); auto-submitting"
        )
        await self.on_expire(deadline.round_number, deadline.phase)
        return True

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.current = None
