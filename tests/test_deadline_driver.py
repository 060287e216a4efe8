import asyncio

import pytest

from agents.deadline_driver import Deadline, DeadlineDriver
from models.game import SubmissionPhase

PROMPT = SubmissionPhase.PROMPT
DRAWING = SubmissionPhase.DRAWING


class FakeClock:

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Recorder:
    """Stands in for the client: records auto-submissions, answers has_submitted."""

    def __init__(self, submitted: bool = False):
        self.submitted = submitted
        self.expired = []

    async def on_expire(self, round_number, phase) -> None:
        self.expired.append((round_number, phase))
        self.submitted = True

    async def has_submitted(self, round_number, phase) -> bool:
        return self.submitted


def _driver(recorder: Recorder, clock: FakeClock, tick: float = 3600.0) -> DeadlineDriver:
    # A huge tick keeps the background task asleep so tests drive it through check()
    return DeadlineDriver(
        recorder.on_expire,
        recorder.has_submitted,
        durations={PROMPT: 60.0, DRAWING: 180.0},
        clock=clock,
        tick=tick,
    )


class TestDeadline:

    def test_remaining_is_recomputed_from_clock(self) -> None:
        d = Deadline(round_number=1, phase=PROMPT, duration=60.0, started_at=100.0)
        assert d.remaining(100.0) == 60.0
        assert d.remaining(145.5) == 14.5
        assert d.remaining(500.0) == 0.0


class TestDeadlineDriver:

    @pytest.mark.asyncio
    async def test_first_observation_starts_the_clock(self) -> None:
        clock, rec = FakeClock(), Recorder()
        driver = _driver(rec, clock)
        driver.observe(1, PROMPT)
        clock.advance(20)
        assert driver.remaining() == pytest.approx(40.0)
        driver.cancel()

    @pytest.mark.asyncio
    async def test_reobserving_does_not_restart(self) -> None:
        """Should ignore repeated observations of the same (round, phase)."""
        clock, rec = FakeClock(), Recorder()
        driver = _driver(rec, clock)
        driver.observe(1, PROMPT)
        clock.advance(50)
        driver.observe(1, PROMPT)
        assert driver.remaining() == pytest.approx(10.0)
        driver.cancel()

    @pytest.mark.asyncio
    async def test_new_phase_replaces_deadline(self) -> None:
        clock, rec = FakeClock(), Recorder()
        driver = _driver(rec, clock)
        driver.observe(1, PROMPT)
        clock.advance(50)
        driver.observe(1, DRAWING)
        assert driver.remaining() == pytest.approx(180.0)
        driver.cancel()

    @pytest.mark.asyncio
    async def test_fires_once_after_expiry(self) -> None:
        clock, rec = FakeClock(), Recorder()
        driver = _driver(rec, clock)
        driver.observe(2, PROMPT)
        assert not await driver.check()
        clock.advance(61)
        assert await driver.check()
        assert not await driver.check()
        assert rec.expired == [(2, PROMPT)]
        driver.cancel()

    @pytest.mark.asyncio
    async def test_no_auto_submit_after_player_submitted(self) -> None:
        """Should perform no second submission when the player already submitted."""
        clock, rec = FakeClock(), Recorder(submitted=True)
        driver = _driver(rec, clock)
        driver.observe(1, DRAWING)
        clock.advance(500)
        assert not await driver.check()
        assert rec.expired == []
        driver.cancel()

    @pytest.mark.asyncio
    async def test_lobby_or_complete_stops_the_deadline(self) -> None:
        clock, rec = FakeClock(), Recorder()
        driver = _driver(rec, clock)
        driver.observe(1, PROMPT)
        driver.observe(1, None)
        assert driver.remaining() is None
        clock.advance(100)
        assert not await driver.check()

    @pytest.mark.asyncio
    async def test_background_task_fires_in_real_time(self) -> None:
        rec = Recorder()
        driver = DeadlineDriver(
            rec.on_expire, rec.has_submitted, durations={PROMPT: 0.05, DRAWING: 0.05}, tick=0.01,
        )
        driver.observe(1, PROMPT)
        await asyncio.sleep(0.3)
        assert rec.expired == [(1, PROMPT)]
        driver.cancel()

    @pytest.mark.asyncio
    async def test_cancel_prevents_firing(self) -> None:
        rec = Recorder()
        driver = DeadlineDriver(
            rec.on_expire, rec.has_submitted, durations={PROMPT: 0.05, DRAWING: 0.05}, tick=0.01,
        )
        driver.observe(1, PROMPT)
        driver.cancel()
        await asyncio.sleep(0.15)
        assert rec.expired == []
