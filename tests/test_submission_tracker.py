import asyncio

import pytest

from agents.submission_tracker import SubmissionTracker
from models.errors import StoreError, TransientStoreError
from models.game import SubmissionPhase, SubmissionRecord
from services.game_records import GameRecords
from services.memory_store import InMemoryStore
from services.store import SUBMISSIONS


class FlakyListStore(InMemoryStore):
    """Raises `error` on the first `failures` list() calls."""

    def __init__(self, failures: int, error: Exception):
        super().__init__()
        self.failures = failures
        self.error = error

    async def list(self, table, filters=None, order_by=()):
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        return await super().list(table, filters, order_by)


class TestCheckQuorum:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n", [2, 3, 5, 10])
    async def test_quorum_needs_every_player(self, records, seed_game, n: int) -> None:
        """Should be satisfied only once all N players have submitted."""
        _, players = await seed_game(n=n)
        tracker = SubmissionTracker(records, base_delay=0)

        for i, p in enumerate(players):
            result = await tracker.check_quorum("g1", 1, SubmissionPhase.PROMPT)
            assert not result.satisfied
            assert result.submitted_count == i
            await tracker.record_submission("g1", 1, p.id, SubmissionPhase.PROMPT)

        result = await tracker.check_quorum("g1", 1, SubmissionPhase.PROMPT)
        assert result.satisfied
        assert result.submitted_count == n
        assert result.player_count == n
        assert result.missing_player_ids == []

    @pytest.mark.asyncio
    async def test_duplicate_submissions_do_not_inflate_count(self, records, store, seed_game) -> None:
        await seed_game(n=3)
        tracker = SubmissionTracker(records, base_delay=0)
        for _ in range(3):
            await tracker.record_submission("g1", 1, "p1", SubmissionPhase.PROMPT)
        # A backend without the unique constraint could hold raw duplicate rows
        for _ in range(2):
            await store.insert(SUBMISSIONS, SubmissionRecord(
                game_id="g1", round_number=1, player_id="p2", phase=SubmissionPhase.PROMPT,
            ).model_dump(mode="json"))

        result = await tracker.check_quorum("g1", 1, SubmissionPhase.PROMPT)
        assert result.submitted_count == 2
        assert not result.satisfied
        assert result.missing_player_ids == ["p3"]

    @pytest.mark.asyncio
    async def test_phases_and_rounds_are_separate(self, records, seed_game) -> None:
        _, players = await seed_game(n=2)
        tracker = SubmissionTracker(records, base_delay=0)
        for p in players:
            await tracker.record_submission("g1", 1, p.id, SubmissionPhase.PROMPT)

        assert (await tracker.check_quorum("g1", 1, SubmissionPhase.PROMPT)).satisfied
        assert not (await tracker.check_quorum("g1", 1, SubmissionPhase.DRAWING)).satisfied
        assert not (await tracker.check_quorum("g1", 2, SubmissionPhase.PROMPT)).satisfied

    @pytest.mark.asyncio
    async def test_submissions_from_strangers_ignored(self, records, seed_game) -> None:
        await seed_game(n=2)
        tracker = SubmissionTracker(records, base_delay=0)
        await tracker.record_submission("g1", 1, "p1", SubmissionPhase.PROMPT)
        await tracker.record_submission("g1", 1, "intruder", SubmissionPhase.PROMPT)
        result = await tracker.check_quorum("g1", 1, SubmissionPhase.PROMPT)
        assert result.submitted_count == 1
        assert not result.satisfied

    @pytest.mark.asyncio
    async def test_empty_roster_is_never_satisfied(self, records) -> None:
        tracker = SubmissionTracker(records, base_delay=0)
        result = await tracker.check_quorum("missing", 1, SubmissionPhase.PROMPT)
        assert not result.satisfied
        assert result.player_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_checks_agree(self, records, seed_game) -> None:
        _, players = await seed_game(n=4)
        tracker = SubmissionTracker(records, base_delay=0)
        for p in players:
            await tracker.record_submission("g1", 1, p.id, SubmissionPhase.DRAWING)
        results = await asyncio.gather(
            *(tracker.check_quorum("g1", 1, SubmissionPhase.DRAWING) for _ in range(10))
        )
        assert all(r.satisfied for r in results)


class TestQuorumReadFailures:

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self) -> None:
        store = FlakyListStore(failures=2, error=TransientStoreError("timeout"))
        tracker = SubmissionTracker(GameRecords(store), attempts=3, base_delay=0)
        result = await tracker.check_quorum("g1", 1, SubmissionPhase.PROMPT)
        assert result.error is None

    @pytest.mark.asyncio
    async def test_exhausted_retries_report_unsatisfied(self) -> None:
        """Should report an error rather than a silent 'satisfied'."""
        store = FlakyListStore(failures=10, error=TransientStoreError("timeout"))
        tracker = SubmissionTracker(GameRecords(store), attempts=3, base_delay=0)
        result = await tracker.check_quorum("g1", 1, SubmissionPhase.PROMPT)
        assert not result.satisfied
        assert result.error == "timeout"

    @pytest.mark.asyncio
    async def test_permanent_failure_raises(self) -> None:
        store = FlakyListStore(failures=1, error=StoreError("permission denied"))
        tracker = SubmissionTracker(GameRecords(store), attempts=3, base_delay=0)
        with pytest.raises(StoreError):
            await tracker.check_quorum("g1", 1, SubmissionPhase.PROMPT)


class TestRecordSubmission:

    @pytest.mark.asyncio
    async def test_record_is_idempotent(self, records, seed_game) -> None:
        await seed_game(n=2)
        tracker = SubmissionTracker(records, base_delay=0)
        assert not await tracker.has_submitted("g1", 1, "p1", SubmissionPhase.PROMPT)
        await tracker.record_submission("g1", 1, "p1", SubmissionPhase.PROMPT)
        await tracker.record_submission("g1", 1, "p1", SubmissionPhase.PROMPT)
        assert await tracker.has_submitted("g1", 1, "p1", SubmissionPhase.PROMPT)
        assert len(await records.get_submissions("g1", 1, SubmissionPhase.PROMPT)) == 1
