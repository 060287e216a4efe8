import pytest

from agents.turn_actions import TurnActions
from models.errors import GameActionError
from models.game import Frame, GameStatus, Prompt, Round, SubmissionPhase
from conftest import at


def _actions(records) -> TurnActions:
    return TurnActions(records)


class TestPlayerTask:

    @pytest.mark.asyncio
    async def test_lobby_waits(self, records, seed_game) -> None:
        await seed_game(n=2, status=GameStatus.LOBBY, current_round=0)
        task = await _actions(records).player_task("g1", "p1")
        assert task.action == "wait"

    @pytest.mark.asyncio
    async def test_round_one_prompt(self, records, seed_game) -> None:
        await seed_game(n=3)
        task = await _actions(records).player_task("g1", "p2")
        assert task.action == "write_prompt"
        assert task.round_number == 1
        assert task.reference_frames == []

    @pytest.mark.asyncio
    async def test_wait_after_submitting(self, records, seed_game) -> None:
        await seed_game(n=3)
        actions = _actions(records)
        await actions.submit_prompt("g1", "p2", "a dancing robot")
        task = await actions.player_task("g1", "p2")
        assert task.action == "wait"
        assert task.submitted

    @pytest.mark.asyncio
    async def test_draw_previous_seats_prompt(self, records, seed_game) -> None:
        """Should hand each drawer the prompt written by the previous player in the ring."""
        await seed_game(n=3, status=GameStatus.DRAWING, current_round=1)
        await records.upsert_prompt(Prompt(game_id="g1", round_number=1, player_id="p1", text="a cat"))
        await records.upsert_prompt(Prompt(game_id="g1", round_number=1, player_id="p3", text="a ship"))

        actions = _actions(records)
        task = await actions.player_task("g1", "p2")
        assert task.action == "draw"
        assert task.prompt == "a cat"
        assert task.prompt_author_id == "p1"

        wraps = await actions.player_task("g1", "p1")
        assert wraps.prompt == "a ship"
        assert wraps.prompt_author_id == "p3"

    @pytest.mark.asyncio
    async def test_draw_with_missing_prompt(self, records, seed_game) -> None:
        await seed_game(n=3, status=GameStatus.DRAWING, current_round=1)
        task = await _actions(records).player_task("g1", "p2")
        assert task.action == "draw"
        assert task.prompt is None

    @pytest.mark.asyncio
    async def test_later_prompt_shows_own_previous_drawing(self, records, seed_game) -> None:
        await seed_game(n=3, status=GameStatus.PROMPT, current_round=2)
        await records.insert_round(Round(id="r1", game_id="g1", round_number=1, started_at=at(0)))
        await records.save_frame(Frame(round_id="r1", player_id="p2", frame_number=1, image_data="[b]"))
        await records.save_frame(Frame(round_id="r1", player_id="p2", frame_number=0, image_data="[a]"))
        await records.save_frame(Frame(round_id="r1", player_id="p3", frame_number=0, image_data="[z]"))

        task = await _actions(records).player_task("g1", "p2")
        assert task.action == "write_prompt"
        assert [f.image_data for f in task.reference_frames] == ["[a]", "[b]"]

    @pytest.mark.asyncio
    async def test_complete_views_chains(self, records, seed_game) -> None:
        await seed_game(n=2, status=GameStatus.COMPLETE, current_round=2)
        task = await _actions(records).player_task("g1", "p1")
        assert task.action == "view_chains"

    @pytest.mark.asyncio
    async def test_stranger_rejected(self, records, seed_game) -> None:
        await seed_game(n=2)
        with pytest.raises(GameActionError) as err:
            await _actions(records).player_task("g1", "intruder")
        assert err.value.code == "NOT_IN_GAME"

    @pytest.mark.asyncio
    async def test_unknown_game(self, records) -> None:
        with pytest.raises(GameActionError) as err:
            await _actions(records).player_task("nope", "p1")
        assert err.value.status_code == 404


class TestSubmitPrompt:

    @pytest.mark.asyncio
    async def test_submit_is_idempotent(self, records, seed_game) -> None:
        await seed_game(n=2)
        actions = _actions(records)
        assert await actions.submit_prompt("g1", "p1", "first")
        assert not await actions.submit_prompt("g1", "p1", "second")
        prompt = await records.get_prompt("g1", 1, "p1")
        assert prompt.text == "first"

    @pytest.mark.asyncio
    async def test_text_is_trimmed_and_capped(self, records, seed_game) -> None:
        await seed_game(n=2)
        await _actions(records).submit_prompt("g1", "p1", "  " + "x" * 300 + "  ")
        prompt = await records.get_prompt("g1", 1, "p1")
        assert prompt.text == "x" * 200

    @pytest.mark.asyncio
    async def test_wrong_phase(self, records, seed_game) -> None:
        await seed_game(n=2, status=GameStatus.DRAWING)
        with pytest.raises(GameActionError) as err:
            await _actions(records).submit_prompt("g1", "p1", "late")
        assert err.value.code == "WRONG_PHASE"

    @pytest.mark.asyncio
    async def test_stale_round(self, records, seed_game) -> None:
        await seed_game(n=2, status=GameStatus.PROMPT, current_round=2)
        with pytest.raises(GameActionError) as err:
            await _actions(records).submit_prompt("g1", "p1", "old", round_number=1)
        assert err.value.code == "STALE_ROUND"


class TestDrawing:

    @pytest.mark.asyncio
    async def test_save_frame_creates_round_on_demand(self, records, seed_game) -> None:
        await seed_game(n=2, status=GameStatus.DRAWING)
        frame = await _actions(records).save_frame("g1", "p1", 0, "[stroke]")
        round_ = await records.latest_round("g1", 1)
        assert frame.round_id == round_.id

    @pytest.mark.asyncio
    async def test_autosave_overwrites_same_frame(self, records, seed_game) -> None:
        await seed_game(n=2, status=GameStatus.DRAWING)
        actions = _actions(records)
        await actions.save_frame("g1", "p1", 0, "[one]")
        await actions.save_frame("g1", "p1", 0, "[two]")
        round_ = await records.latest_round("g1", 1)
        rows = await records.get_frame_rows(round_.id, "p1")
        assert [f.image_data for f in rows] == ["[two]"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frame_number", [-1, 3])
    async def test_frame_number_bounds(self, records, seed_game, frame_number: int) -> None:
        await seed_game(n=2, status=GameStatus.DRAWING, frames_per_round=3)
        with pytest.raises(GameActionError) as err:
            await _actions(records).save_frame("g1", "p1", frame_number, "[x]")
        assert err.value.code == "INVALID_FRAME"

    @pytest.mark.asyncio
    async def test_manual_submit_needs_every_frame(self, records, seed_game) -> None:
        await seed_game(n=2, status=GameStatus.DRAWING, frames_per_round=3)
        actions = _actions(records)
        await actions.save_frame("g1", "p1", 0, "[a]")
        await actions.save_frame("g1", "p1", 1, "[]")
        with pytest.raises(GameActionError) as err:
            await actions.submit_drawing("g1", "p1")
        assert err.value.code == "INCOMPLETE_DRAWING"

        await actions.save_frame("g1", "p1", 1, "[b]")
        await actions.save_frame("g1", "p1", 2, "[c]")
        assert await actions.submit_drawing("g1", "p1")
        assert not await actions.submit_drawing("g1", "p1")

    @pytest.mark.asyncio
    async def test_forced_submit_accepts_nothing(self, records, seed_game) -> None:
        await seed_game(n=2, status=GameStatus.DRAWING)
        actions = _actions(records)
        assert await actions.submit_drawing("g1", "p2", force=True)
        assert await actions.tracker.has_submitted("g1", 1, "p2", SubmissionPhase.DRAWING)

    @pytest.mark.asyncio
    async def test_drawing_actions_need_drawing_phase(self, records, seed_game) -> None:
        await seed_game(n=2, status=GameStatus.PROMPT)
        actions = _actions(records)
        with pytest.raises(GameActionError):
            await actions.save_frame("g1", "p1", 0, "[x]")
        with pytest.raises(GameActionError):
            await actions.submit_drawing("g1", "p1", force=True)
