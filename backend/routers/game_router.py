"""
Game HTTP endpoints.

Routes:
  POST /api/games                              — Create game + register host as first player
  POST /api/games/join                         — Join a lobby by room code
  GET  /api/games/{game_id}                    — Game record + roster
  POST /api/games/{game_id}/start              — Host starts the game
  GET  /api/games/{game_id}/players/{pid}/task — What this player should do now
  POST /api/games/{game_id}/prompts            — Submit this round's prompt
  PUT  /api/games/{game_id}/frames             — Autosave one frame
  POST /api/games/{game_id}/drawings           — Submit the drawing (force = deadline)
  GET  /api/games/{game_id}/quorum             — Who has submitted in the current phase
  POST /api/games/{game_id}/advance            — Run one transition attempt
  GET  /api/games/{game_id}/chains             — Replay (only after the game is complete)

The server is just another client: after a submission it runs the same
try_advance() every player client runs, and publishes the result to sockets.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from models.errors import GameActionError, StoreError
from models.game import (
    CreateGameRequest, CreateGameResponse,
    JoinGameRequest, JoinGameResponse,
    GameReplay, GameStatus, PlayerTask, QuorumResult,
    SaveFrameRequest, SubmitDrawingRequest, SubmitPromptRequest,
    phase_of,
)
from services.game_records import GameRecords
from services.store import get_store
from agents.chain_reconstructor import ChainReconstructor
from agents.lobby import Lobby
from agents.phase_coordinator import PhaseCoordinator, TransitionResult
from agents.submission_tracker import SubmissionTracker
from agents.turn_actions import TurnActions
from routers.ws_router import manager as ws_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["games"])


def _records() -> GameRecords:
    return GameRecords(get_store())


def _http_error(exc: GameActionError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


def _unavailable(exc: StoreError) -> HTTPException:
    logger.warning(f"Store unavailable: {exc}", exc_info=True)
    return HTTPException(status_code=503, detail="Game store unavailable, please retry")


async def _advance_and_publish(records: GameRecords, game_id: str) -> TransitionResult:
    result = await PhaseCoordinator(records).try_advance(game_id)
    if result.moved:
        game = await records.get_game(game_id)
        if game is not None:
            await ws_manager.publish_game(game)
    return result


# ── Lobby ─────────────────────────────────────────────────────────────────────

@router.post("/games", response_model=CreateGameResponse, status_code=201)
async def create_game(body: CreateGameRequest):
    """Create a new game and register the host as the first player."""
    try:
        game, host = await Lobby(_records()).create_game(body.host_name, body.frames_per_round)
    except GameActionError as exc:
        raise _http_error(exc) from exc
    except StoreError as exc:
        raise _unavailable(exc) from exc
    return CreateGameResponse(game_id=game.id, room_code=game.room_code, host_player_id=host.id)


@router.post("/games/join", response_model=JoinGameResponse, status_code=200)
async def join_game(body: JoinGameRequest):
    """Join a lobby by room code. Rejected if the game is full or already started."""
    try:
        game, player = await Lobby(_records()).join_game(body.room_code, body.player_name)
    except GameActionError as exc:
        raise _http_error(exc) from exc
    except StoreError as exc:
        raise _unavailable(exc) from exc
    return JoinGameResponse(game_id=game.id, player_id=player.id, turn_order=player.turn_order)


@router.get("/games/{game_id}")
async def get_game(game_id: str):
    records = _records()
    game = await records.get_game(game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")

    players = await records.get_players(game_id)
    return {
        "game": game.model_dump(mode="json"),
        "players": [p.to_public() for p in players],
        "player_count": len(players),
    }


@router.post("/games/{game_id}/start", status_code=200)
async def start_game(
    game_id: str,
    host_player_id: str = Query(..., description="Must match the game's host_player_id"),
):
    """
    Host starts the game: total_rounds is fixed to the current player count
    and the game moves to prompt(1). Requires at least 2 players.
    """
    records = _records()
    try:
        result = await Lobby(records).start_game(game_id, host_player_id)
    except GameActionError as exc:
        raise _http_error(exc) from exc
    except StoreError as exc:
        raise _unavailable(exc) from exc

    game = await records.get_game(game_id)
    if game is not None:
        await ws_manager.publish_game(game)
    return {
        "status": "started",
        "game_id": game_id,
        "outcome": result.outcome.value,
        "total_rounds": game.total_rounds if game else None,
    }


# ── Turns ─────────────────────────────────────────────────────────────────────

@router.get("/games/{game_id}/players/{player_id}/task", response_model=PlayerTask)
async def get_player_task(game_id: str, player_id: str):
    try:
        return await TurnActions(_records()).player_task(game_id, player_id)
    except GameActionError as exc:
        raise _http_error(exc) from exc


@router.post("/games/{game_id}/prompts")
async def submit_prompt(game_id: str, body: SubmitPromptRequest):
    records = _records()
    try:
        submitted = await TurnActions(records).submit_prompt(
            game_id, body.player_id, body.text, round_number=body.round_number
        )
    except GameActionError as exc:
        raise _http_error(exc) from exc
    except StoreError as exc:
        raise _unavailable(exc) from exc

    result = await _advance_and_publish(records, game_id)
    return {"submitted": submitted, "transition": result.model_dump(mode="json")}


@router.put("/games/{game_id}/frames")
async def save_frame(game_id: str, body: SaveFrameRequest):
    try:
        frame = await TurnActions(_records()).save_frame(
            game_id, body.player_id, body.frame_number, body.image_data,
            round_number=body.round_number,
        )
    except GameActionError as exc:
        raise _http_error(exc) from exc
    except StoreError as exc:
        raise _unavailable(exc) from exc
    return {
        "frame_id": frame.id,
        "round_id": frame.round_id,
        "frame_number": frame.frame_number,
        "has_content": frame.has_content,
        "saved_at": frame.saved_at.isoformat(),
    }


@router.post("/games/{game_id}/drawings")
async def submit_drawing(game_id: str, body: SubmitDrawingRequest):
    records = _records()
    try:
        submitted = await TurnActions(records).submit_drawing(
            game_id, body.player_id, force=body.force, round_number=body.round_number
        )
    except GameActionError as exc:
        raise _http_error(exc) from exc
    except StoreError as exc:
        raise _unavailable(exc) from exc

    result = await _advance_and_publish(records, game_id)
    return {"submitted": submitted, "transition": result.model_dump(mode="json")}


# ── Coordination ──────────────────────────────────────────────────────────────

@router.get("/games/{game_id}/quorum", response_model=QuorumResult)
async def get_quorum(game_id: str, round_number: Optional[int] = Query(None)):
    """Quorum for the current phase (or an earlier round of it via round_number)."""
    records = _records()
    game = await records.get_game(game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    phase = phase_of(game.status)
    if phase is None:
        raise HTTPException(status_code=409, detail="No phase is in progress")
    try:
        return await SubmissionTracker(records).check_quorum(
            game_id, round_number or game.current_round, phase
        )
    except StoreError as exc:
        raise _unavailable(exc) from exc


@router.post("/games/{game_id}/advance", response_model=TransitionResult)
async def advance(game_id: str):
    """Any client may call this at any time; it only moves the game at quorum."""
    records = _records()
    if not await records.get_game(game_id):
        raise HTTPException(status_code=404, detail="Game not found")
    return await _advance_and_publish(records, game_id)


@router.get("/games/{game_id}/chains", response_model=GameReplay)
async def get_chains(game_id: str):
    """Every player's chain. Only available once the game is complete."""
    records = _records()
    game = await records.get_game(game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    if game.status != GameStatus.COMPLETE:
        raise HTTPException(status_code=403, detail="Game has not finished yet")

    replay = await ChainReconstructor(records).load(game_id)
    if replay is None:
        raise HTTPException(status_code=404, detail="Game not found")
    return replay
