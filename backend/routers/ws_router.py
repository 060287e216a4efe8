"""
WebSocket game-status feed.

URL: /ws/{game_id}?playerId={player_id}

Connection flow:
  1. Validate the game exists (close 4404 otherwise)
  2. Send a private "connected" message with the current game record
  3. Push {"type": "game_update", "game": {...}} whenever (status, current_round) changes
  4. Message loop: "ping" → "pong"

One watcher task per game with at least one socket. It follows the store's
change feed for the game record and falls back to polling when the backend
has no feed. Pushes are de-duplicated per game on (status, current_round), so
the HTTP routes may also publish directly after a transition they caused.
"""
import asyncio
import json
import logging
from typing import Dict, Optional, Set

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from config import settings
from models.errors import ChangeFeedUnavailable, StoreError
from models.game import Game, GameStateKey
from services.game_records import GameRecords
from services.store import GAMES, get_store

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """
    Tracks active WebSocket connections per game.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        self._games: Dict[str, Set[WebSocket]] = {}
        self._last_state: Dict[str, GameStateKey] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, game_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._games.setdefault(game_id, set()).add(ws)
        logger.debug(f"[{game_id}] socket connected ({self.count(game_id)} total)")

    def disconnect(self, game_id: str, ws: WebSocket) -> None:
        conns = self._games.get(game_id, set())
        conns.discard(ws)
        if not conns:
            self._games.pop(game_id, None)
            self._last_state.pop(game_id, None)

    def count(self, game_id: str) -> int:
        return len(self._games.get(game_id, set()))

    def seen(self, game: Game) -> None:
        self._last_state.setdefault(game.id, game.state)

    # ── Sending ────────────────────────────────────────────────────────────────

    async def broadcast(self, game_id: str, message: Dict) -> None:
        for ws in list(self._games.get(game_id, set())):
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[{game_id}] broadcast failed: {exc}")
                self.disconnect(game_id, ws)

    async def publish_game(self, game: Game) -> bool:
        """Push a game_update if (status, current_round) changed since the last push."""
        if not self.count(game.id):
            return False
        if self._last_state.get(game.id) == game.state:
            return False
        self._last_state[game.id] = game.state
        await self.broadcast(game.id, {"type": "game_update", "game": game.model_dump(mode="json")})
        logger.info(f"[{game.id}] Pushed game_update {game.state}")
        return True


manager = ConnectionManager()

# One watcher per game with open sockets
_watchers: Dict[str, asyncio.Task] = {}


async def _poll_game(records: GameRecords, game_id: str) -> None:
    while manager.count(game_id):
        game = await records.get_game(game_id)
        if game is not None:
            await manager.publish_game(game)
        await asyncio.sleep(settings.poll_interval_seconds)


async def _watch_game(game_id: str) -> None:
    records = GameRecords(get_store())
    try:
        try:
            feed = await records.store.subscribe(GAMES, {"id": game_id})
        except ChangeFeedUnavailable:
            logger.info(f"[{game_id}] No change feed; polling for game updates")
            await _poll_game(records, game_id)
            return
        try:
            async for event in feed:
                await manager.publish_game(Game.model_validate(event.record))
        finally:
            feed.close()
    except StoreError as exc:
        logger.warning(f"[{game_id}] Game watcher stopped: {exc}", exc_info=True)
    finally:
        if _watchers.get(game_id) is asyncio.current_task():
            del _watchers[game_id]


def _ensure_watcher(game_id: str) -> None:
    if game_id not in _watchers:
        _watchers[game_id] = asyncio.create_task(_watch_game(game_id))


def _stop_watcher(game_id: str) -> None:
    task = _watchers.pop(game_id, None)
    if task is not None:
        task.cancel()


@router.websocket("/ws/{game_id}")
async def websocket_endpoint(
    ws: WebSocket,
    game_id: str,
    playerId: Optional[str] = Query(None, description="Player UUID from join response"),
):
    records = GameRecords(get_store())
    game = await records.get_game(game_id)
    if not game:
        await ws.close(code=4404, reason="Game not found")
        return

    await manager.connect(game_id, ws)
    await ws.send_json({
        "type": "connected",
        "playerId": playerId,
        "game": game.model_dump(mode="json"),
    })
    manager.seen(game)
    _ensure_watcher(game_id)

    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if isinstance(data, dict) and data.get("type") == "ping":
                await ws.send_json({"type": "pong"})
            else:
                await ws.send_json({"type": "error", "message": "Unknown message type"})
    except WebSocketDisconnect:
        logger.debug(f"[{game_id}] socket disconnected ({playerId})")
    finally:
        manager.disconnect(game_id, ws)
        if not manager.count(game_id):
            _stop_watcher(game_id)
