"""
Lobby actions: create a game, join it by room code, and start it.

Joins race each other, and the host's start, for the next seat. A join first
reserves it with a compare-and-swap on the game's (status, player_count) and
only then writes the Player row; the start expects the same player_count. So a
player is never seated in a started game, and total_rounds always equals the
final roster size. The players table is also unique on (game_id, turn_order).
"""
import logging
import random
from typing import Optional, Tuple

from config import settings
from models.errors import GameActionError
from models.game import (
    FRAMES_PER_ROUND_OPTIONS, MAX_NICKNAME_LENGTH, MAX_PLAYERS, MIN_PLAYERS,
    Game, GameStatus, Player,
)
from services.game_records import GameRecords
from agents.phase_coordinator import PhaseCoordinator, TransitionOutcome, TransitionResult
from utils.retry import bounded_retry
from utils.room_code import generate_room_code, normalize_room_code

logger = logging.getLogger(__name__)

# Attempts at finding a room code no open game is using
_ROOM_CODE_ATTEMPTS = 5


def _clean_nickname(name: str) -> str:
    nickname = " ".join((name or "").split())
    if not nickname:
        raise GameActionError("INVALID_NICKNAME", "Please enter a nickname", status_code=422)
    if len(nickname) > MAX_NICKNAME_LENGTH:
        raise GameActionError(
            "INVALID_NICKNAME",
            f"Nicknames are at most {MAX_NICKNAME_LENGTH} characters",
            status_code=422,
        )
    return nickname


class Lobby:

    def __init__(
        self,
        records: GameRecords,
        coordinator: Optional[PhaseCoordinator] = None,
        rng: Optional[random.Random] = None,
        base_delay: Optional[float] = None,
    ):
        self.records = records
        self.rng = rng or random.Random()
        self.base_delay = (
            base_delay if base_delay is not None else settings.retry_base_delay_seconds
        )
        self.coordinator = coordinator or PhaseCoordinator(records, base_delay=self.base_delay)

    async def _unused_room_code(self) -> str:
        code = generate_room_code(self.rng)
        for _ in range(_ROOM_CODE_ATTEMPTS):
            games = await self.records.find_games_by_room_code(code)
            if all(g.status == GameStatus.COMPLETE for g in games):
                return code
            code = generate_room_code(self.rng)
        return code

    async def create_game(self, host_name: str, frames_per_round: int = 3) -> Tuple[Game, Player]:
        """Create a lobby and seat the host at turn_order 1."""
        if frames_per_round not in FRAMES_PER_ROUND_OPTIONS:
            raise GameActionError(
                "INVALID_SETTINGS",
                f"Frames per round must be one of {', '.join(map(str, FRAMES_PER_ROUND_OPTIONS))}",
                status_code=422,
            )
        nickname = _clean_nickname(host_name)

        host = Player(game_id="", nickname=nickname, turn_order=1, is_host=True)
        game = Game(
            room_code=await self._unused_room_code(),
            host_player_id=host.id,
            frames_per_round=frames_per_round,
            player_count=1,
        )
        host.game_id = game.id
        await self.records.insert_game(game)
        await self.records.add_player(host)
        logger.info(f"[{game.id}] Game created (room '{game.room_code}', host {nickname})")
        return game, host

    async def _find_open_game(self, room_code: str) -> Game:
        games = await self.records.find_games_by_room_code(normalize_room_code(room_code))
        if not games:
            raise GameActionError("GAME_NOT_FOUND", "No game with that room code", 404)
        for game in games:
            if game.status == GameStatus.LOBBY:
                return game
        raise GameActionError("GAME_STARTED", "That game has already started")

    async def join_game(self, room_code: str, player_name: str) -> Tuple[Game, Player]:
        nickname = _clean_nickname(player_name)
        game = await self._find_open_game(room_code)

        async def _take_next_seat() -> Optional[Player]:
            current = await self.records.get_game(game.id)
            if current is None or current.status != GameStatus.LOBBY:
                raise GameActionError("GAME_STARTED", "That game has already started")
            seats = current.player_count
            if seats >= MAX_PLAYERS:
                raise GameActionError("GAME_FULL", f"Game is full ({MAX_PLAYERS} players max)")
            if not await self.records.reserve_seat(game.id, seats):
                logger.debug(f"[{game.id}] Seat {seats + 1} taken concurrently; recounting")
                return None
            # The seat is ours: no other join or start can succeed on this count
            return await self.records.add_player(Player(
                game_id=game.id,
                nickname=nickname,
                turn_order=seats + 1,
            ))

        # Every failed reservation means someone else took a seat or the game
        # started, so MAX_PLAYERS attempts always suffice
        outcome = await bounded_retry(
            _take_next_seat,
            should_retry=lambda player: player is None,
            attempts=MAX_PLAYERS,
            base_delay=self.base_delay / 10,
            label=f"[{game.id}] join",
        )
        if outcome.exhausted or outcome.value is None:
            raise GameActionError("JOIN_FAILED", "Could not join the game, please try again", 503)

        player = outcome.value
        logger.info(f"[{game.id}] {nickname} joined as player {player.turn_order}")
        return game, player

    async def start_game(self, game_id: str, host_player_id: str) -> TransitionResult:
        """Host only. Fixes total_rounds to the seat count at the moment of the start."""
        game = await self.records.get_game(game_id)
        if game is None:
            raise GameActionError("GAME_NOT_FOUND", "Game not found", status_code=404)
        if game.host_player_id != host_player_id:
            raise GameActionError("NOT_HOST", "Only the host can start the game", 403)
        if game.status != GameStatus.LOBBY:
            raise GameActionError("GAME_STARTED", "The game has already started")
        # Seats only grow while in the lobby, so this check cannot go stale
        if game.player_count < MIN_PLAYERS:
            raise GameActionError(
                "NOT_ENOUGH_PLAYERS", f"At least {MIN_PLAYERS} players are needed to start"
            )

        result = await self.coordinator.start_game(game_id)
        if result.outcome in (TransitionOutcome.ERROR, TransitionOutcome.GAVE_UP):
            raise GameActionError("START_FAILED", "Could not start the game, please try again", 503)
        return result
