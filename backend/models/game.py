from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from enum import Enum
from datetime import datetime, timezone
import uuid


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class GameStatus(str, Enum):
    LOBBY = "lobby"         # waiting for players to join
    PROMPT = "prompt"       # everyone writes a prompt for the current round
    DRAWING = "drawing"     # everyone illustrates the previous player's prompt
    COMPLETE = "complete"   # chains are ready for playback


class SubmissionPhase(str, Enum):
    PROMPT = "prompt"
    DRAWING = "drawing"


# ── Fixed game rules (not runtime-configurable) ───────────────────────────────

PHASE_DURATIONS: Dict[SubmissionPhase, float] = {
    SubmissionPhase.PROMPT: 60.0,
    SubmissionPhase.DRAWING: 180.0,
}
FRAMES_PER_ROUND_OPTIONS = (3, 5, 8)
MAX_PLAYERS = 10
MIN_PLAYERS = 2
MAX_PROMPT_LENGTH = 200
MAX_NICKNAME_LENGTH = 20

# Serialised stroke lists the drawing surface writes for a blank frame
_EMPTY_IMAGE_DATA = {"", "[]", "null"}


def phase_of(status: GameStatus) -> Optional[SubmissionPhase]:
    """Submission phase collected while the game is in `status` (None outside play)."""
    if status == GameStatus.PROMPT:
        return SubmissionPhase.PROMPT
    if status == GameStatus.DRAWING:
        return SubmissionPhase.DRAWING
    return None


class Game(BaseModel):
    id: str = Field(default_factory=_new_id)
    room_code: str
    host_player_id: str
    status: GameStatus = GameStatus.LOBBY
    current_round: int = 0
    total_rounds: int = 1  # fixed to the player count at game start
    player_count: int = 0  # seats reserved in the lobby; joins and start compare-and-swap on it
    frames_per_round: int = 3
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def state(self) -> "GameStateKey":
        return GameStateKey(status=self.status, current_round=self.current_round)


class GameStateKey(BaseModel):
    """The (status, current_round) pair every transition compares and swaps."""
    status: GameStatus
    current_round: int

    def as_fields(self) -> Dict[str, Any]:
        return {"status": self.status.value, "current_round": self.current_round}

    def __str__(self) -> str:
        return f"{self.status.value}({self.current_round})"


class Player(BaseModel):
    id: str = Field(default_factory=_new_id)
    game_id: str
    nickname: str
    turn_order: int  # 1..N, dense and unique per game
    is_host: bool = False
    joined_at: datetime = Field(default_factory=_utcnow)

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nickname": self.nickname,
            "turn_order": self.turn_order,
            "is_host": self.is_host,
        }


class Round(BaseModel):
    id: str = Field(default_factory=_new_id)
    game_id: str
    round_number: int
    started_at: datetime = Field(default_factory=_utcnow)


class Prompt(BaseModel):
    id: str = Field(default_factory=_new_id)
    game_id: str
    round_number: int
    player_id: str
    text: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Frame(BaseModel):
    id: str = Field(default_factory=_new_id)
    round_id: str
    player_id: str
    frame_number: int
    image_data: str = ""  # opaque serialised strokes from the drawing surface
    saved_at: datetime = Field(default_factory=_utcnow)

    @property
    def has_content(self) -> bool:
        return (self.image_data or "").strip() not in _EMPTY_IMAGE_DATA


class SubmissionRecord(BaseModel):
    id: str = Field(default_factory=_new_id)
    game_id: str
    round_number: int
    player_id: str
    phase: SubmissionPhase
    submitted_at: datetime = Field(default_factory=_utcnow)


# ── Derived / read-side shapes ────────────────────────────────────────────────

class QuorumResult(BaseModel):
    satisfied: bool
    submitted_count: int
    player_count: int
    missing_player_ids: List[str] = []
    error: Optional[str] = None  # set when transient read retries were exhausted


class ChainStep(BaseModel):
    round: int
    prompt: Optional[Prompt] = None
    prompt_author: Optional[Player] = None
    animation_frames: List[Frame] = []
    animation_author: Optional[Player] = None


class PlayerChain(BaseModel):
    origin: Player
    steps: List[ChainStep] = []


class GameReplay(BaseModel):
    game: Game
    players: List[Player]
    chains: List[PlayerChain]


class PlayerTask(BaseModel):
    """What a player's client should render right now."""
    action: Literal["wait", "write_prompt", "draw", "view_chains"]
    status: GameStatus
    round_number: int
    submitted: bool = False
    # draw: the prompt to illustrate and who wrote it
    prompt: Optional[str] = None
    prompt_author_id: Optional[str] = None
    # write_prompt (round > 1): the animation this player drew last round
    reference_frames: List[Frame] = []
    frames_per_round: int = 3


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateGameRequest(BaseModel):
    host_name: str = "Host"
    frames_per_round: int = 3


class CreateGameResponse(BaseModel):
    game_id: str
    room_code: str
    host_player_id: str


class JoinGameRequest(BaseModel):
    room_code: str
    player_name: str


class JoinGameResponse(BaseModel):
    game_id: str
    player_id: str
    turn_order: int


class SubmitPromptRequest(BaseModel):
    player_id: str
    text: str = ""
    round_number: Optional[int] = None  # rejected as stale if the game has moved on


class SaveFrameRequest(BaseModel):
    player_id: str
    frame_number: int
    image_data: str
    round_number: Optional[int] = None


class SubmitDrawingRequest(BaseModel):
    player_id: str
    force: bool = False
    round_number: Optional[int] = None
