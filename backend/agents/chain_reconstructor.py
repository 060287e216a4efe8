"""
Chain Reconstructor — rebuilds every player's prompt → drawing → prompt chain
once the game is complete.

reconstruct_chains() is pure and total: missing prompts become None, missing
drawings become empty frame lists, and each chain always has exactly
total_rounds steps. Who wrote and who drew each step comes from
rotation.round_assignments(), the same ring walk the players followed.

Duplicate Round rows are not reduced to the latest-started one first. Every
row, superseded or not, maps its frames to its round_number, and the frames
are then collapsed per (round, player, frame_number) with the latest-wins
reducer. This is a superset of the latest-round-only reading: frames saved
against a superseded row still show up. Round inserts are unique on
(game_id, round_number), so such rows only come from data written outside
ensure_round().
"""
import logging
from typing import Dict, List, Optional, Tuple

from models.game import ChainStep, Frame, GameReplay, Player, PlayerChain, Prompt, Round
from services.game_records import GameRecords
from agents.rotation import round_assignments
from utils.latest import latest_by_key

logger = logging.getLogger(__name__)


def reconstruct_chains(
    players: List[Player],
    rounds: List[Round],
    prompts: List[Prompt],
    frames: List[Frame],
    total_rounds: int,
) -> List[PlayerChain]:
    if not players:
        return []

    round_number_by_id: Dict[str, int] = {r.id: r.round_number for r in rounds}

    latest_prompts = latest_by_key(
        prompts,
        key=lambda p: (p.round_number, p.player_id),
        timestamp=lambda p: p.updated_at,
    )

    placed = [f for f in frames if f.round_id in round_number_by_id]
    latest_frames = latest_by_key(
        placed,
        key=lambda f: (round_number_by_id[f.round_id], f.player_id, f.frame_number),
        timestamp=lambda f: f.saved_at,
    )
    frames_by_drawing: Dict[Tuple[int, str], List[Frame]] = {}
    for (round_number, player_id, _), frame in latest_frames.items():
        frames_by_drawing.setdefault((round_number, player_id), []).append(frame)
    for drawing in frames_by_drawing.values():
        drawing.sort(key=lambda f: f.frame_number)

    steps_by_origin: Dict[str, List[ChainStep]] = {}
    for r in range(1, max(total_rounds, 0) + 1):
        for assignment in round_assignments(players, r):
            author, drawer = assignment.prompt_author, assignment.drawer
            steps_by_origin.setdefault(assignment.origin.id, []).append(ChainStep(
                round=r,
                prompt=latest_prompts.get((r, author.id)),
                prompt_author=author,
                animation_frames=frames_by_drawing.get((r, drawer.id), []),
                animation_author=drawer,
            ))

    ring = sorted(players, key=lambda p: p.turn_order)
    return [PlayerChain(origin=o, steps=steps_by_origin.get(o.id, [])) for o in ring]


class ChainReconstructor:

    def __init__(self, records: GameRecords):
        self.records = records

    async def load(self, game_id: str) -> Optional[GameReplay]:
        """Read every table for the game and assemble the replay. None if the game is unknown."""
        game = await self.records.get_game(game_id)
        if game is None:
            return None
        players = await self.records.get_players(game_id)
        rounds = await self.records.get_round_rows(game_id)
        prompts = await self.records.get_prompts(game_id)
        frames = await self.records.get_game_frame_rows(rounds)

        chains = reconstruct_chains(players, rounds, prompts, frames, game.total_rounds)
        logger.info(
            f"[{game_id}] Reconstructed {len(chains)} chains over {game.total_rounds} rounds"
        )
        return GameReplay(game=game, players=players, chains=chains)
