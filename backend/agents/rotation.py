"""
Rotation Assignment — pure, stateless ring arithmetic.

Players sit on a ring ordered by turn_order. Every origin player i starts a
chain; in round r the chain's prompt is written by ring[i + r - 1] and drawn
by ring[i + r] (indices mod N). So the player who drew a chain in round r - 1
writes its next prompt in round r, looking at their own animation.
"""
from typing import List, NamedTuple, Optional

from models.game import Player


def drawer_index(origin_index: int, round_number: int, n: int) -> int:
    if n <= 0:
        raise ValueError("drawer_index needs at least one player")
    return (origin_index + round_number) % n


def prompt_author_index(origin_index: int, round_number: int, n: int) -> int:
    if n <= 0:
        raise ValueError("prompt_author_index needs at least one player")
    return (origin_index + round_number - 1) % n


def next_in_ring(index: int, n: int) -> int:
    return (index + 1) % n


def previous_in_ring(index: int, n: int) -> int:
    return (index - 1) % n


def ring_index(players: List[Player], player_id: str) -> Optional[int]:
    """Position of player_id in the ring, or None if they are not on the roster."""
    for i, p in enumerate(_ring(players)):
        if p.id == player_id:
            return i
    return None


class RoundAssignment(NamedTuple):
    origin: Player
    prompt_author: Player
    drawer: Player


def round_assignments(players: List[Player], round_number: int) -> List[RoundAssignment]:
    """Who writes and who draws each chain in round_number, one entry per origin."""
    ring = _ring(players)
    n = len(ring)
    return [
        RoundAssignment(
            origin=ring[i],
            prompt_author=ring[prompt_author_index(i, round_number, n)],
            drawer=ring[drawer_index(i, round_number, n)],
        )
        for i in range(n)
    ]


def prompt_source_for(players: List[Player], drawer_id: str) -> Optional[Player]:
    """The player whose current-round prompt `drawer_id` illustrates (the previous seat)."""
    ring = _ring(players)
    idx = ring_index(ring, drawer_id)
    if idx is None:
        return None
    return ring[previous_in_ring(idx, len(ring))]


def _ring(players: List[Player]) -> List[Player]:
    return sorted(players, key=lambda p: p.turn_order)
