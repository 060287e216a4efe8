import random
from typing import Optional

_FIRST_WORDS = [
    "sunny", "cozy", "happy", "quiet", "bright", "warm", "cool", "wild", "calm", "sweet",
    "tiny", "huge", "soft", "bold", "neat", "keen", "fresh", "brave", "wise", "kind",
    "lucky", "magic", "dreamy", "snug", "peaceful", "joyful", "cheerful", "gentle", "merry", "lively",
]

_SECOND_WORDS = [
    "cat", "dog", "bee", "fox", "owl", "bunny", "bird", "fish", "deer", "bear",
    "creek", "brook", "grove", "lane", "path", "trail", "ridge", "hill", "dale", "vale",
    "garden", "meadow", "forest", "river", "lake", "pond", "ocean", "beach", "island", "shore",
]

_THIRD_WORDS = [
    "inn", "bnb", "retreat", "haven", "hideaway", "sanctuary", "cove", "nest", "den", "roost",
    "lodge", "cabin", "cottage", "villa", "manor", "estate", "house", "home", "place", "spot",
]


def generate_room_code(rng: Optional[random.Random] = None) -> str:
    """A memorable two- or three-word room code, e.g. "sunny creek inn"."""
    rng = rng or random.Random()
    words = [rng.choice(_FIRST_WORDS), rng.choice(_SECOND_WORDS)]
    if rng.random() > 0.5:
        words.append(rng.choice(_THIRD_WORDS))
    return " ".join(words)


def normalize_room_code(code: str) -> str:
    """Room codes match case-insensitively and ignore extra whitespace."""
    return " ".join(code.lower().split())
