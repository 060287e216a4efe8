"""
Latest-write-wins reducer.

Rounds, prompts and frames can be written more than once for the same logical
key (racing round creation, autosave racing a final save, retried upserts).
Every read site reduces them through latest_by_key() instead of assuming the
store kept them unique.
"""
from typing import Callable, Dict, Hashable, Iterable, List, TypeVar

T = TypeVar("T")


def latest_by_key(
    records: Iterable[T],
    key: Callable[[T], Hashable],
    timestamp: Callable[[T], object],
) -> Dict[Hashable, T]:
    """Return {key: record with the greatest timestamp}. Ties keep the first seen."""
    latest: Dict[Hashable, T] = {}
    for record in records:
        k = key(record)
        existing = latest.get(k)
        if existing is None or timestamp(record) > timestamp(existing):
            latest[k] = record
    return latest


def latest_values(
    records: Iterable[T],
    key: Callable[[T], Hashable],
    timestamp: Callable[[T], object],
    sort_key: Callable[[T], object],
) -> List[T]:
    """latest_by_key() flattened to a list ordered by sort_key."""
    return sorted(latest_by_key(records, key, timestamp).values(), key=sort_key)
