"""
Bounded retry with reconciliation.

One combinator for every "try, and if that didn't take, check whether someone
else already did it" loop in the game: quorum reads, phase transitions, game
start and lobby joins all go through bounded_retry().

    outcome = await bounded_retry(
        attempt_transition,
        should_retry=lambda r: r.lost_race,
        reconcile=already_at_target,
        attempts=3,
    )
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar

from models.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    value: Optional[T]
    attempts: int
    reconciled: bool = False   # the goal was found already achieved (by another client)
    exhausted: bool = False    # ran out of attempts
    error: Optional[BaseException] = None  # last transient error, if the last attempt raised

    @property
    def ok(self) -> bool:
        return not self.exhausted


def _never(_value) -> bool:
    return False


async def bounded_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    should_retry: Callable[[T], bool] = _never,
    reconcile: Optional[Callable[[Optional[T]], Awaitable[bool]]] = None,
    attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (TransientStoreError,),
    label: str = "operation",
) -> RetryOutcome[T]:
    """
    Run `operation` up to `attempts` times.

    An attempt is retried when it raises one of `retry_on` or when
    `should_retry(result)` is true. Before each retry, `reconcile(result)` (if
    given) is awaited; True means the goal was reached some other way and the
    loop stops with `reconciled=True`. Backoff grows linearly:
    base_delay, 2*base_delay, ...

    Exceptions outside `retry_on` propagate unchanged.
    """
    attempts = max(1, attempts)
    last_value: Optional[T] = None
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            value = await operation()
        except retry_on as exc:
            last_value, last_error = None, exc
            logger.warning("%s: attempt %d/%d failed: %s", label, attempt, attempts, exc)
        else:
            last_value, last_error = value, None
            if not should_retry(value):
                return RetryOutcome(value=value, attempts=attempt)

        if reconcile is not None:
            try:
                achieved = await reconcile(last_value)
            except retry_on as exc:
                logger.debug("%s: reconcile check failed: %s", label, exc)
                achieved = False
            if achieved:
                return RetryOutcome(value=last_value, attempts=attempt, reconciled=True)

        if attempt < attempts and base_delay > 0:
            await asyncio.sleep(base_delay * attempt)

    return RetryOutcome(value=last_value, attempts=attempts, exhausted=True, error=last_error)
