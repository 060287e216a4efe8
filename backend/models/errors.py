"""
Error taxonomy shared by the store layer and the game logic.

  StoreError              permanent store failure (bad request, permission, ...)
  TransientStoreError     network / timeout; safe to retry with backoff
  DuplicateRecordError    unique-key collision on insert (expected under races)
  ChangeFeedUnavailable   the store offers no push feed; poll instead
  GameActionError         player-visible rejection with a human-readable reason

A rejected conditional write is not an error: it is a False return value.
"""
from typing import Optional


class StoreError(Exception):
    """A store call failed and retrying will not help."""


class TransientStoreError(StoreError):
    """A store call failed for a reason that may clear up on retry."""


class DuplicateRecordError(StoreError):
    def __init__(self, table: str, key: Optional[dict] = None):
        self.table = table
        self.key = key or {}
        super().__init__(f"Duplicate record in {table}: {self.key}")


class ChangeFeedUnavailable(StoreError):
    """Raised by subscribe() when the backend cannot push changes."""


class GameActionError(Exception):
    """
    A player action was rejected (wrong phase, full game, not the host, ...).
    Surfaced to the player as-is; never retried.
    """

    def __init__(self, code: str, message: str, status_code: int = 409):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}
