from datetime import datetime


class MatchEngineError(Exception):
    """Base class for conditions the engine reports to its callers."""

    code = "error"


class InvalidInput(MatchEngineError):
    code = "invalid"


class AlreadyBlocked(MatchEngineError):
    code = "blocked"


class ConcurrentConflict(MatchEngineError):
    """Transient: the pair was busy. Safe to retry, recording is idempotent."""

    code = "conflict"


class QuotaExceeded(MatchEngineError):
    code = "quota_exceeded"

    def __init__(self, action_type: str, limit: int, resets_at: datetime) -> None:
        super().__init__(f"Daily {action_type} limit reached ({limit} per day)")
        self.action_type = action_type
        self.limit = limit
        self.remaining = 0
        self.resets_at = resets_at
