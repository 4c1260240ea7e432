"""
Error taxonomy for the HabitQuest API.

Every error carries a machine-readable ``error_code`` and a short
human-readable ``message``; the HTTP layer renders both so clients never
need to string-match internals.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from habitquest.rate_limiter import RateLimitResult


class HabitQuestError(Exception):
    status_code: int = 500
    default_code: str = "internal_error"
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
        is_retryable: bool | None = None,
    ) -> None:
        self.message = message
        self.details: dict[str, Any] = details or {}
        self.error_code = error_code or self.default_code
        self.is_retryable = self.default_retryable if is_retryable is None else is_retryable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error_code, "message": self.message}
        payload.update(self.details)
        return payload

    def __str__(self) -> str:
        details = f" | {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details}"


class Unauthorized(HabitQuestError):
    status_code = 401
    default_code = "unauthorized"


class InvalidInput(HabitQuestError):
    status_code = 400
    default_code = "invalid_input"


class NotFound(HabitQuestError):
    status_code = 404
    default_code = "not_found"


class AlreadyCompleted(HabitQuestError):
    status_code = 400
    default_code = "already_completed"


class DownstreamUnavailable(HabitQuestError):
    status_code = 500
    default_code = "downstream_unavailable"
    default_retryable = True


class InternalError(HabitQuestError):
    status_code = 500
    default_code = "internal_error"


class RateLimited(HabitQuestError):
    status_code = 429
    default_code = "rate_limited"
    default_retryable = True

    def __init__(self, result: RateLimitResult, endpoint: str) -> None:
        scope = "burst" if result.reason == "burst_limit_exceeded" else "usage"
        super().__init__(
            f"You've reached your {scope} limit. Please try again later.",
            details={"endpoint": endpoint, "reason": result.reason},
        )
        self.result = result
        self.endpoint = endpoint
