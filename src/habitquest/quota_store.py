from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Protocol

from habitquest.db_models import QuotaResult
from habitquest.time_utils import Clock, now_utc, window_bounds

logger = logging.getLogger(__name__)


class QuotaBackend(Protocol):
    def admit_quota(self, user_id: str, endpoint: str, limit: int, window_minutes: int, now: datetime) -> QuotaResult: ...
    def quota_usage(self, user_id: str, endpoint: str, window_minutes: int, now: datetime) -> int: ...
    def clear_quota(self, user_id: str, endpoint: str) -> int: ...


class QuotaStore:
    """Windowed request counters with an explicit policy for store failures.

    ``on_error`` decides what a failed admission means: ``allow`` lets the
    request through, ``deny`` rejects it. Either way the error text rides
    along on the result so callers can log it.
    """

    def __init__(self, backend: QuotaBackend, on_error: str = "allow", clock: Clock = now_utc) -> None:
        if on_error not in ("allow", "deny"):
            raise ValueError(f"Unknown quota store error policy: {on_error}")
        self.backend = backend
        self.on_error = on_error
        self.clock = clock

    def admit(self, actor_id: str, key: str, limit: int, window_minutes: int) -> QuotaResult:
        now = self.clock()
        try:
            return self.backend.admit_quota(actor_id, key, limit, window_minutes, now)
        except sqlite3.Error as exc:
            logger.error(
                "Quota store error user_id=%s key=%s policy=%s: %s",
                actor_id,
                key,
                self.on_error,
                exc,
            )
            _, window_end = window_bounds(now, window_minutes)
            return QuotaResult(
                allowed=self.on_error == "allow",
                current=0,
                limit=limit,
                reset_at=window_end,
                error=str(exc),
            )

    def usage(self, actor_id: str, key: str, window_minutes: int) -> int:
        return self.backend.quota_usage(actor_id, key, window_minutes, self.clock())

    def clear(self, actor_id: str, key: str) -> int:
        return self.backend.clear_quota(actor_id, key)
