from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Protocol

from habitquest.db_models import QuotaResult
from habitquest.time_utils import window_bounds


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...


class QuotaMixin:
    def admit_quota(
        self: DbProtocol,
        user_id: str,
        endpoint: str,
        limit: int,
        window_minutes: int,
        now: datetime,
    ) -> QuotaResult:
        """Count one request against the aligned window, unless the window is full.

        The increment carries its own ceiling, so concurrent callers can never
        push ``request_count`` past ``limit``. A limit of zero admits nothing.
        Rows from earlier windows of the same key are dropped in the same
        transaction.
        """
        window_start, window_end = window_bounds(now, window_minutes)
        key = (user_id, endpoint, window_start.isoformat())
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "DELETE FROM api_rate_limits WHERE user_id = ? AND endpoint = ? AND window_start < ?",
                key,
            )
            admitted = 0
            if limit > 0:
                cur = conn.execute(
                    """
                    INSERT INTO api_rate_limits(user_id, endpoint, window_start, window_minutes, request_count)
                    VALUES (?, ?, ?, ?, 1)
                    ON CONFLICT(user_id, endpoint, window_start) DO UPDATE SET
                        request_count = api_rate_limits.request_count + 1
                    WHERE api_rate_limits.request_count < ?
                    """,
                    (*key, window_minutes, limit),
                )
                admitted = cur.rowcount
            row = conn.execute(
                "SELECT request_count FROM api_rate_limits WHERE user_id = ? AND endpoint = ? AND window_start = ?",
                key,
            ).fetchone()
        current = int(row["request_count"]) if row else 0
        return QuotaResult(allowed=admitted == 1, current=current, limit=limit, reset_at=window_end)

    def quota_usage(self: DbProtocol, user_id: str, endpoint: str, window_minutes: int, now: datetime) -> int:
        window_start, _ = window_bounds(now, window_minutes)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT request_count FROM api_rate_limits WHERE user_id = ? AND endpoint = ? AND window_start = ?",
                (user_id, endpoint, window_start.isoformat()),
            ).fetchone()
        return int(row["request_count"]) if row else 0

    def clear_quota(self: DbProtocol, user_id: str, endpoint: str) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM api_rate_limits WHERE user_id = ? AND endpoint IN (?, ?)",
                (user_id, endpoint, f"{endpoint}:burst"),
            )
        return cur.rowcount
