from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from habitquest.time_utils import Clock, now_utc

logger = logging.getLogger(__name__)

FREE = "free"
PREMIUM = "premium"


class TierSource(Protocol):
    def get_tier_flags(self, user_id: str) -> tuple[bool, str] | None: ...


@dataclass(frozen=True)
class _Entry:
    is_premium: bool
    stored_at: datetime


class TierCache:
    """Per-process premium flag cache with a fixed TTL."""

    def __init__(self, ttl_seconds: int = 300, clock: Clock = now_utc) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: dict[str, _Entry] = {}

    def get(self, actor_id: str) -> bool | None:
        entry = self._entries.get(actor_id)
        if entry is None:
            return None
        if self.clock() - entry.stored_at >= self.ttl:
            del self._entries[actor_id]
            return None
        return entry.is_premium

    def set(self, actor_id: str, is_premium: bool) -> None:
        now = self.clock()
        self._sweep(now)
        self._entries[actor_id] = _Entry(is_premium=is_premium, stored_at=now)

    def _sweep(self, now: datetime) -> None:
        expired = [key for key, entry in self._entries.items() if now - entry.stored_at >= self.ttl]
        for key in expired:
            del self._entries[key]

    def invalidate(self, actor_id: str) -> None:
        self._entries.pop(actor_id, None)

    def clear(self) -> None:
        self._entries.clear()


class TierResolver:
    """Read-through premium lookup.

    A failed lookup or a missing profile resolves through ``on_error``
    (``assume_free`` or ``assume_premium``) and is never cached, so the next
    request retries the store.
    """

    def __init__(self, source: TierSource, cache: TierCache, on_error: str = "assume_free") -> None:
        if on_error not in ("assume_free", "assume_premium"):
            raise ValueError(f"Unknown tier lookup error policy: {on_error}")
        self.source = source
        self.cache = cache
        self.on_error = on_error

    def is_premium(self, actor_id: str) -> bool:
        cached = self.cache.get(actor_id)
        if cached is not None:
            return cached

        try:
            flags = self.source.get_tier_flags(actor_id)
        except sqlite3.Error as exc:
            logger.warning("Tier lookup failed user_id=%s policy=%s: %s", actor_id, self.on_error, exc)
            return self.on_error == "assume_premium"
        if flags is None:
            logger.warning("Tier lookup found no profile user_id=%s policy=%s", actor_id, self.on_error)
            return self.on_error == "assume_premium"

        is_premium, subscription_status = flags
        premium = is_premium or subscription_status == "active"
        self.cache.set(actor_id, premium)
        return premium

    def tier(self, actor_id: str) -> str:
        return PREMIUM if self.is_premium(actor_id) else FREE
