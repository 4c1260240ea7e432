from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

from habitquest.tier_cache import FREE, PREMIUM, TierCache, TierResolver


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class _Source:
    def __init__(self, flags: dict[str, tuple[bool, str]]) -> None:
        self.flags = flags
        self.calls = 0
        self.fail = False

    def get_tier_flags(self, user_id: str) -> tuple[bool, str] | None:
        self.calls += 1
        if self.fail:
            raise sqlite3.OperationalError("disk I/O error")
        return self.flags.get(user_id)


def test_cache_entry_expires_after_ttl() -> None:
    clock = _Clock(_dt(2025, 1, 6))
    cache = TierCache(ttl_seconds=300, clock=clock)
    cache.set("u1", True)

    clock.now += timedelta(seconds=299)
    assert cache.get("u1") is True

    clock.now += timedelta(seconds=1)
    assert cache.get("u1") is None


def test_invalidate_and_clear() -> None:
    cache = TierCache(clock=_Clock(_dt(2025, 1, 6)))
    cache.set("u1", True)
    cache.set("u2", False)

    cache.invalidate("u1")
    assert cache.get("u1") is None
    assert cache.get("u2") is False

    cache.clear()
    assert cache.get("u2") is None


def test_set_sweeps_expired_entries_of_other_actors() -> None:
    clock = _Clock(_dt(2025, 1, 6))
    cache = TierCache(ttl_seconds=300, clock=clock)
    for n in range(50):
        cache.set(f"user-{n}", False)

    clock.now += timedelta(seconds=120)
    cache.set("fresh", True)
    assert len(cache._entries) == 51

    clock.now += timedelta(seconds=180)
    cache.set("latest", True)

    assert sorted(cache._entries) == ["fresh", "latest"]


def test_resolver_reads_through_once_within_ttl() -> None:
    clock = _Clock(_dt(2025, 1, 6))
    source = _Source({"u1": (False, "active")})
    resolver = TierResolver(source, TierCache(clock=clock))

    assert resolver.tier("u1") == PREMIUM
    assert resolver.is_premium("u1") is True
    assert source.calls == 1

    clock.now += timedelta(minutes=5)
    resolver.is_premium("u1")
    assert source.calls == 2


def test_stale_value_is_served_until_expiry() -> None:
    clock = _Clock(_dt(2025, 1, 6))
    source = _Source({"u1": (False, "inactive")})
    resolver = TierResolver(source, TierCache(clock=clock))
    assert resolver.tier("u1") == FREE

    source.flags["u1"] = (True, "active")
    assert resolver.tier("u1") == FREE

    resolver.cache.invalidate("u1")
    assert resolver.tier("u1") == PREMIUM


def test_lookup_failure_uses_policy_and_is_not_cached() -> None:
    source = _Source({"u1": (True, "active")})
    source.fail = True
    resolver = TierResolver(source, TierCache(clock=_Clock(_dt(2025, 1, 6))))

    assert resolver.is_premium("u1") is False
    assert resolver.cache.get("u1") is None

    source.fail = False
    assert resolver.is_premium("u1") is True


def test_missing_profile_can_assume_premium() -> None:
    resolver = TierResolver(_Source({}), TierCache(clock=_Clock(_dt(2025, 1, 6))), on_error="assume_premium")

    assert resolver.is_premium("ghost") is True
    assert resolver.cache.get("ghost") is None
