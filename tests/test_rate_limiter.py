from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from habitquest.db import Database
from habitquest.quota_store import QuotaStore
from habitquest.rate_limiter import (
    BURST_LIMIT_EXCEEDED,
    RATE_LIMITS,
    TIER_LIMIT_EXCEEDED,
    RateLimiter,
    RateLimitResult,
    load_rate_limits,
    rate_limit_response,
)
from habitquest.tier_cache import FREE, PREMIUM, TierCache, TierResolver


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _limiter(tmp_path: Path, clock: _Clock, premium: bool = False, policies: dict | None = None) -> RateLimiter:
    db = Database(tmp_path / "app.db")
    db.create_profile("u1", clock(), is_premium=premium, subscription_status="active" if premium else "inactive")
    tiers = TierResolver(db, TierCache(clock=clock))
    return RateLimiter(QuotaStore(db, clock=clock), tiers, policies=policies, clock=clock)


def test_free_quest_transform_rejects_twenty_first_call(tmp_path: Path) -> None:
    clock = _Clock(_dt(2025, 1, 6, 9))
    limiter = _limiter(tmp_path, clock)

    results = []
    for _ in range(21):
        results.append(limiter.check_rate_limit("u1", "transform-quest"))
        clock.now += timedelta(minutes=1)

    assert all(r.allowed for r in results[:20])
    last = results[20]
    assert last.allowed is False
    assert last.limit == 20
    assert last.current == 20
    assert last.reason == TIER_LIMIT_EXCEEDED
    assert last.tier == FREE
    assert last.reset_at == _dt(2025, 1, 7, 0)


def test_burst_limit_applies_within_a_minute(tmp_path: Path) -> None:
    clock = _Clock(_dt(2025, 1, 6, 9))
    limiter = _limiter(tmp_path, clock)

    results = [limiter.check_rate_limit("u1", "transform-quest") for _ in range(6)]

    assert [r.allowed for r in results] == [True] * 5 + [False]
    assert results[5].reason == BURST_LIMIT_EXCEEDED
    assert results[5].limit == 5
    assert results[5].reset_at == _dt(2025, 1, 6, 9, 1)


def test_premium_gets_larger_quota(tmp_path: Path) -> None:
    clock = _Clock(_dt(2025, 1, 6, 9))
    limiter = _limiter(tmp_path, clock, premium=True)

    result = limiter.check_rate_limit("u1", "transform-journal")

    assert result.allowed is True
    assert result.tier == PREMIUM
    assert result.limit == 20


def test_premium_checkout_is_always_rejected(tmp_path: Path) -> None:
    clock = _Clock(_dt(2025, 1, 6, 9))
    limiter = _limiter(tmp_path, clock, premium=True)

    result = limiter.check_rate_limit("u1", "create-checkout")

    assert result.allowed is False
    assert result.limit == 0
    assert result.reason == TIER_LIMIT_EXCEEDED


def test_unknown_endpoint_uses_default_policy(tmp_path: Path) -> None:
    limiter = _limiter(tmp_path, _Clock(_dt(2025, 1, 6, 9)))

    assert limiter.policy_for("export-data") == RATE_LIMITS["default"]
    assert limiter.check_rate_limit("u1", "export-data").limit == 100


def test_status_reports_usage(tmp_path: Path) -> None:
    clock = _Clock(_dt(2025, 1, 6, 9))
    limiter = _limiter(tmp_path, clock)
    limiter.check_rate_limit("u1", "transform-quest")
    limiter.check_rate_limit("u1", "transform-quest")

    status = limiter.status("u1")

    assert status["is_premium"] is False
    assert status["tier"] == FREE
    assert status["limits"]["quest_transforms"] == {
        "current": 2,
        "limit": 20,
        "reset_at": _dt(2025, 1, 7, 0).isoformat(),
    }
    assert status["limits"]["journal_transforms"]["current"] == 0
    assert status["limits"]["journal_transforms"]["limit"] == 5


def test_clear_resets_counters(tmp_path: Path) -> None:
    clock = _Clock(_dt(2025, 1, 6, 9))
    limiter = _limiter(tmp_path, clock)
    for _ in range(5):
        limiter.check_rate_limit("u1", "transform-quest")
    assert limiter.check_rate_limit("u1", "transform-quest").allowed is False

    assert limiter.clear("u1", "transform-quest") == 2
    assert limiter.check_rate_limit("u1", "transform-quest").allowed is True


def test_yaml_overrides_merge_with_builtin(tmp_path: Path) -> None:
    path = tmp_path / "limits.yaml"
    path.write_text(
        "transform-quest:\n"
        "  free: {limit: 2, window: 60}\n"
        "export-data:\n"
        "  premium: {limit: 7, window: 30}\n"
        "complete-quest:\n"
        "  free: {limit: -1, window: 60}\n"
    )

    policies = load_rate_limits(path)

    assert policies["transform-quest"].free.limit == 2
    assert policies["transform-quest"].free.window_minutes == 60
    assert policies["transform-quest"].premium == RATE_LIMITS["transform-quest"].premium
    assert policies["export-data"].premium.limit == 7
    assert policies["export-data"].free == RATE_LIMITS["default"].free
    assert policies["complete-quest"] == RATE_LIMITS["complete-quest"]


def test_missing_yaml_keeps_builtin(tmp_path: Path) -> None:
    assert load_rate_limits(tmp_path / "nope.yaml") == RATE_LIMITS
    assert load_rate_limits(None) == RATE_LIMITS


def test_rate_limit_response_headers() -> None:
    now = datetime(2025, 1, 6, 23, 59, 30, 500000, tzinfo=timezone.utc)
    result = RateLimitResult(
        allowed=False,
        current=20,
        limit=20,
        reset_at=_dt(2025, 1, 7, 0),
        reason=TIER_LIMIT_EXCEEDED,
    )

    body, headers = rate_limit_response(result, now)

    assert body["error"] == "rate_limited"
    assert body["limit"] == 20
    assert body["retry_after"] == 30
    assert body["message"] == "You've reached your usage limit. Please try again later."
    assert headers["X-RateLimit-Limit"] == "20"
    assert headers["X-RateLimit-Remaining"] == "0"
    assert headers["X-RateLimit-Reset"] == _dt(2025, 1, 7, 0).isoformat()
    assert headers["Retry-After"] == "30"


def test_retry_after_never_negative() -> None:
    result = RateLimitResult(
        allowed=False,
        current=1,
        limit=1,
        reset_at=_dt(2025, 1, 6, 9),
        reason=BURST_LIMIT_EXCEEDED,
    )

    body, headers = rate_limit_response(result, _dt(2025, 1, 6, 10))

    assert body["retry_after"] == 0
    assert headers["Retry-After"] == "0"
    assert "burst" in body["message"]
