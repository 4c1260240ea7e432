"""
Tiered, multi-window rate limiting for expensive endpoints.

Each endpoint has a free and a premium quota over a long window plus a
short burst quota shared by both tiers. The main quota is checked first; a
request it admits is then counted against ``<endpoint>:burst``. Callers must
run ``check_rate_limit`` before any LLM call it guards.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from habitquest.quota_store import QuotaStore
from habitquest.tier_cache import FREE, PREMIUM, TierResolver
from habitquest.time_utils import Clock, now_utc, window_bounds

logger = logging.getLogger(__name__)

TIER_LIMIT_EXCEEDED = "tier_limit_exceeded"
BURST_LIMIT_EXCEEDED = "burst_limit_exceeded"

STATUS_ENDPOINTS = {
    "quest_transforms": "transform-quest",
    "journal_transforms": "transform-journal",
}


@dataclass(frozen=True)
class WindowLimit:
    limit: int
    window_minutes: int


@dataclass(frozen=True)
class EndpointPolicy:
    free: WindowLimit
    premium: WindowLimit
    burst: WindowLimit | None

    def for_tier(self, tier: str) -> WindowLimit:
        return self.premium if tier == PREMIUM else self.free


RATE_LIMITS: dict[str, EndpointPolicy] = {
    "transform-quest": EndpointPolicy(
        free=WindowLimit(20, 24 * 60),
        premium=WindowLimit(200, 24 * 60),
        burst=WindowLimit(5, 1),
    ),
    "transform-journal": EndpointPolicy(
        free=WindowLimit(5, 24 * 60),
        premium=WindowLimit(20, 24 * 60),
        burst=WindowLimit(3, 1),
    ),
    "complete-quest": EndpointPolicy(
        free=WindowLimit(100, 60),
        premium=WindowLimit(500, 60),
        burst=WindowLimit(10, 1),
    ),
    "weekly-summary": EndpointPolicy(
        free=WindowLimit(1, 7 * 24 * 60),
        premium=WindowLimit(2, 7 * 24 * 60),
        burst=WindowLimit(1, 60),
    ),
    # Premium users have nothing to buy.
    "create-checkout": EndpointPolicy(
        free=WindowLimit(3, 60),
        premium=WindowLimit(0, 1),
        burst=WindowLimit(1, 5),
    ),
    "default": EndpointPolicy(
        free=WindowLimit(100, 60),
        premium=WindowLimit(500, 60),
        burst=WindowLimit(20, 1),
    ),
}


def _parse_window(raw: Any, fallback: WindowLimit | None) -> WindowLimit | None:
    if not isinstance(raw, dict):
        return fallback
    try:
        limit = int(raw.get("limit", fallback.limit if fallback else 0))
        window = int(raw.get("window", fallback.window_minutes if fallback else 1))
    except (TypeError, ValueError):
        return fallback
    if limit < 0 or window < 1:
        return fallback
    return WindowLimit(limit, window)


def load_rate_limits(path: Path | None) -> dict[str, EndpointPolicy]:
    """Built-in policies, optionally overridden per endpoint from a YAML file.

    The file maps endpoint names to ``free``/``premium``/``burst`` blocks of
    ``{limit, window}`` (window in minutes). Missing blocks keep the built-in
    value; unknown endpoints start from ``default``.
    """
    policies = dict(RATE_LIMITS)
    if path is None or not path.exists():
        return policies

    raw = yaml.safe_load(path.read_text()) or {}
    if not isinstance(raw, dict):
        return policies

    for name, payload in raw.items():
        if not isinstance(payload, dict):
            continue
        key = str(name).strip()
        base = policies.get(key, policies["default"])
        free = _parse_window(payload.get("free"), base.free)
        premium = _parse_window(payload.get("premium"), base.premium)
        assert free is not None and premium is not None
        policies[key] = EndpointPolicy(
            free=free,
            premium=premium,
            burst=_parse_window(payload.get("burst"), base.burst),
        )
    return policies


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    current: int
    limit: int
    reset_at: datetime
    reason: str | None = None
    tier: str = FREE
    error: str | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)


class RateLimiter:
    def __init__(
        self,
        quota_store: QuotaStore,
        tiers: TierResolver,
        policies: dict[str, EndpointPolicy] | None = None,
        clock: Clock = now_utc,
    ) -> None:
        self.quota_store = quota_store
        self.tiers = tiers
        self.policies = policies or RATE_LIMITS
        self.clock = clock

    def policy_for(self, endpoint: str) -> EndpointPolicy:
        return self.policies.get(endpoint) or self.policies["default"]

    def check_rate_limit(self, actor_id: str, endpoint: str) -> RateLimitResult:
        policy = self.policy_for(endpoint)
        tier = self.tiers.tier(actor_id)
        main = policy.for_tier(tier)

        admitted = self.quota_store.admit(actor_id, endpoint, main.limit, main.window_minutes)
        if admitted.error:
            logger.warning("Rate limit check degraded user_id=%s endpoint=%s error=%s", actor_id, endpoint, admitted.error)
        if not admitted.allowed:
            return RateLimitResult(
                allowed=False,
                current=admitted.current,
                limit=admitted.limit,
                reset_at=admitted.reset_at,
                reason=TIER_LIMIT_EXCEEDED,
                tier=tier,
                error=admitted.error,
            )

        if policy.burst is not None:
            burst = self.quota_store.admit(
                actor_id,
                f"{endpoint}:burst",
                policy.burst.limit,
                policy.burst.window_minutes,
            )
            if not burst.allowed:
                return RateLimitResult(
                    allowed=False,
                    current=burst.current,
                    limit=burst.limit,
                    reset_at=burst.reset_at,
                    reason=BURST_LIMIT_EXCEEDED,
                    tier=tier,
                    error=burst.error,
                )

        return RateLimitResult(
            allowed=True,
            current=admitted.current,
            limit=admitted.limit,
            reset_at=admitted.reset_at,
            tier=tier,
            error=admitted.error,
        )

    def status(self, actor_id: str) -> dict[str, Any]:
        tier = self.tiers.tier(actor_id)
        now = self.clock()
        limits: dict[str, Any] = {}
        for label, endpoint in STATUS_ENDPOINTS.items():
            window = self.policy_for(endpoint).for_tier(tier)
            _, reset_at = window_bounds(now, window.window_minutes)
            limits[label] = {
                "current": self.quota_store.usage(actor_id, endpoint, window.window_minutes),
                "limit": window.limit,
                "reset_at": reset_at.isoformat(),
            }
        return {"is_premium": tier == PREMIUM, "tier": tier, "limits": limits}

    def clear(self, actor_id: str, endpoint: str) -> int:
        cleared = self.quota_store.clear(actor_id, endpoint)
        self.tiers.cache.invalidate(actor_id)
        logger.info("Cleared rate limit user_id=%s endpoint=%s rows=%s", actor_id, endpoint, cleared)
        return cleared


def rate_limit_response(result: RateLimitResult, now: datetime) -> tuple[dict[str, Any], dict[str, str]]:
    """429 body and headers for a rejected ``RateLimitResult``."""
    retry_after = max(0, math.ceil((result.reset_at - now).total_seconds()))
    scope = "burst" if result.reason == BURST_LIMIT_EXCEEDED else "usage"
    reset_at = result.reset_at.isoformat()
    body = {
        "error": "rate_limited",
        "message": f"You've reached your {scope} limit. Please try again later.",
        "limit": result.limit,
        "current": result.current,
        "reset_at": reset_at,
        "retry_after": retry_after,
    }
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": reset_at,
        "Retry-After": str(retry_after),
    }
    return body, headers
