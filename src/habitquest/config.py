from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from habitquest.llm_router import LlmRoute, load_router_config, resolve_route

QUOTA_ERROR_POLICIES = ("allow", "deny")
TIER_ERROR_POLICIES = ("assume_free", "assume_premium")


@dataclass(frozen=True)
class Settings:
    database_path: Path
    db_timeout_seconds: float
    host: str
    port: int
    admin_token: str | None
    auth_provider_url: str | None
    auth_provider_key: str | None
    static_auth_tokens: dict[str, str]
    llm_provider: str
    llm_model: str
    llm_api_key: str | None
    llm_router_config_path: Path
    llm_timeout_seconds: float
    rate_limits_config_path: Path | None = None
    on_quota_store_error: str = "allow"
    on_tier_lookup_error: str = "assume_free"
    tier_cache_ttl_seconds: int = 300


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text().splitlines():
        raw = line.strip()
        if not raw or raw.startswith("#") or "=" not in raw:
            continue
        key, value = raw.split("=", maxsplit=1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_choice(value: str | None, choices: tuple[str, ...], default: str) -> str:
    if value is None:
        return default
    normalized = value.strip().lower().replace("-", "_")
    return normalized if normalized in choices else default


def parse_static_tokens(raw: str | None) -> dict[str, str]:
    """Parse ``token:user_id`` pairs separated by commas."""
    tokens: dict[str, str] = {}
    if not raw:
        return tokens
    for chunk in raw.split(","):
        if ":" not in chunk:
            continue
        token, user_id = chunk.split(":", maxsplit=1)
        token = token.strip()
        user_id = user_id.strip()
        if token and user_id:
            tokens[token] = user_id
    return tokens


def load_settings() -> Settings:
    _load_env_file(Path(".env"))

    router_path = Path(os.getenv("LLM_ROUTER_CONFIG", "./llm_router.yaml"))
    router_cfg = load_router_config(router_path)
    route: LlmRoute = resolve_route(
        config=router_cfg,
        provider_override=os.getenv("LLM_PROVIDER"),
        model_override=os.getenv("LLM_MODEL"),
        env_getter=os.getenv,
    )
    rate_limits_raw = os.getenv("RATE_LIMITS_CONFIG")

    return Settings(
        database_path=Path(os.getenv("DATABASE_PATH", "./data/habitquest.db")),
        db_timeout_seconds=_parse_float(os.getenv("DB_TIMEOUT_SECONDS"), 5.0),
        host=os.getenv("HOST", "127.0.0.1"),
        port=_parse_int(os.getenv("PORT"), 8080),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        auth_provider_url=os.getenv("AUTH_PROVIDER_URL") or None,
        auth_provider_key=os.getenv("AUTH_PROVIDER_KEY") or None,
        static_auth_tokens=parse_static_tokens(os.getenv("STATIC_AUTH_TOKENS")),
        llm_provider=route.provider,
        llm_model=route.model,
        llm_api_key=route.api_key,
        llm_router_config_path=router_path,
        llm_timeout_seconds=_parse_float(os.getenv("LLM_TIMEOUT_SECONDS"), 30.0),
        rate_limits_config_path=Path(rate_limits_raw) if rate_limits_raw else None,
        on_quota_store_error=_parse_choice(os.getenv("RATE_LIMIT_ON_STORE_ERROR"), QUOTA_ERROR_POLICIES, "allow"),
        on_tier_lookup_error=_parse_choice(os.getenv("RATE_LIMIT_ON_TIER_ERROR"), TIER_ERROR_POLICIES, "assume_free"),
        tier_cache_ttl_seconds=_parse_int(os.getenv("TIER_CACHE_TTL_SECONDS"), 300),
    )
