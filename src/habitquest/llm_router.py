from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import yaml

from habitquest.errors import DownstreamUnavailable

logger = logging.getLogger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class ProviderConfig:
    env_key: str
    models: tuple[str, ...]


@dataclass(frozen=True)
class RouterConfig:
    default_provider: str
    default_model: str
    providers: dict[str, ProviderConfig]


@dataclass(frozen=True)
class LlmRoute:
    provider: str
    model: str
    api_key: str | None


def _fallback_config() -> RouterConfig:
    return RouterConfig(
        default_provider="anthropic",
        default_model="claude-sonnet-4-20250514",
        providers={
            "anthropic": ProviderConfig(env_key="ANTHROPIC_API_KEY", models=("claude-sonnet-4-20250514",)),
            "openai": ProviderConfig(env_key="OPENAI_API_KEY", models=("gpt-5-mini", "gpt-5-nano")),
        },
    )


def load_router_config(path: Path) -> RouterConfig:
    if not path.exists():
        return _fallback_config()

    raw = yaml.safe_load(path.read_text()) or {}
    if not isinstance(raw, dict):
        return _fallback_config()

    providers: dict[str, ProviderConfig] = {}
    providers_raw = raw.get("providers", {})
    if isinstance(providers_raw, dict):
        for name, payload in providers_raw.items():
            if not isinstance(payload, dict):
                continue
            models_raw = payload.get("models", [])
            models = tuple(str(m).strip() for m in models_raw if str(m).strip()) if isinstance(models_raw, list) else ()
            providers[str(name).strip().lower()] = ProviderConfig(
                env_key=str(payload.get("env_key", "")).strip() or "ANTHROPIC_API_KEY",
                models=models,
            )

    if not providers:
        return _fallback_config()

    default_provider = str(raw.get("default_provider", "")).strip().lower()
    if default_provider not in providers:
        default_provider = next(iter(providers))
    default_model = str(raw.get("default_model", "")).strip()
    provider_cfg = providers[default_provider]
    if default_model not in provider_cfg.models and provider_cfg.models:
        default_model = provider_cfg.models[0]

    return RouterConfig(
        default_provider=default_provider,
        default_model=default_model,
        providers=providers,
    )


def resolve_route(
    config: RouterConfig,
    provider_override: str | None,
    model_override: str | None,
    env_getter,
) -> LlmRoute:
    provider = (provider_override or config.default_provider).strip().lower()
    if provider not in config.providers:
        provider = config.default_provider

    p_cfg = config.providers[provider]
    model = (model_override or config.default_model).strip()
    if model not in p_cfg.models and p_cfg.models:
        model = p_cfg.models[0]

    api_key = env_getter(p_cfg.env_key)
    return LlmRoute(provider=provider, model=model, api_key=api_key)


def _extract_anthropic_text(payload: dict[str, Any]) -> str | None:
    content = payload.get("content")
    if not isinstance(content, list):
        return None
    chunks: list[str] = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if isinstance(text, str):
                chunks.append(text)
    joined = "\n".join(chunks).strip()
    return joined or None


def call_anthropic(route: LlmRoute, prompt: str, max_tokens: int, timeout_seconds: float) -> str | None:
    headers = {
        "x-api-key": route.api_key or "",
        "anthropic-version": ANTHROPIC_VERSION,
        "Content-Type": "application/json",
    }
    payload: dict[str, Any] = {
        "model": route.model,
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": max_tokens,
    }
    try:
        with httpx.Client(timeout=timeout_seconds) as client:
            resp = client.post(ANTHROPIC_URL, headers=headers, json=payload)
            if resp.status_code >= 400:
                logger.warning("Anthropic returned HTTP %s for model %s", resp.status_code, route.model)
                return None
            data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Anthropic call failed: %s", exc)
        return None
    return _extract_anthropic_text(data)


def call_openai(route: LlmRoute, prompt: str, max_tokens: int, timeout_seconds: float) -> str | None:
    try:
        from openai import OpenAI, OpenAIError

        client = OpenAI(api_key=route.api_key, timeout=timeout_seconds)
        resp = client.responses.create(
            model=route.model,
            input=prompt,
            max_output_tokens=max_tokens,
        )
    except OpenAIError as exc:
        logger.warning("OpenAI call failed: %s", exc)
        return None
    text = (resp.output_text or "").strip()
    return text or None


class TextTransformer:
    """Opaque text-transform collaborator backed by the configured LLM route."""

    def __init__(self, route: LlmRoute, timeout_seconds: float = 30.0) -> None:
        self.route = route
        self.timeout_seconds = timeout_seconds

    def transform(self, prompt: str, max_tokens: int = 150) -> str:
        if not self.route.api_key:
            raise DownstreamUnavailable(
                "Story generation is not configured.",
                details={"provider": self.route.provider},
            )
        if self.route.provider == "anthropic":
            text = call_anthropic(self.route, prompt, max_tokens, self.timeout_seconds)
        elif self.route.provider == "openai":
            text = call_openai(self.route, prompt, max_tokens, self.timeout_seconds)
        else:
            text = None
        if not text:
            raise DownstreamUnavailable(
                "Story generation failed. Please try again.",
                details={"provider": self.route.provider},
            )
        return text
