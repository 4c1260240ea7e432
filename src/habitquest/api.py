from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, TypeVar

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from habitquest.auth import Authenticator, HttpAuthenticator, StaticTokenAuthenticator
from habitquest.completion import QuestCompletionService
from habitquest.config import Settings, load_settings
from habitquest.db import Database
from habitquest.errors import HabitQuestError, InternalError, InvalidInput, RateLimited, Unauthorized
from habitquest.journal import JournalService
from habitquest.llm_router import LlmRoute, TextTransformer
from habitquest.logging_setup import setup_logging
from habitquest.quota_store import QuotaStore
from habitquest.rate_limiter import RateLimiter, load_rate_limits, rate_limit_response
from habitquest.shop import ShopService
from habitquest.skill_effects import SkillEffects
from habitquest.tier_cache import TierCache, TierResolver
from habitquest.time_utils import Clock, now_utc
from habitquest.transform import TransformService, Transformer

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class CompleteQuestRequest(BaseModel):
    quest_id: Any = None


class TransformQuestRequest(BaseModel):
    quest_text: Any = None
    difficulty: Any = "medium"
    story_thread: str | None = None
    narrative_impact: str | None = None


class CreateJournalRequest(BaseModel):
    entry_text: Any = None
    mood: Any = None


class TransformJournalRequest(BaseModel):
    entry_id: Any = None


class PurchaseEquipmentRequest(BaseModel):
    equipment_id: Any = None


class EquipRequest(BaseModel):
    equipment_id: Any = None
    action: Any = "equip"


class UnlockSkillRequest(BaseModel):
    skill_id: Any = None


class ClearRateLimitRequest(BaseModel):
    user_id: Any = None
    endpoint: Any = None


@dataclass(frozen=True)
class Services:
    db: Database
    authenticator: Authenticator
    rate_limiter: RateLimiter
    completion: QuestCompletionService
    transforms: TransformService
    journals: JournalService
    shop: ShopService
    admin_token: str | None = None
    clock: Clock = now_utc


def build_services(
    settings: Settings,
    transformer: Transformer | None = None,
    authenticator: Authenticator | None = None,
    clock: Clock = now_utc,
) -> Services:
    db = Database(settings.database_path, timeout_seconds=settings.db_timeout_seconds)
    tiers = TierResolver(
        db,
        TierCache(ttl_seconds=settings.tier_cache_ttl_seconds, clock=clock),
        on_error=settings.on_tier_lookup_error,
    )
    rate_limiter = RateLimiter(
        QuotaStore(db, on_error=settings.on_quota_store_error, clock=clock),
        tiers,
        policies=load_rate_limits(settings.rate_limits_config_path),
        clock=clock,
    )
    if authenticator is None:
        if settings.auth_provider_url:
            authenticator = HttpAuthenticator(settings.auth_provider_url, settings.auth_provider_key)
        else:
            authenticator = StaticTokenAuthenticator(settings.static_auth_tokens)
    if transformer is None:
        route = LlmRoute(provider=settings.llm_provider, model=settings.llm_model, api_key=settings.llm_api_key)
        transformer = TextTransformer(route, timeout_seconds=settings.llm_timeout_seconds)

    skill_effects = SkillEffects(db, clock=clock)
    return Services(
        db=db,
        authenticator=authenticator,
        rate_limiter=rate_limiter,
        completion=QuestCompletionService(db, skill_effects, rate_limiter=rate_limiter, clock=clock),
        transforms=TransformService(db, rate_limiter, transformer, clock=clock),
        journals=JournalService(db, clock=clock),
        shop=ShopService(db, clock=clock),
        admin_token=settings.admin_token,
        clock=clock,
    )


async def json_body(request: Request) -> dict[str, Any]:
    """Request body as a JSON object; anything else is a 400."""
    try:
        payload = await request.json()
    except ValueError as exc:
        raise InvalidInput("Invalid request body") from exc
    if not isinstance(payload, dict):
        raise InvalidInput("Invalid request body")
    return payload


def parse_body(model: type[ModelT], payload: dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInput("Invalid request body") from exc


def build_app(services: Services) -> FastAPI:
    app = FastAPI(title="HabitQuest API", version="1.0.0")

    # Declared ahead of json_body in every route, so credentials are checked
    # before the body is read.
    def current_actor(request: Request) -> str:
        actor_id = services.authenticator.authenticate(request.headers, request.cookies)
        request.state.actor_id = actor_id
        return actor_id

    def admin_only(request: Request) -> None:
        if not services.admin_token:
            raise Unauthorized("Admin access is not configured")
        if request.headers.get("x-admin-token") != services.admin_token:
            raise Unauthorized("Unauthorized")

    @app.exception_handler(RateLimited)
    async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
        body, headers = rate_limit_response(exc.result, services.clock())
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)

    @app.exception_handler(HabitQuestError)
    async def habitquest_error_handler(request: Request, exc: HabitQuestError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled error method=%s path=%s actor_id=%s quest_id=%s at=%s",
            request.method,
            request.url.path,
            getattr(request.state, "actor_id", None),
            getattr(request.state, "quest_id", None),
            services.clock().isoformat(),
        )
        err = InternalError("Internal server error")
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {"ok": True, "time": services.clock().isoformat()}

    @app.post("/api/complete-quest")
    def complete_quest(
        request: Request,
        actor_id: str = Depends(current_actor),
        payload: dict[str, Any] = Depends(json_body),
    ) -> dict[str, Any]:
        body = parse_body(CompleteQuestRequest, payload)
        request.state.quest_id = body.quest_id
        return services.completion.complete(actor_id, body.quest_id).to_response()

    @app.post("/api/transform-quest")
    def transform_quest(
        actor_id: str = Depends(current_actor),
        payload: dict[str, Any] = Depends(json_body),
    ) -> dict[str, Any]:
        body = parse_body(TransformQuestRequest, payload)
        quest = services.transforms.transform_quest(
            actor_id,
            body.quest_text,
            body.difficulty,
            story_thread=body.story_thread,
            narrative_impact=body.narrative_impact,
        )
        return {
            "success": True,
            "quest": {
                "id": quest.id,
                "original_text": quest.original_text,
                "transformed_text": quest.transformed_text,
                "difficulty": quest.difficulty,
                "xp_value": quest.xp_value,
                "status": quest.status.value,
            },
        }

    @app.post("/api/journal/create")
    def create_journal_entry(
        actor_id: str = Depends(current_actor),
        payload: dict[str, Any] = Depends(json_body),
    ) -> dict[str, Any]:
        body = parse_body(CreateJournalRequest, payload)
        entry = services.journals.create_entry(actor_id, body.entry_text, body.mood)
        return {
            "success": True,
            "entry": {
                "id": entry.id,
                "entry_text": entry.entry_text,
                "mood": entry.mood,
                "created_at": entry.created_at.isoformat(),
            },
        }

    @app.post("/api/journal/transform")
    def transform_journal(
        actor_id: str = Depends(current_actor),
        payload: dict[str, Any] = Depends(json_body),
    ) -> dict[str, Any]:
        body = parse_body(TransformJournalRequest, payload)
        return services.transforms.transform_journal(actor_id, body.entry_id)

    @app.post("/api/equipment/purchase")
    def purchase_equipment(
        actor_id: str = Depends(current_actor),
        payload: dict[str, Any] = Depends(json_body),
    ) -> dict[str, Any]:
        body = parse_body(PurchaseEquipmentRequest, payload)
        return services.shop.purchase_equipment(actor_id, body.equipment_id)

    @app.post("/api/equipment/equip")
    def equip(
        actor_id: str = Depends(current_actor),
        payload: dict[str, Any] = Depends(json_body),
    ) -> dict[str, Any]:
        body = parse_body(EquipRequest, payload)
        return services.shop.equip(actor_id, body.equipment_id, body.action)

    @app.post("/api/skills/unlock")
    def unlock_skill(
        actor_id: str = Depends(current_actor),
        payload: dict[str, Any] = Depends(json_body),
    ) -> dict[str, Any]:
        body = parse_body(UnlockSkillRequest, payload)
        return services.shop.unlock_skill(actor_id, body.skill_id)

    @app.get("/api/weekly-summary")
    def weekly_summary(actor_id: str = Depends(current_actor)) -> dict[str, Any]:
        return services.transforms.weekly_summary(actor_id)

    @app.get("/api/rate-limits/status")
    def rate_limit_status(actor_id: str = Depends(current_actor)) -> dict[str, Any]:
        services.db.get_or_create_profile(actor_id, services.clock())
        return services.rate_limiter.status(actor_id)

    @app.post("/api/admin/clear-rate-limit")
    def clear_rate_limit(
        _: None = Depends(admin_only),
        payload: dict[str, Any] = Depends(json_body),
    ) -> dict[str, Any]:
        body = parse_body(ClearRateLimitRequest, payload)
        if not isinstance(body.user_id, str) or not body.user_id:
            raise InvalidInput("Invalid user_id", details={"field": "user_id"})
        if not isinstance(body.endpoint, str) or not body.endpoint:
            raise InvalidInput("Invalid endpoint", details={"field": "endpoint"})
        cleared = services.rate_limiter.clear(body.user_id, body.endpoint)
        return {
            "success": True,
            "message": f"Rate limit cleared for user {body.user_id} on endpoint {body.endpoint}",
            "user_id": body.user_id,
            "endpoint": body.endpoint,
            "cleared": cleared,
        }

    return app


def run_server() -> None:
    setup_logging(os.getenv("LOG_LEVEL"))
    settings = load_settings()
    app = build_app(build_services(settings))
    logger.info("Starting HabitQuest API on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)
