"""FastAPI backend for the trust-policy engine.

Endpoints used by the chat frontend and the moderator dashboard:
- POST /moderation/evaluate
- POST /sanctions, GET /users/{user_id}/status, GET /users/{user_id}/history
- GET|POST /users/{user_id}/reputation
- GET /queue, POST /queue/{item_id}/disposition
- GET|POST /filters, DELETE /filters/{filter_id}

The service is built from environment settings on first request unless
one is passed to ``create_app``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from chat_moderation.lib.config import Settings
from chat_moderation.lib.errors import QueueItemNotFound, SanctionError, StoreError
from chat_moderation.models.content import ContentFilter, ContentMetadata, Identity
from chat_moderation.models.enums import ActionType, ContentType, FilterType, QueueStatus, ReputationAction
from chat_moderation.models.review import ModerationQueueItem
from chat_moderation.models.user import ModerationAction, ReputationProfile, UserModerationStatus
from chat_moderation.services.filter_registry import compile_filter
from chat_moderation.services.moderation_service import ModerationService
from chat_moderation.services.sanction_service import is_banned, is_muted, is_suspended


class EvaluateRequest(BaseModel):
    text: str
    user_id: Optional[str] = None
    anonymous_token: Optional[str] = None
    content_id: Optional[str] = None
    content_type: ContentType = ContentType.MESSAGE
    channel_id: Optional[str] = None
    parent_content_id: Optional[str] = None
    author_name: Optional[str] = None


class SanctionRequest(BaseModel):
    target_user_id: str
    action_type: ActionType
    reason: str = ""
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    moderator_id: Optional[str] = None


class DispositionRequest(BaseModel):
    outcome: QueueStatus
    notes: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    moderator_id: Optional[str] = None


class FilterRequest(BaseModel):
    filter_type: FilterType
    pattern: str = Field(min_length=1)
    is_regex: bool = False
    severity: int = Field(default=1, ge=1, le=3)


class ReputationRequest(BaseModel):
    action_type: ReputationAction
    points: Optional[int] = None


def get_service(request: Request) -> ModerationService:
    service = request.app.state.service
    if service is None:
        service = ModerationService.from_settings(Settings.from_env())
        request.app.state.service = service
    return service


def create_app(service: Optional[ModerationService] = None) -> FastAPI:
    app = FastAPI(title="Chat Moderation API", version="0.1.0")
    app.state.service = service

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/moderation/evaluate")
    async def evaluate(body: EvaluateRequest, svc: ModerationService = Depends(get_service)) -> Dict[str, Any]:
        identity = Identity(user_id=body.user_id, anonymous_token=body.anonymous_token)
        metadata = ContentMetadata(
            content_id=body.content_id,
            content_type=body.content_type,
            channel_id=body.channel_id,
            parent_content_id=body.parent_content_id,
            author_name=body.author_name,
        )
        verdict = await svc.evaluate_message(body.text, identity, metadata)
        return verdict.public_view()

    @app.post("/sanctions")
    async def apply_sanction(
        body: SanctionRequest, svc: ModerationService = Depends(get_service)
    ) -> UserModerationStatus:
        try:
            return await svc.apply_sanction(
                body.target_user_id,
                body.action_type,
                body.reason,
                body.duration_minutes,
                body.moderator_id,
            )
        except SanctionError as e:
            raise HTTPException(status_code=503, detail=str(e))

    @app.get("/users/{user_id}/status")
    async def user_status(user_id: str, svc: ModerationService = Depends(get_service)) -> Dict[str, Any]:
        status = await svc.sanctions.get_status(user_id)
        now = svc.sanctions.clock()
        return {
            **status.model_dump(mode="json"),
            "is_muted": is_muted(status, now),
            "is_banned": is_banned(status, now),
            "is_suspended": is_suspended(status, now),
        }

    @app.get("/users/{user_id}/history")
    async def user_history(user_id: str, svc: ModerationService = Depends(get_service)) -> List[ModerationAction]:
        return await svc.sanctions.history(user_id)

    @app.get("/users/{user_id}/reputation")
    async def user_reputation(user_id: str, svc: ModerationService = Depends(get_service)) -> ReputationProfile:
        return await svc.ledger.get_profile(user_id, with_rank=True)

    @app.post("/users/{user_id}/reputation")
    async def award_reputation(
        user_id: str, body: ReputationRequest, svc: ModerationService = Depends(get_service)
    ) -> ReputationProfile:
        try:
            return await svc.ledger.award(user_id, body.action_type, body.points)
        except StoreError as e:
            raise HTTPException(status_code=503, detail=str(e))

    @app.get("/queue")
    async def queue(
        status: QueueStatus = QueueStatus.PENDING,
        limit: int = Query(default=50, ge=1, le=200),
        svc: ModerationService = Depends(get_service),
    ) -> List[ModerationQueueItem]:
        return await svc.queue.list_items(status, limit)

    @app.post("/queue/{item_id}/disposition")
    async def disposition(
        item_id: UUID, body: DispositionRequest, svc: ModerationService = Depends(get_service)
    ) -> Dict[str, Any]:
        try:
            await svc.queue.get(item_id)
            applied = await svc.queue_disposition(
                item_id, body.outcome, body.notes, body.duration_minutes, body.moderator_id
            )
        except QueueItemNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except SanctionError as e:
            raise HTTPException(status_code=503, detail=str(e))

        if not applied:
            raise HTTPException(status_code=409, detail=f"Queue item {item_id} cannot be moved to {body.outcome.value}")
        item = await svc.queue.get(item_id)
        return {"applied": True, "item": item.model_dump(mode="json")}

    @app.get("/filters")
    async def list_filters(
        filter_type: Optional[FilterType] = None, svc: ModerationService = Depends(get_service)
    ) -> List[ContentFilter]:
        await svc.registry.ensure_loaded()
        return svc.registry.active_filters(filter_type)

    @app.post("/filters", status_code=201)
    async def add_filter(body: FilterRequest, svc: ModerationService = Depends(get_service)) -> ContentFilter:
        candidate = ContentFilter(filter_type=body.filter_type, pattern=body.pattern, is_regex=body.is_regex)
        if not compile_filter(candidate).is_valid:
            raise HTTPException(status_code=422, detail=f"Invalid regex pattern: {body.pattern}")
        return await svc.registry.add_filter(body.filter_type, body.pattern, body.is_regex, body.severity)

    @app.delete("/filters/{filter_id}")
    async def deactivate_filter(filter_id: UUID, svc: ModerationService = Depends(get_service)) -> Dict[str, Any]:
        if not await svc.registry.deactivate_filter(filter_id):
            raise HTTPException(status_code=404, detail=f"Filter {filter_id} not found")
        return {"deactivated": True, "filter_id": str(filter_id)}

    return app


app = create_app()
