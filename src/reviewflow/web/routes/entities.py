"""Entity workflow REST API endpoints for Reviewflow.

Provides read access to an entity's workflow state and review history,
and the endpoint for author and staff actions (submit, publish, withdraw,
force close, ...).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from reviewflow.container import WorkflowServices
from reviewflow.database.models.entity import EntityType, coerce_stage
from reviewflow.logging import bind_entity_context
from reviewflow.web.dependencies import (
    get_actor_id,
    get_reviewer,
    get_services,
    request_metadata,
)
from reviewflow.workflow.aggregator import AggregationResult
from reviewflow.workflow.guard import Eligibility, ReviewerProfile
from reviewflow.workflow.ports import EntityRef, EntitySnapshot, ReviewRecord
from reviewflow.workflow.triggers import UserAction, UserActionType

logger = structlog.get_logger(__name__)


# --- Pydantic Schemas ---


class RoundSummary(BaseModel):
    """Current review round of an entity in a review stage."""

    stage: str
    stage_version: int
    review_count: int
    quorum: int
    quorum_met: bool
    consensus: str
    aggregate_score: float | None


class EntityResponse(BaseModel):
    """Response schema for an entity's workflow state."""

    id: UUID
    entity_type: EntityType
    title: str
    current_stage: str
    stage_version: int
    author_id: UUID
    challenge_id: UUID | None
    deadline: datetime | None
    last_stage_change_at: datetime | None
    available_actions: list[str]
    review_round: RoundSummary | None = None


class TransitionRequest(BaseModel):
    """Request schema for a user action."""

    action: UserActionType
    expected_stage: str | None = None
    expected_version: int | None = None


class TransitionResponse(BaseModel):
    """Response schema for a committed transition."""

    entity_type: EntityType
    entity_id: UUID
    from_stage: str
    to_stage: str
    stage_version: int
    trigger: str
    occurred_at: datetime
    notified: bool
    audited: bool


class EligibilityResponse(BaseModel):
    """Response schema for a reviewer eligibility check."""

    reviewer_id: UUID
    eligible: bool
    reason: str


def _round_summary(result: AggregationResult | None) -> RoundSummary | None:
    if result is None:
        return None
    return RoundSummary(
        stage=result.stage.value,
        stage_version=result.stage_version,
        review_count=result.review_count,
        quorum=result.quorum,
        quorum_met=result.quorum_met,
        consensus=result.consensus.value,
        aggregate_score=result.aggregate_score,
    )


def _entity_response(
    snapshot: EntitySnapshot,
    actions: list[str],
    summary: AggregationResult | None,
) -> EntityResponse:
    return EntityResponse(
        id=snapshot.id,
        entity_type=snapshot.entity_type,
        title=snapshot.title,
        current_stage=snapshot.current_stage.value,
        stage_version=snapshot.stage_version,
        author_id=snapshot.author_id,
        challenge_id=snapshot.challenge_id,
        deadline=snapshot.deadline,
        last_stage_change_at=snapshot.last_stage_change_at,
        available_actions=actions,
        review_round=_round_summary(summary),
    )


# --- Router ---


def create_entities_router() -> APIRouter:
    """Create the entity workflow router.

    Routes:
        GET /entities/{entity_type}/{entity_id} - Workflow state
        GET /entities/{entity_type}/{entity_id}/reviews - Review history
        GET /entities/{entity_type}/{entity_id}/eligibility - Can the caller review?
        POST /entities/{entity_type}/{entity_id}/transitions - Apply a user action
    """
    router = APIRouter(prefix="/entities", tags=["entities"])

    @router.get("/{entity_type}/{entity_id}", response_model=EntityResponse)
    async def get_entity_endpoint(
        entity_type: EntityType,
        entity_id: UUID,
        services: WorkflowServices = Depends(get_services),  # noqa: B008
    ) -> EntityResponse:
        """Get an entity's stage, legal actions and current review round."""
        bind_entity_context(entity_type.value, str(entity_id))
        ref = EntityRef(entity_type=entity_type, entity_id=entity_id)
        snapshot = await services.engine.get_snapshot(ref)
        triggers = await services.engine.available_triggers(ref)
        summary = await services.aggregator.summarize(snapshot)
        return _entity_response(snapshot, [t.describe() for t in triggers], summary)

    @router.get("/{entity_type}/{entity_id}/reviews", response_model=list[ReviewRecord])
    async def list_reviews_endpoint(
        entity_type: EntityType,
        entity_id: UUID,
        services: WorkflowServices = Depends(get_services),  # noqa: B008
    ) -> list[ReviewRecord]:
        """Full review history, including late reviews kept for the record."""
        ref = EntityRef(entity_type=entity_type, entity_id=entity_id)
        # 404 for unknown entities rather than an empty list
        await services.engine.get_snapshot(ref)
        return await services.store.list_reviews(ref)

    @router.get("/{entity_type}/{entity_id}/eligibility", response_model=EligibilityResponse)
    async def eligibility_endpoint(
        entity_type: EntityType,
        entity_id: UUID,
        reviewer: ReviewerProfile = Depends(get_reviewer),  # noqa: B008
        services: WorkflowServices = Depends(get_services),  # noqa: B008
    ) -> EligibilityResponse:
        """Check whether the caller may review the entity at its current stage."""
        ref = EntityRef(entity_type=entity_type, entity_id=entity_id)
        result = await services.workflow.eligibility(reviewer, ref)
        return EligibilityResponse(
            reviewer_id=reviewer.id,
            eligible=result == Eligibility.eligible,
            reason=result.value,
        )

    @router.post(
        "/{entity_type}/{entity_id}/transitions",
        response_model=TransitionResponse,
    )
    async def transition_endpoint(
        entity_type: EntityType,
        entity_id: UUID,
        body: TransitionRequest,
        actor_id: UUID | None = Depends(get_actor_id),  # noqa: B008
        metadata: dict[str, Any] = Depends(request_metadata),  # noqa: B008
        services: WorkflowServices = Depends(get_services),  # noqa: B008
    ) -> TransitionResponse:
        """Apply a user action to the entity.

        Raises:
            400: The action is not legal from the current stage.
            409: ``expected_stage``/``expected_version`` no longer match.
            404: Unknown entity.
        """
        bind_entity_context(entity_type.value, str(entity_id))
        expected_stage = None
        if body.expected_stage is not None:
            try:
                expected_stage = coerce_stage(entity_type, body.expected_stage)
            except ValueError:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid stage for {entity_type.value}: {body.expected_stage}",
                ) from None

        ref = EntityRef(entity_type=entity_type, entity_id=entity_id)
        result = await services.workflow.advance(
            ref,
            UserAction(action=body.action),
            actor_id=actor_id,
            expected_stage=expected_stage,
            expected_version=body.expected_version,
            metadata=metadata,
        )
        logger.info(
            "transition_applied_via_api",
            action=body.action.value,
            to_stage=result.to_stage.value,
        )
        return TransitionResponse(
            entity_type=ref.entity_type,
            entity_id=ref.entity_id,
            from_stage=result.from_stage.value,
            to_stage=result.to_stage.value,
            stage_version=result.stage_version,
            trigger=result.trigger,
            occurred_at=result.occurred_at,
            notified=result.notified,
            audited=result.audited,
        )

    return router
