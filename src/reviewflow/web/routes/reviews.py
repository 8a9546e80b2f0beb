"""Review submission REST API endpoints for Reviewflow.

Reviews are attributed to the caller identified by the ``X-User-ID`` and
``X-User-Roles`` headers. A review that completes a round's quorum also
advances the entity; the response reports the resulting transition.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from reviewflow.container import WorkflowServices
from reviewflow.database.models.entity import EntityType
from reviewflow.database.models.review import ReviewDecision
from reviewflow.logging import bind_entity_context
from reviewflow.web.dependencies import get_reviewer, get_services, request_metadata
from reviewflow.workflow.guard import ReviewerProfile
from reviewflow.workflow.ports import EntityRef, ReviewRecord, ReviewSubmission

logger = structlog.get_logger(__name__)


# --- Pydantic Schemas ---


class ReviewCreate(BaseModel):
    """Request schema for submitting a completed review."""

    entity_type: EntityType
    entity_id: UUID
    stage: str = Field(..., min_length=1, max_length=50)
    decision: ReviewDecision
    score: float | None = None
    criteria_scores: dict[str, float] = Field(default_factory=dict)
    comments: str | None = Field(default=None, max_length=10000)


class ReviewStart(BaseModel):
    """Request schema for opening an in-progress review."""

    entity_type: EntityType
    entity_id: UUID


class PendingReviewResponse(BaseModel):
    """One entry of a reviewer's work queue."""

    entity_type: EntityType
    entity_id: UUID
    title: str
    stage: str
    stage_version: int
    challenge_id: UUID | None = None
    waiting_since: datetime | None = None


class ReviewOutcomeResponse(BaseModel):
    """Response schema for a submitted review."""

    review_id: UUID | None
    entity_type: EntityType
    entity_id: UUID
    stage: str
    stage_version: int
    review_count: int
    quorum: int
    quorum_met: bool
    consensus: ReviewDecision
    aggregate_score: float | None
    transitioned: bool
    new_stage: str | None = None
    conflict: bool = False


# --- Router ---


def create_reviews_router() -> APIRouter:
    """Create the review submission router.

    Routes:
        POST /reviews/ - Submit a completed review
        POST /reviews/start - Open an in-progress review
        GET /reviews/pending - Entities the caller can review now
    """
    router = APIRouter(prefix="/reviews", tags=["reviews"])

    @router.post("/", response_model=ReviewOutcomeResponse, status_code=201)
    async def submit_review_endpoint(
        body: ReviewCreate,
        metadata: dict[str, Any] = Depends(request_metadata),  # noqa: B008
        reviewer: ReviewerProfile = Depends(get_reviewer),  # noqa: B008
        services: WorkflowServices = Depends(get_services),  # noqa: B008
    ) -> ReviewOutcomeResponse:
        """Submit a review for the entity's current review round.

        Raises:
            422: Score outside [0, 10] or decision ``pending``.
            403: Reviewer has a conflict of interest or lacks the role.
            409: The entity has left the reviewed stage.
            404: Unknown entity.
        """
        bind_entity_context(body.entity_type.value, str(body.entity_id))
        ref = EntityRef(entity_type=body.entity_type, entity_id=body.entity_id)
        outcome = await services.workflow.submit_review(
            reviewer,
            ReviewSubmission(
                ref=ref,
                reviewer_id=reviewer.id,
                stage=body.stage,
                decision=body.decision,
                score=body.score,
                criteria_scores=body.criteria_scores,
                comments=body.comments,
            ),
            metadata=metadata,
        )

        aggregation = outcome.aggregation
        logger.info(
            "review_submitted_via_api",
            reviewer_id=str(reviewer.id),
            quorum_met=aggregation.quorum_met,
            transitioned=outcome.transition is not None,
        )
        return ReviewOutcomeResponse(
            review_id=aggregation.review.id if aggregation.review else None,
            entity_type=ref.entity_type,
            entity_id=ref.entity_id,
            stage=aggregation.stage.value,
            stage_version=aggregation.stage_version,
            review_count=aggregation.review_count,
            quorum=aggregation.quorum,
            quorum_met=aggregation.quorum_met,
            consensus=aggregation.consensus,
            aggregate_score=aggregation.aggregate_score,
            transitioned=outcome.transition is not None,
            new_stage=outcome.transition.to_stage.value if outcome.transition else None,
            conflict=outcome.conflict,
        )

    @router.get("/pending", response_model=list[PendingReviewResponse])
    async def pending_reviews_endpoint(
        entity_type: EntityType | None = None,
        reviewer: ReviewerProfile = Depends(get_reviewer),  # noqa: B008
        services: WorkflowServices = Depends(get_services),  # noqa: B008
    ) -> list[PendingReviewResponse]:
        """List the entities awaiting the caller's review, longest waiting first."""
        queue = await services.workflow.pending_reviews(reviewer, entity_type)
        return [
            PendingReviewResponse(
                entity_type=snapshot.entity_type,
                entity_id=snapshot.id,
                title=snapshot.title,
                stage=snapshot.current_stage.value,
                stage_version=snapshot.stage_version,
                challenge_id=snapshot.challenge_id,
                waiting_since=snapshot.last_stage_change_at or snapshot.created_at,
            )
            for snapshot in queue
        ]

    @router.post("/start", response_model=ReviewRecord, status_code=201)
    async def start_review_endpoint(
        body: ReviewStart,
        reviewer: ReviewerProfile = Depends(get_reviewer),  # noqa: B008
        services: WorkflowServices = Depends(get_services),  # noqa: B008
    ) -> ReviewRecord:
        """Open an in-progress review for the entity's current round."""
        bind_entity_context(body.entity_type.value, str(body.entity_id))
        ref = EntityRef(entity_type=body.entity_type, entity_id=body.entity_id)
        return await services.workflow.begin_review(reviewer, ref)

    return router
