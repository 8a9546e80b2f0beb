"""Reviewer-facing workflow operations.

``ReviewWorkflow`` wires the guard, the aggregator and the engine together
in the order a review submission needs them:

    eligibility check -> record review -> quorum? -> advance stage

Every public operation runs under a deadline (``operation_timeout`` unless
the caller passes ``timeout``). A deadline that expires after the stage
swap has committed does not undo the stage change.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel

from reviewflow.database.models.entity import EntityType, Stage, coerce_stage
from reviewflow.database.models.review import ReviewDecision
from reviewflow.workflow.aggregator import AggregationResult, ReviewAggregator
from reviewflow.workflow.engine import TransitionResult, WorkflowEngine
from reviewflow.workflow.errors import ConcurrentTransitionError, StageNotReviewableError
from reviewflow.workflow.guard import (
    Eligibility,
    ReviewerProfile,
    can_review,
    check_eligibility,
    ensure_can_review,
)
from reviewflow.workflow.ports import EntityRef, EntitySnapshot, ReviewRecord, ReviewSubmission
from reviewflow.workflow.registry import stages_reviewable_by
from reviewflow.workflow.triggers import AnyTrigger, ReviewerDecision

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ReviewOutcome(BaseModel):
    """Result of submitting a review.

    Attributes:
        aggregation: Round state after the review was recorded.
        transition: The stage change the review caused, if any.
        conflict: True if quorum was reached but another transition
            committed first; the review is recorded either way.
    """

    aggregation: AggregationResult
    transition: TransitionResult | None = None
    conflict: bool = False


class ReviewWorkflow:
    """Entry point for review submission and manual transitions."""

    def __init__(
        self,
        engine: WorkflowEngine,
        aggregator: ReviewAggregator,
        *,
        operation_timeout: float = 30.0,
    ) -> None:
        self.engine = engine
        self.aggregator = aggregator
        self.operation_timeout = operation_timeout
        self._logger = logger.bind(component="ReviewWorkflow")

    async def _with_deadline(self, operation: Awaitable[T], timeout: float | None) -> T:
        return await asyncio.wait_for(
            operation, timeout=timeout if timeout is not None else self.operation_timeout
        )

    async def eligibility(self, reviewer: ReviewerProfile, ref: EntityRef) -> Eligibility:
        """Evaluate whether ``reviewer`` may review the entity right now."""
        snapshot = await self.engine.get_snapshot(ref)
        return check_eligibility(reviewer, snapshot)

    async def pending_reviews(
        self,
        reviewer: ReviewerProfile,
        entity_type: EntityType | None = None,
        *,
        timeout: float | None = None,
    ) -> list[EntitySnapshot]:
        """Entities ``reviewer`` can review now and has not yet reviewed.

        Covers the review stages the reviewer's roles satisfy, drops every
        entity ``can_review`` refuses (own entities, team membership,
        challenge ownership) and every entity whose current round already
        holds a completed review from this reviewer.

        Args:
            reviewer: Reviewer with the roles held right now.
            entity_type: Restrict the queue to one entity type.
            timeout: Deadline override in seconds.
        """

        async def _pending() -> list[EntitySnapshot]:
            reviewed = {
                (record.ref.entity_id, record.stage_version)
                for record in await self.aggregator.review_store.list_reviewer_reviews(reviewer.id)
            }
            types = [entity_type] if entity_type is not None else list(EntityType)
            queue: list[EntitySnapshot] = []
            for current_type in types:
                stages = stages_reviewable_by(current_type, reviewer.roles)
                if not stages:
                    continue
                for snapshot in await self.engine.store.find_in_stages(current_type, stages):
                    if (snapshot.id, snapshot.stage_version) in reviewed:
                        continue
                    if can_review(reviewer, snapshot):
                        queue.append(snapshot)
            self._logger.debug(
                "pending_reviews_listed",
                reviewer_id=str(reviewer.id),
                count=len(queue),
            )
            return queue

        return await self._with_deadline(_pending(), timeout)

    async def begin_review(
        self,
        reviewer: ReviewerProfile,
        ref: EntityRef,
        *,
        timeout: float | None = None,
    ) -> ReviewRecord:
        """Open an in-progress review after checking eligibility."""

        async def _begin() -> ReviewRecord:
            snapshot = await self.engine.get_snapshot(ref)
            ensure_can_review(reviewer, snapshot)
            return await self.aggregator.begin_review(ref, reviewer.id)

        return await self._with_deadline(_begin(), timeout)

    async def submit_review(
        self,
        reviewer: ReviewerProfile,
        review: ReviewSubmission,
        *,
        metadata: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ReviewOutcome:
        """Check eligibility, record the review and advance on quorum.

        Args:
            reviewer: Reviewer with the roles held at submission time.
            review: The review; ``reviewer_id`` must match ``reviewer.id``.
            metadata: Request details copied into the audit event.
            timeout: Deadline override in seconds.

        Raises:
            ValueError: If the review is attributed to someone else.
            ReviewerIneligibleError: Conflict of interest or role mismatch.
            InvalidScoreError, InvalidDecisionError: Malformed review.
            StageAlreadyAdvancedError: Late review (stored uncounted).
            asyncio.TimeoutError: Deadline exceeded.
        """
        if review.reviewer_id != reviewer.id:
            raise ValueError("review.reviewer_id does not match the submitting reviewer")
        return await self._with_deadline(self._submit(reviewer, review, metadata or {}), timeout)

    async def _submit(
        self,
        reviewer: ReviewerProfile,
        review: ReviewSubmission,
        metadata: dict[str, Any],
    ) -> ReviewOutcome:
        snapshot = await self.engine.get_snapshot(review.ref)
        try:
            review_stage: Stage = coerce_stage(review.ref.entity_type, review.stage)
        except ValueError:
            raise StageNotReviewableError(reviewer.id, review.ref.entity_id, str(review.stage)) from None

        # Eligibility is judged against the stage being reviewed so that a
        # late review still fails on conflict of interest.
        ensure_can_review(reviewer, snapshot.model_copy(update={"current_stage": review_stage}))

        aggregation = await self.aggregator.submit_review(review)
        outcome = ReviewOutcome(aggregation=aggregation)
        if not aggregation.quorum_met or aggregation.consensus == ReviewDecision.pending:
            return outcome

        try:
            transition = await self.engine.advance(
                review.ref,
                ReviewerDecision(consensus=aggregation.consensus),
                actor_id=reviewer.id,
                expected_stage=aggregation.stage,
                expected_version=aggregation.stage_version,
                metadata={
                    "review_count": aggregation.review_count,
                    "quorum": aggregation.quorum,
                    "aggregate_score": aggregation.aggregate_score,
                    **metadata,
                },
            )
        except ConcurrentTransitionError as e:
            self._logger.info(
                "consensus_superseded",
                entity_id=str(review.ref.entity_id),
                stage=aggregation.stage.value,
                consensus=aggregation.consensus.value,
                error=str(e),
            )
            return outcome.model_copy(update={"conflict": True})

        return outcome.model_copy(update={"transition": transition})

    async def advance(
        self,
        ref: EntityRef,
        trigger: AnyTrigger,
        *,
        actor_id: UUID | None = None,
        expected_stage: Stage | str | None = None,
        expected_version: int | None = None,
        metadata: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> TransitionResult:
        """Manual or administrative transition under a deadline."""
        return await self._with_deadline(
            self.engine.advance(
                ref,
                trigger,
                actor_id=actor_id,
                expected_stage=expected_stage,
                expected_version=expected_version,
                metadata=metadata,
            ),
            timeout,
        )
