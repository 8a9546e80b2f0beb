"""Review aggregation.

Stores submitted reviews for an entity's current review round and works
out whether the round has reached quorum and, if so, what the consensus is.

Rules:
- Quorum: number of distinct reviewers with a completed, counted review in
  the current round is at least the stage's quorum.
- Consensus (once quorum is met): any ``reject`` vetoes; otherwise any
  ``needs_revision`` wins; otherwise ``approve``. Before quorum the
  consensus is ``pending``.
- Aggregate score: mean of the numeric scores in the round, or None. It is
  advisory and never affects the consensus.

Scores outside [0, 10] are rejected, never clamped. A reviewer submitting
twice in the same round overwrites their earlier review. A review for a
stage the entity has already left is kept as history only.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from datetime import datetime
from numbers import Real
from uuid import UUID

import structlog
from pydantic import BaseModel

from reviewflow.database.models.base import utcnow
from reviewflow.database.models.entity import Stage, coerce_stage
from reviewflow.database.models.review import ReviewDecision
from reviewflow.workflow.errors import (
    InvalidDecisionError,
    InvalidScoreError,
    StageAlreadyAdvancedError,
    StageNotReviewableError,
)
from reviewflow.workflow.ports import (
    EntityRef,
    EntitySnapshot,
    ReviewRecord,
    ReviewStore,
    ReviewSubmission,
    WorkflowStore,
)
from reviewflow.workflow.registry import StageDefinition, get_stage_definition

logger = structlog.get_logger(__name__)

MIN_SCORE = 0.0
MAX_SCORE = 10.0


class AggregationResult(BaseModel):
    """State of one review round after a review was recorded.

    Attributes:
        ref: Entity reviewed.
        stage: Review stage of the round.
        stage_version: Round identifier.
        quorum: Quorum required at the stage.
        review_count: Distinct reviewers with completed reviews.
        quorum_met: Whether review_count >= quorum.
        consensus: Aggregated decision, ``pending`` until quorum.
        aggregate_score: Mean numeric score, or None.
        review: The review row just written, when applicable.
    """

    ref: EntityRef
    stage: Stage
    stage_version: int
    quorum: int
    review_count: int
    quorum_met: bool
    consensus: ReviewDecision
    aggregate_score: float | None = None
    review: ReviewRecord | None = None


def validate_score(value: object, field: str = "score") -> None:
    """Raise InvalidScoreError unless ``value`` is None or a number in [0, 10]."""
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidScoreError(value, field)
    number = float(value)
    if not math.isfinite(number) or number < MIN_SCORE or number > MAX_SCORE:
        raise InvalidScoreError(value, field)


def compute_consensus(decisions: Iterable[ReviewDecision], quorum: int) -> ReviewDecision:
    """Derive the consensus of a round from its completed decisions."""
    completed = [d for d in decisions if d != ReviewDecision.pending]
    if len(completed) < quorum:
        return ReviewDecision.pending
    if ReviewDecision.reject in completed:
        return ReviewDecision.reject
    if ReviewDecision.needs_revision in completed:
        return ReviewDecision.needs_revision
    return ReviewDecision.approve


def mean_score(reviews: Iterable[ReviewRecord]) -> float | None:
    scores = [r.score for r in reviews if r.score is not None]
    if not scores:
        return None
    return sum(scores) / len(scores)


def latest_per_reviewer(reviews: Iterable[ReviewRecord]) -> list[ReviewRecord]:
    """Keep one completed review per reviewer, the most recently submitted."""
    by_reviewer: dict[UUID, ReviewRecord] = {}
    for review in reviews:
        if not review.completed:
            continue
        current = by_reviewer.get(review.reviewer_id)
        if current is None or review.submitted_at >= current.submitted_at:  # type: ignore[operator]
            by_reviewer[review.reviewer_id] = review
    return list(by_reviewer.values())


class ReviewAggregator:
    """Records reviews and evaluates quorum and consensus.

    Attributes:
        workflow_store: Source of entity snapshots.
        review_store: Review persistence.
    """

    def __init__(
        self,
        workflow_store: WorkflowStore,
        review_store: ReviewStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.workflow_store = workflow_store
        self.review_store = review_store
        self._clock = clock
        self._logger = logger.bind(component="ReviewAggregator")

    def _definition_for(self, reviewer_id: UUID, ref: EntityRef, stage: Stage | str) -> tuple[Stage, StageDefinition]:
        try:
            coerced = coerce_stage(ref.entity_type, stage)
        except ValueError:
            raise StageNotReviewableError(reviewer_id, ref.entity_id, str(stage)) from None
        definition = get_stage_definition(ref.entity_type, coerced)
        if definition is None:
            raise StageNotReviewableError(reviewer_id, ref.entity_id, coerced.value)
        return coerced, definition

    def _late_review(
        self,
        review: ReviewSubmission,
        stage: Stage,
        current_stage: Stage,
        record: ReviewRecord,
    ) -> StageAlreadyAdvancedError:
        self._logger.warning(
            "late_review_recorded",
            entity_id=str(review.ref.entity_id),
            reviewer_id=str(review.reviewer_id),
            review_stage=stage.value,
            current_stage=current_stage.value,
            review_id=str(record.id),
        )
        return StageAlreadyAdvancedError(
            review.ref.entity_id,
            stage.value,
            current_stage.value,
            review_id=record.id,
        )

    async def submit_review(self, review: ReviewSubmission) -> AggregationResult:
        """Record a completed review and evaluate its round.

        Args:
            review: The submitted review; decision must not be ``pending``.

        Returns:
            AggregationResult for the entity's current round.

        Raises:
            InvalidDecisionError: If the decision is ``pending``.
            InvalidScoreError: If a score is outside [0, 10]. Nothing is stored.
            StageNotReviewableError: If ``review.stage`` is not a review stage.
            StageAlreadyAdvancedError: If the entity has left ``review.stage``.
                The review is stored uncounted before this is raised.
            EntityNotFoundError: If the entity does not exist.
        """
        if review.decision == ReviewDecision.pending:
            raise InvalidDecisionError(review.decision.value)
        validate_score(review.score)
        for name, value in review.criteria_scores.items():
            validate_score(value, f"criteria_scores.{name}")

        stage, definition = self._definition_for(review.reviewer_id, review.ref, review.stage)
        snapshot = await self.workflow_store.get_snapshot(review.ref)
        now = self._clock()

        if snapshot.current_stage != stage:
            record = await self.review_store.save_review(
                review,
                stage_version=None,
                counted=False,
                submitted_at=now,
            )
            raise self._late_review(review, stage, snapshot.current_stage, record)

        record = await self.review_store.save_review(
            review,
            stage_version=snapshot.stage_version,
            counted=True,
            submitted_at=now,
        )
        if not record.counted:
            # The round closed between the snapshot read and the write
            current = await self.workflow_store.get_snapshot(review.ref)
            raise self._late_review(review, stage, current.current_stage, record)

        result = await self._evaluate(snapshot.ref, stage, snapshot.stage_version, definition)

        self._logger.info(
            "review_recorded",
            entity_type=review.ref.entity_type.value,
            entity_id=str(review.ref.entity_id),
            reviewer_id=str(review.reviewer_id),
            stage=stage.value,
            stage_version=snapshot.stage_version,
            decision=review.decision.value,
            review_count=result.review_count,
            quorum=result.quorum,
            quorum_met=result.quorum_met,
            consensus=result.consensus.value,
        )
        return result.model_copy(update={"review": record})

    async def begin_review(self, ref: EntityRef, reviewer_id: UUID) -> ReviewRecord:
        """Open an in-progress review for the entity's current round.

        Raises:
            StageNotReviewableError: If the entity is not in a review stage.
        """
        snapshot = await self.workflow_store.get_snapshot(ref)
        stage, _ = self._definition_for(reviewer_id, ref, snapshot.current_stage)
        record = await self.review_store.begin_review(
            ref, reviewer_id, stage, snapshot.stage_version
        )
        self._logger.info(
            "review_started",
            entity_id=str(ref.entity_id),
            reviewer_id=str(reviewer_id),
            stage=stage.value,
            stage_version=snapshot.stage_version,
        )
        return record

    async def summarize(self, snapshot: EntitySnapshot) -> AggregationResult | None:
        """Evaluate the current round without writing anything.

        Returns:
            AggregationResult, or None if the entity is not in a review stage.
        """
        definition = get_stage_definition(snapshot.entity_type, snapshot.current_stage)
        if definition is None:
            return None
        return await self._evaluate(
            snapshot.ref, snapshot.current_stage, snapshot.stage_version, definition
        )

    async def _evaluate(
        self,
        ref: EntityRef,
        stage: Stage,
        stage_version: int,
        definition: StageDefinition,
    ) -> AggregationResult:
        rows = await self.review_store.list_completed_reviews(ref, stage, stage_version)
        reviews = latest_per_reviewer(r for r in rows if r.counted)
        consensus = compute_consensus((r.decision for r in reviews), definition.quorum)
        return AggregationResult(
            ref=ref,
            stage=stage,
            stage_version=stage_version,
            quorum=definition.quorum,
            review_count=len(reviews),
            quorum_met=len(reviews) >= definition.quorum,
            consensus=consensus,
            aggregate_score=mean_score(reviews),
        )
