"""SQLAlchemy implementation of the workflow storage ports.

``SqlAlchemyStore`` satisfies ``WorkflowStore``, ``ReviewStore`` and
``LifecycleQueries``. Each call opens its own session from the session
factory, so concurrent callers never share a transaction.

Example:
    >>> store = SqlAlchemyStore(session_factory)
    >>> snapshot = await store.get_snapshot(EntityRef(entity_type=EntityType.idea, entity_id=idea_id))
    >>> swapped = await store.compare_and_swap_stage(snapshot.ref, expected_stage=..., ...)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.database.models.base import ensure_utc
from reviewflow.database.models.entity import ChallengeStatus, EntityType, Stage, coerce_stage
from reviewflow.database.models.review import Review
from reviewflow.database.queries import entity as entity_queries
from reviewflow.database.queries import lifecycle as lifecycle_queries
from reviewflow.database.queries import review as review_queries
from reviewflow.workflow.errors import EntityNotFoundError
from reviewflow.workflow.ports import (
    EntityRef,
    EntitySnapshot,
    ReviewRecord,
    ReviewSubmission,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


def to_review_record(review: Review) -> ReviewRecord:
    """Convert a Review row into the port-level record."""
    return ReviewRecord(
        id=review.id,
        ref=EntityRef(entity_type=review.entity_type, entity_id=review.entity_id),
        reviewer_id=review.reviewer_id,
        stage=review.stage,
        stage_version=review.stage_version,
        decision=review.decision,
        score=review.score,
        criteria_scores=dict(review.criteria_scores or {}),
        comments=review.comments,
        submitted_at=ensure_utc(review.submitted_at),
        counted=review.counted,
    )


class SqlAlchemyStore:
    """Workflow, review and lifecycle storage backed by SQLAlchemy.

    Attributes:
        session_factory: Callable that produces async database sessions.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        """Initialize the store.

        Args:
            session_factory: Callable returning new AsyncSession instances.
                Must be an async context manager (``async with session_factory() as session``).
        """
        self.session_factory = session_factory
        self._logger = logger.bind(component="SqlAlchemyStore")

    # --- WorkflowStore ---

    async def get_snapshot(self, ref: EntityRef) -> EntitySnapshot:
        async with self.session_factory() as session:
            entity = await entity_queries.get_entity(session, ref.entity_type, ref.entity_id)
            if entity is None:
                raise EntityNotFoundError(ref.entity_type.value, ref.entity_id)
            snapshots = await entity_queries.snapshots_for(session, ref.entity_type, [entity])
            return snapshots[0]

    async def compare_and_swap_stage(
        self,
        ref: EntityRef,
        *,
        expected_stage: Stage,
        expected_version: int,
        new_stage: Stage,
        changed_at: datetime,
        actor_id: UUID | None,
        milestones: dict[str, datetime],
    ) -> bool:
        async with self.session_factory() as session:
            swapped = await entity_queries.compare_and_swap_stage(
                session,
                ref.entity_type,
                ref.entity_id,
                expected_stage=expected_stage,
                expected_version=expected_version,
                new_stage=new_stage,
                changed_at=changed_at,
                actor_id=actor_id,
                milestones=milestones,
            )
            if swapped:
                await session.commit()
            else:
                await session.rollback()

        self._logger.debug(
            "stage_swap_attempted",
            entity_id=str(ref.entity_id),
            expected_stage=expected_stage.value,
            expected_version=expected_version,
            new_stage=new_stage.value,
            swapped=swapped,
        )
        return swapped

    async def find_in_stages(
        self, entity_type: EntityType, stages: list[Stage]
    ) -> list[EntitySnapshot]:
        async with self.session_factory() as session:
            rows = await entity_queries.list_in_stages(session, entity_type, stages)
            return await entity_queries.snapshots_for(session, entity_type, rows)

    # --- ReviewStore ---

    async def begin_review(
        self,
        ref: EntityRef,
        reviewer_id: UUID,
        stage: Stage,
        stage_version: int,
    ) -> ReviewRecord:
        async with self.session_factory() as session:
            review = await review_queries.create_pending_review(
                session,
                ref.entity_type,
                ref.entity_id,
                reviewer_id,
                stage.value,
                stage_version,
            )
            return to_review_record(review)

    async def save_review(
        self,
        review: ReviewSubmission,
        *,
        stage_version: int | None,
        counted: bool,
        submitted_at: datetime,
    ) -> ReviewRecord:
        stage = coerce_stage(review.ref.entity_type, review.stage).value
        async with self.session_factory() as session:
            row = await review_queries.upsert_review(
                session,
                review.ref.entity_type,
                review.ref.entity_id,
                review.reviewer_id,
                stage,
                stage_version,
                review.decision,
                review.score,
                review.criteria_scores,
                review.comments,
                submitted_at,
                counted,
            )
            return to_review_record(row)

    async def list_completed_reviews(
        self,
        ref: EntityRef,
        stage: Stage,
        stage_version: int,
    ) -> list[ReviewRecord]:
        async with self.session_factory() as session:
            rows = await review_queries.list_round_reviews(
                session, ref.entity_type, ref.entity_id, stage.value, stage_version
            )
            return [to_review_record(row) for row in rows]

    async def list_reviewer_reviews(self, reviewer_id: UUID) -> list[ReviewRecord]:
        async with self.session_factory() as session:
            rows = await review_queries.list_reviewer_reviews(session, reviewer_id)
            return [to_review_record(row) for row in rows]

    async def list_reviews(self, ref: EntityRef) -> list[ReviewRecord]:
        """Full review history, including in-progress and late reviews."""
        async with self.session_factory() as session:
            rows = await review_queries.list_entity_reviews(
                session, ref.entity_type, ref.entity_id
            )
            return [to_review_record(row) for row in rows]

    # --- LifecycleQueries ---

    async def find_expired_active_challenges(self, now: datetime) -> list[EntitySnapshot]:
        async with self.session_factory() as session:
            rows = await lifecycle_queries.find_expired_active_challenges(session, now)
            return await entity_queries.snapshots_for(session, EntityType.challenge, rows)

    async def find_challenges_in_review(self) -> list[EntitySnapshot]:
        async with self.session_factory() as session:
            rows = await lifecycle_queries.find_challenges_with_status(
                session, [ChallengeStatus.review]
            )
            return await entity_queries.snapshots_for(session, EntityType.challenge, rows)

    async def find_stale_challenges(self, cutoff: datetime) -> list[EntitySnapshot]:
        async with self.session_factory() as session:
            rows = await lifecycle_queries.find_stale_challenges(session, cutoff)
            return await entity_queries.snapshots_for(session, EntityType.challenge, rows)

    async def find_abandoned_drafts(self, cutoff: datetime) -> list[EntitySnapshot]:
        async with self.session_factory() as session:
            rows = await lifecycle_queries.find_abandoned_drafts(session, cutoff)
            return await entity_queries.snapshots_for(session, EntityType.challenge, rows)

    async def list_submissions(self, challenge_id: UUID) -> list[EntitySnapshot]:
        async with self.session_factory() as session:
            rows = await lifecycle_queries.list_challenge_submissions(session, challenge_id)
            return await entity_queries.snapshots_for(
                session, EntityType.challenge_submission, rows
            )
