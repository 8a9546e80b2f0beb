"""Review query functions for Reviewflow.

Reviews are keyed by (entity, review round, reviewer). A counted review
for the same key is updated in place, provided the round is still open;
late reviews (no round) are always inserted so the history is complete.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.database.models.entity import ENTITY_MODELS, EntityType, coerce_stage
from reviewflow.database.models.review import Review, ReviewDecision

logger = structlog.get_logger(__name__)


async def get_round_review(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: UUID,
    stage_version: int,
    reviewer_id: UUID,
) -> Review | None:
    """Return the reviewer's review for one round, if any."""
    stmt = select(Review).where(
        Review.entity_type == entity_type,
        Review.entity_id == entity_id,
        Review.stage_version == stage_version,
        Review.reviewer_id == reviewer_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_pending_review(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: UUID,
    reviewer_id: UUID,
    stage: str,
    stage_version: int,
) -> Review:
    """Create the in-progress review for a round, or return the existing one."""
    existing = await get_round_review(session, entity_type, entity_id, stage_version, reviewer_id)
    if existing is not None:
        return existing

    review = Review(
        entity_type=entity_type,
        entity_id=entity_id,
        reviewer_id=reviewer_id,
        stage=stage,
        stage_version=stage_version,
        decision=ReviewDecision.pending,
        criteria_scores={},
        counted=True,
    )
    session.add(review)
    await session.commit()
    await session.refresh(review)
    return review


async def round_is_open(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: UUID,
    stage: str,
    stage_version: int,
) -> bool:
    """Lock the entity row if it is still in the given review round.

    Uses ``SELECT ... FOR UPDATE`` so a concurrent compare-and-swap on the
    same entity waits until the caller's transaction ends. Backends without
    row locks (SQLite) serialize writers at the database level instead.

    Returns:
        True if the entity is at ``stage`` and ``stage_version``.
    """
    model = ENTITY_MODELS[entity_type]
    stmt = (
        select(model.id)
        .where(
            model.id == entity_id,
            model.current_stage == coerce_stage(entity_type, stage),
            model.stage_version == stage_version,
        )
        .with_for_update()
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None


async def upsert_review(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: UUID,
    reviewer_id: UUID,
    stage: str,
    stage_version: int | None,
    decision: ReviewDecision,
    score: float | None,
    criteria_scores: dict[str, float],
    comments: str | None,
    submitted_at: datetime,
    counted: bool,
) -> Review:
    """Store a completed review.

    A counted review is written only while the entity is still in the
    round it names; the round check and the write share one transaction
    with the entity row locked. It overwrites the reviewer's existing row
    for the round. Uncounted reviews, and counted ones whose round has
    closed in the meantime, are appended with no round and
    ``counted=False``.

    Returns:
        The stored Review. Callers read ``counted`` to learn which way it went.
    """
    fields = {
        "stage": stage,
        "decision": decision,
        "score": score,
        "criteria_scores": dict(criteria_scores),
        "comments": comments,
        "submitted_at": submitted_at,
    }

    if counted and stage_version is not None:

        async def _write() -> tuple[Review | None, bool]:
            if not await round_is_open(session, entity_type, entity_id, stage, stage_version):
                await session.rollback()
                return None, False
            review = await get_round_review(
                session, entity_type, entity_id, stage_version, reviewer_id
            )
            overwritten = review is not None
            if review is None:
                review = Review(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    reviewer_id=reviewer_id,
                    stage_version=stage_version,
                    counted=True,
                    **fields,
                )
                session.add(review)
            else:
                for name, value in fields.items():
                    setattr(review, name, value)
            await session.commit()
            return review, overwritten

        try:
            review, overwritten = await _write()
        except IntegrityError:
            # Same reviewer inserted concurrently; the second pass updates that row
            await session.rollback()
            review, overwritten = await _write()

        if review is not None:
            await session.refresh(review)
            if overwritten:
                logger.info(
                    "review_overwritten",
                    review_id=str(review.id),
                    entity_id=str(entity_id),
                    reviewer_id=str(reviewer_id),
                    stage_version=stage_version,
                )
            return review

        logger.info(
            "review_round_closed",
            entity_id=str(entity_id),
            reviewer_id=str(reviewer_id),
            stage=stage,
            stage_version=stage_version,
        )

    review = Review(
        entity_type=entity_type,
        entity_id=entity_id,
        reviewer_id=reviewer_id,
        stage_version=None,
        counted=False,
        **fields,
    )
    session.add(review)
    await session.commit()
    await session.refresh(review)
    return review


async def list_round_reviews(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: UUID,
    stage: str,
    stage_version: int,
) -> list[Review]:
    """Completed, counted reviews for one round of one entity."""
    stmt = (
        select(Review)
        .where(
            Review.entity_type == entity_type,
            Review.entity_id == entity_id,
            Review.stage == stage,
            Review.stage_version == stage_version,
            Review.counted.is_(True),
            Review.submitted_at.is_not(None),
            Review.decision != ReviewDecision.pending,
        )
        .order_by(Review.submitted_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_entity_reviews(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: UUID,
) -> list[Review]:
    """Full review history of an entity, oldest first."""
    stmt = (
        select(Review)
        .where(Review.entity_type == entity_type, Review.entity_id == entity_id)
        .order_by(Review.created_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_reviewer_reviews(
    session: AsyncSession,
    reviewer_id: UUID,
) -> list[Review]:
    """Completed, counted reviews written by one reviewer."""
    stmt = (
        select(Review)
        .where(
            Review.reviewer_id == reviewer_id,
            Review.counted.is_(True),
            Review.submitted_at.is_not(None),
            Review.decision != ReviewDecision.pending,
        )
        .order_by(Review.submitted_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
