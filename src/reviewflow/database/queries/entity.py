"""Entity query functions for Reviewflow.

Provides async functions for creating ideas, challenges and submissions,
reading them as workflow snapshots, managing collaborators and participant
admission, and the compare-and-swap stage update used by the workflow
engine.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.database.models.base import ensure_utc
from reviewflow.database.models.collaborator import (
    TEAM_STATUSES,
    Collaborator,
    CollaboratorStatus,
)
from reviewflow.database.models.entity import (
    ENTITY_MODELS,
    Challenge,
    ChallengeStatus,
    ChallengeSubmission,
    EntityType,
    Idea,
    Stage,
    coerce_stage,
)
from reviewflow.workflow.ports import EntityRef, EntitySnapshot

logger = structlog.get_logger(__name__)

AnyEntity = Idea | Challenge | ChallengeSubmission


async def create_idea(
    session: AsyncSession,
    author_id: UUID,
    title: str,
    description: str | None = None,
) -> Idea:
    """Create a new idea in ``draft``.

    Args:
        session: Active async database session.
        author_id: Submitting user.
        title: Short title.
        description: Free-form body.

    Returns:
        The newly created Idea instance.
    """
    idea = Idea(author_id=author_id, title=title, description=description)
    session.add(idea)
    await session.commit()
    await session.refresh(idea)

    logger.info(
        "idea_created",
        idea_id=str(idea.id),
        author_id=str(author_id),
        stage=idea.current_stage.value,
    )
    return idea


async def create_challenge(
    session: AsyncSession,
    created_by: UUID,
    title: str,
    submission_deadline: datetime | None = None,
    evaluation_deadline: datetime | None = None,
    max_participants: int | None = None,
    description: str | None = None,
) -> Challenge:
    """Create a new challenge in ``draft``.

    Args:
        session: Active async database session.
        created_by: Owning staff member.
        title: Short title.
        submission_deadline: When submissions close.
        evaluation_deadline: Target end of judging.
        max_participants: Admission cap, None for unlimited.
        description: Free-form body.

    Returns:
        The newly created Challenge instance.
    """
    challenge = Challenge(
        created_by=created_by,
        title=title,
        description=description,
        submission_deadline=submission_deadline,
        evaluation_deadline=evaluation_deadline,
        max_participants=max_participants,
    )
    session.add(challenge)
    await session.commit()
    await session.refresh(challenge)

    logger.info(
        "challenge_created",
        challenge_id=str(challenge.id),
        created_by=str(created_by),
        submission_deadline=(
            submission_deadline.isoformat() if submission_deadline else None
        ),
    )
    return challenge


async def create_submission(
    session: AsyncSession,
    challenge_id: UUID,
    author_id: UUID,
    title: str,
    description: str | None = None,
) -> ChallengeSubmission:
    """Create a new challenge submission in ``draft``."""
    submission = ChallengeSubmission(
        challenge_id=challenge_id,
        author_id=author_id,
        title=title,
        description=description,
    )
    session.add(submission)
    await session.commit()
    await session.refresh(submission)

    logger.info(
        "submission_created",
        submission_id=str(submission.id),
        challenge_id=str(challenge_id),
        author_id=str(author_id),
    )
    return submission


async def get_entity(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: UUID,
) -> AnyEntity | None:
    """Retrieve an entity by type and ID.

    Returns:
        The model instance if found, None otherwise.
    """
    model = ENTITY_MODELS[entity_type]
    result = await session.execute(select(model).where(model.id == entity_id))
    return result.scalar_one_or_none()


async def add_collaborator(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: UUID,
    user_id: UUID,
    status: CollaboratorStatus = CollaboratorStatus.pending,
) -> Collaborator:
    """Record a collaborator on an idea or submission."""
    collaborator = Collaborator(
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        status=status,
    )
    session.add(collaborator)
    await session.commit()
    await session.refresh(collaborator)

    logger.info(
        "collaborator_added",
        entity_type=entity_type.value,
        entity_id=str(entity_id),
        user_id=str(user_id),
        status=status.value,
    )
    return collaborator


async def get_team_map(
    session: AsyncSession,
    entity_type: EntityType,
    entity_ids: Iterable[UUID],
) -> dict[UUID, frozenset[UUID]]:
    """Pending and accepted collaborators for each of ``entity_ids``."""
    ids = list(entity_ids)
    if not ids:
        return {}
    result = await session.execute(
        select(Collaborator.entity_id, Collaborator.user_id).where(
            Collaborator.entity_type == entity_type,
            Collaborator.entity_id.in_(ids),
            Collaborator.status.in_(list(TEAM_STATUSES)),
        )
    )
    teams: dict[UUID, set[UUID]] = {entity_id: set() for entity_id in ids}
    for entity_id, user_id in result.all():
        teams[entity_id].add(user_id)
    return {entity_id: frozenset(members) for entity_id, members in teams.items()}


def to_snapshot(
    entity: AnyEntity,
    team_ids: frozenset[UUID] = frozenset(),
) -> EntitySnapshot:
    """Build a workflow snapshot from a loaded model instance."""
    common: dict[str, Any] = {
        "title": entity.title,
        "current_stage": entity.current_stage,
        "stage_version": entity.stage_version,
        "team_ids": team_ids,
        "created_at": ensure_utc(entity.created_at),
        "updated_at": ensure_utc(entity.updated_at),
        "last_stage_change_at": ensure_utc(entity.last_stage_change_at),
    }
    if isinstance(entity, Idea):
        return EntitySnapshot(
            ref=EntityRef(entity_type=EntityType.idea, entity_id=entity.id),
            author_id=entity.author_id,
            **common,
        )
    if isinstance(entity, Challenge):
        return EntitySnapshot(
            ref=EntityRef(entity_type=EntityType.challenge, entity_id=entity.id),
            author_id=entity.created_by,
            deadline=ensure_utc(entity.submission_deadline),
            **common,
        )
    challenge = entity.challenge
    return EntitySnapshot(
        ref=EntityRef(entity_type=EntityType.challenge_submission, entity_id=entity.id),
        author_id=entity.author_id,
        challenge_id=entity.challenge_id,
        challenge_creator_id=challenge.created_by if challenge is not None else None,
        deadline=ensure_utc(challenge.submission_deadline) if challenge is not None else None,
        **common,
    )


async def snapshots_for(
    session: AsyncSession,
    entity_type: EntityType,
    entities: list[AnyEntity],
) -> list[EntitySnapshot]:
    """Convert loaded entities to snapshots with their teams attached."""
    if entity_type == EntityType.challenge:
        return [to_snapshot(entity) for entity in entities]
    teams = await get_team_map(session, entity_type, [entity.id for entity in entities])
    return [to_snapshot(entity, teams.get(entity.id, frozenset())) for entity in entities]


async def list_entities(
    session: AsyncSession,
    entity_type: EntityType,
    stage: Stage | str | None = None,
    limit: int = 100,
) -> list[AnyEntity]:
    """List entities of one type, newest first, optionally filtered by stage."""
    model = ENTITY_MODELS[entity_type]
    stmt = select(model)
    if stage is not None:
        stmt = stmt.where(model.current_stage == coerce_stage(entity_type, stage))
    stmt = stmt.order_by(model.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_in_stages(
    session: AsyncSession,
    entity_type: EntityType,
    stages: Iterable[Stage],
    limit: int = 500,
) -> list[AnyEntity]:
    """Entities of one type in any of ``stages``, longest in their stage first."""
    model = ENTITY_MODELS[entity_type]
    coerced = [coerce_stage(entity_type, stage) for stage in stages]
    if not coerced:
        return []
    waiting_since = func.coalesce(model.last_stage_change_at, model.created_at)
    stmt = (
        select(model)
        .where(model.current_stage.in_(coerced))
        .order_by(waiting_since.asc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def compare_and_swap_stage(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: UUID,
    *,
    expected_stage: Stage,
    expected_version: int,
    new_stage: Stage,
    changed_at: datetime,
    actor_id: UUID | None,
    milestones: dict[str, datetime],
) -> bool:
    """Move an entity to ``new_stage`` if it is still where the caller saw it.

    Issued as one conditional UPDATE keyed on id, stage and stage version.
    The caller commits.

    Returns:
        True if exactly one row was updated.
    """
    model = ENTITY_MODELS[entity_type]
    stmt = (
        update(model)
        .where(
            model.id == entity_id,
            model.current_stage == coerce_stage(entity_type, expected_stage),
            model.stage_version == expected_version,
        )
        .values(
            current_stage=coerce_stage(entity_type, new_stage),
            stage_version=model.stage_version + 1,
            last_stage_change_at=changed_at,
            last_actor_id=actor_id,
            **milestones,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1  # type: ignore[union-attr]


async def admit_participant(session: AsyncSession, challenge_id: UUID) -> bool:
    """Atomically take one participant slot on an active challenge.

    Returns:
        True if admitted, False if the challenge is not active or full.
    """
    stmt = (
        update(Challenge)
        .where(
            Challenge.id == challenge_id,
            Challenge.current_stage == ChallengeStatus.active,
            or_(
                Challenge.max_participants.is_(None),
                Challenge.current_participants < Challenge.max_participants,
            ),
        )
        .values(current_participants=Challenge.current_participants + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    admitted = result.rowcount == 1  # type: ignore[union-attr]
    logger.info("participant_admission", challenge_id=str(challenge_id), admitted=admitted)
    return admitted
