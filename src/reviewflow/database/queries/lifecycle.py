"""Lifecycle scan queries for Reviewflow.

Selects the challenges each lifecycle rule applies to. All timestamps are
compared in UTC.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.database.models.base import ensure_utc
from reviewflow.database.models.entity import (
    Challenge,
    ChallengeStatus,
    ChallengeSubmission,
)


async def find_expired_active_challenges(
    session: AsyncSession,
    now: datetime,
) -> list[Challenge]:
    """Active challenges whose submission deadline is before ``now``."""
    stmt = (
        select(Challenge)
        .where(
            Challenge.status == ChallengeStatus.active,
            Challenge.submission_deadline.is_not(None),
            Challenge.submission_deadline < ensure_utc(now),
        )
        .order_by(Challenge.submission_deadline.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_challenges_with_status(
    session: AsyncSession,
    statuses: list[ChallengeStatus],
) -> list[Challenge]:
    stmt = (
        select(Challenge)
        .where(Challenge.status.in_(statuses))
        .order_by(Challenge.created_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_stale_challenges(
    session: AsyncSession,
    cutoff: datetime,
) -> list[Challenge]:
    """Challenges in review or judging not updated since ``cutoff``."""
    stmt = (
        select(Challenge)
        .where(
            Challenge.status.in_([ChallengeStatus.review, ChallengeStatus.judging]),
            Challenge.updated_at < ensure_utc(cutoff),
        )
        .order_by(Challenge.updated_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_abandoned_drafts(
    session: AsyncSession,
    cutoff: datetime,
) -> list[Challenge]:
    """Draft challenges created before ``cutoff``."""
    stmt = (
        select(Challenge)
        .where(
            Challenge.status == ChallengeStatus.draft,
            Challenge.created_at < ensure_utc(cutoff),
        )
        .order_by(Challenge.created_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_challenge_submissions(
    session: AsyncSession,
    challenge_id: UUID,
) -> list[ChallengeSubmission]:
    stmt = (
        select(ChallengeSubmission)
        .where(ChallengeSubmission.challenge_id == challenge_id)
        .order_by(ChallengeSubmission.created_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
