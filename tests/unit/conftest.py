"""Shared fixtures for workflow unit tests.

Provides in-memory implementations of the storage and side-effect ports so
the workflow core can be exercised without a database.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest

from reviewflow.database.models.base import utcnow
from reviewflow.database.models.entity import (
    ChallengeStatus,
    EntityType,
    Stage,
    SubmissionStage,
)
from reviewflow.database.models.review import ReviewDecision
from reviewflow.workflow.errors import EntityNotFoundError
from reviewflow.workflow.ports import (
    EntityRef,
    EntitySnapshot,
    ReviewRecord,
    ReviewSubmission,
)


class InMemoryStore:
    """WorkflowStore, ReviewStore and LifecycleQueries over plain dicts.

    Attributes:
        entities: Snapshots keyed by entity id.
        reviews: Every stored review row.
        milestones: Milestone columns written per entity.
        before_swap: Optional hook run just before a compare-and-swap,
            used to simulate a competing writer.
        before_save: Optional hook run at the start of ``save_review``,
            used to move an entity while a review is being written.
        delay: Seconds to sleep on every snapshot read.
    """

    def __init__(self) -> None:
        self.entities: dict[UUID, EntitySnapshot] = {}
        self.reviews: list[ReviewRecord] = []
        self.milestones: dict[UUID, dict[str, datetime]] = {}
        self.before_swap: Callable[[EntityRef], None] | None = None
        self.before_save: Callable[[EntityRef], None] | None = None
        self.delay = 0.0
        self.swap_calls = 0

    # --- fixtures helpers ---

    def add(
        self,
        entity_type: EntityType,
        stage: Stage,
        *,
        author_id: UUID | None = None,
        team_ids: frozenset[UUID] = frozenset(),
        challenge_id: UUID | None = None,
        challenge_creator_id: UUID | None = None,
        deadline: datetime | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        stage_version: int = 0,
    ) -> EntitySnapshot:
        now = utcnow()
        snapshot = EntitySnapshot(
            ref=EntityRef(entity_type=entity_type, entity_id=uuid4()),
            title=f"{entity_type.value} under test",
            current_stage=stage,
            stage_version=stage_version,
            author_id=author_id or uuid4(),
            team_ids=team_ids,
            challenge_id=challenge_id,
            challenge_creator_id=challenge_creator_id,
            deadline=deadline,
            created_at=created_at or now,
            updated_at=updated_at or created_at or now,
        )
        self.entities[snapshot.id] = snapshot
        return snapshot

    def add_submission(
        self,
        challenge: EntitySnapshot,
        stage: SubmissionStage,
        **kwargs: Any,
    ) -> EntitySnapshot:
        return self.add(
            EntityType.challenge_submission,
            stage,
            challenge_id=challenge.id,
            challenge_creator_id=challenge.author_id,
            deadline=challenge.deadline,
            **kwargs,
        )

    def stage_of(self, entity: EntitySnapshot) -> Stage:
        return self.entities[entity.id].current_stage

    def move(self, entity_id: UUID, stage: Stage) -> None:
        """Change a stage behind the engine's back, as another writer would."""
        current = self.entities[entity_id]
        self.entities[entity_id] = current.model_copy(
            update={"current_stage": stage, "stage_version": current.stage_version + 1}
        )

    # --- WorkflowStore ---

    async def find_in_stages(
        self, entity_type: EntityType, stages: list[Stage]
    ) -> list[EntitySnapshot]:
        return [
            s
            for s in self.entities.values()
            if s.entity_type == entity_type and s.current_stage in stages
        ]

    async def get_snapshot(self, ref: EntityRef) -> EntitySnapshot:
        if self.delay:
            await asyncio.sleep(self.delay)
        snapshot = self.entities.get(ref.entity_id)
        if snapshot is None or snapshot.entity_type != ref.entity_type:
            raise EntityNotFoundError(ref.entity_type.value, ref.entity_id)
        return snapshot

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
        self.swap_calls += 1
        if self.before_swap is not None:
            self.before_swap(ref)
        current = self.entities.get(ref.entity_id)
        if (
            current is None
            or current.current_stage != expected_stage
            or current.stage_version != expected_version
        ):
            return False
        self.entities[ref.entity_id] = current.model_copy(
            update={
                "current_stage": new_stage,
                "stage_version": expected_version + 1,
                "last_stage_change_at": changed_at,
                "updated_at": changed_at,
            }
        )
        self.milestones.setdefault(ref.entity_id, {}).update(milestones)
        return True

    # --- ReviewStore ---

    async def begin_review(
        self,
        ref: EntityRef,
        reviewer_id: UUID,
        stage: Stage,
        stage_version: int,
    ) -> ReviewRecord:
        for record in self.reviews:
            if (
                record.ref == ref
                and record.stage_version == stage_version
                and record.reviewer_id == reviewer_id
            ):
                return record
        record = ReviewRecord(
            id=uuid4(),
            ref=ref,
            reviewer_id=reviewer_id,
            stage=stage.value,
            stage_version=stage_version,
            decision=ReviewDecision.pending,
        )
        self.reviews.append(record)
        return record

    async def save_review(
        self,
        review: ReviewSubmission,
        *,
        stage_version: int | None,
        counted: bool,
        submitted_at: datetime,
    ) -> ReviewRecord:
        if self.before_save is not None:
            self.before_save(review.ref)
        stage = review.stage.value if hasattr(review.stage, "value") else str(review.stage)
        if counted:
            current = self.entities.get(review.ref.entity_id)
            if (
                current is None
                or current.current_stage.value != stage
                or current.stage_version != stage_version
            ):
                counted = False
        record = ReviewRecord(
            id=uuid4(),
            ref=review.ref,
            reviewer_id=review.reviewer_id,
            stage=stage,
            stage_version=stage_version if counted else None,
            decision=review.decision,
            score=review.score,
            criteria_scores=dict(review.criteria_scores),
            comments=review.comments,
            submitted_at=submitted_at,
            counted=counted,
        )
        if counted:
            for index, existing in enumerate(self.reviews):
                if (
                    existing.ref == review.ref
                    and existing.stage_version == stage_version
                    and existing.reviewer_id == review.reviewer_id
                ):
                    record = record.model_copy(update={"id": existing.id})
                    self.reviews[index] = record
                    return record
        self.reviews.append(record)
        return record

    async def list_completed_reviews(
        self,
        ref: EntityRef,
        stage: Stage,
        stage_version: int,
    ) -> list[ReviewRecord]:
        return [
            r
            for r in self.reviews
            if r.ref == ref
            and r.stage == stage.value
            and r.stage_version == stage_version
            and r.counted
            and r.completed
        ]

    async def list_reviewer_reviews(self, reviewer_id: UUID) -> list[ReviewRecord]:
        return [
            r for r in self.reviews if r.reviewer_id == reviewer_id and r.counted and r.completed
        ]

    # --- LifecycleQueries ---

    def _challenges(self, *stages: ChallengeStatus) -> list[EntitySnapshot]:
        return [
            s
            for s in self.entities.values()
            if s.entity_type == EntityType.challenge and s.current_stage in stages
        ]

    async def find_expired_active_challenges(self, now: datetime) -> list[EntitySnapshot]:
        return [
            s
            for s in self._challenges(ChallengeStatus.active)
            if s.deadline is not None and s.deadline < now
        ]

    async def find_challenges_in_review(self) -> list[EntitySnapshot]:
        return self._challenges(ChallengeStatus.review)

    async def find_stale_challenges(self, cutoff: datetime) -> list[EntitySnapshot]:
        return [
            s
            for s in self._challenges(ChallengeStatus.review, ChallengeStatus.judging)
            if s.updated_at is not None and s.updated_at < cutoff
        ]

    async def find_abandoned_drafts(self, cutoff: datetime) -> list[EntitySnapshot]:
        return [
            s
            for s in self._challenges(ChallengeStatus.draft)
            if s.created_at is not None and s.created_at < cutoff
        ]

    async def list_submissions(self, challenge_id: UUID) -> list[EntitySnapshot]:
        return [
            s
            for s in self.entities.values()
            if s.entity_type == EntityType.challenge_submission and s.challenge_id == challenge_id
        ]


class RecordingNotifications:
    """NotificationPort that records every request."""

    def __init__(self) -> None:
        self.calls: list[tuple[EntitySnapshot, Stage, Stage]] = []
        self.fail = False
        self.delay = 0.0

    async def phase_transition(
        self,
        entity: EntitySnapshot,
        old_stage: Stage,
        new_stage: Stage,
    ) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("notification service unavailable")
        self.calls.append((entity, old_stage, new_stage))


class RecordingAudit:
    """AuditPort that records every event."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self.fail_on: set[str] = set()

    async def record(
        self,
        event_type: str,
        entity_type: str | None,
        entity_id: UUID | None,
        actor_id: UUID | None,
        metadata: dict[str, Any],
    ) -> None:
        if event_type in self.fail_on:
            raise RuntimeError(f"audit sink rejected {event_type}")
        self.events.append(
            {
                "event_type": event_type,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "actor_id": actor_id,
                "metadata": metadata,
            }
        )

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e["event_type"] == event_type]


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def days_ago() -> Callable[[int], datetime]:
    """Return a helper producing aware UTC datetimes in the past."""

    def _days_ago(days: int) -> datetime:
        return utcnow() - timedelta(days=days)

    return _days_ago
