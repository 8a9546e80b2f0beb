"""Ports between the workflow core and its collaborators.

The workflow core never touches ORM objects. It reads immutable snapshots
and writes through a small set of storage operations, and it reports what
happened through two side-effect ports:

- ``NotificationPort.phase_transition``: a request to tell interested
  users that an entity changed stage. Delivery is someone else's job.
- ``AuditPort.record``: an audit event. ``entity_id`` may be None for
  system-level events such as the end of a lifecycle run.

Storage ports:

- ``WorkflowStore``: snapshot reads and the compare-and-swap stage write.
- ``ReviewStore``: review rows keyed by (entity, round, reviewer).
- ``LifecycleQueries``: the time-based scans used by the lifecycle scheduler.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from reviewflow.database.models.entity import EntityType, Stage
from reviewflow.database.models.review import ReviewDecision


class EntityRef(BaseModel):
    """Identifies one entity."""

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    entity_id: UUID

    def __str__(self) -> str:
        return f"{self.entity_type.value}:{self.entity_id}"


class EntitySnapshot(BaseModel):
    """Immutable view of the workflow-relevant fields of an entity.

    Attributes:
        ref: Entity type and id.
        current_stage: Stage at read time.
        stage_version: Stage version at read time.
        author_id: Author (challenge creator for challenges).
        team_ids: Pending and accepted collaborators.
        challenge_id: Parent challenge, for submissions.
        challenge_creator_id: Parent challenge's creator, for submissions.
        deadline: Submission deadline (own for challenges, parent's for
            submissions, None for ideas).
    """

    model_config = ConfigDict(frozen=True)

    ref: EntityRef
    title: str = ""
    current_stage: Stage
    stage_version: int = 0
    author_id: UUID
    team_ids: frozenset[UUID] = frozenset()
    challenge_id: UUID | None = None
    challenge_creator_id: UUID | None = None
    deadline: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_stage_change_at: datetime | None = None

    @property
    def entity_type(self) -> EntityType:
        return self.ref.entity_type

    @property
    def id(self) -> UUID:
        return self.ref.entity_id


class ReviewSubmission(BaseModel):
    """A reviewer's completed review as submitted.

    Range checks on scores are performed by the aggregator so that a bad
    value surfaces as ``InvalidScoreError`` rather than a model error.
    """

    ref: EntityRef
    reviewer_id: UUID
    stage: Stage | str
    decision: ReviewDecision
    score: float | None = None
    criteria_scores: dict[str, float] = Field(default_factory=dict)
    comments: str | None = None


class ReviewRecord(BaseModel):
    """A stored review row."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    ref: EntityRef
    reviewer_id: UUID
    stage: str
    stage_version: int | None
    decision: ReviewDecision
    score: float | None = None
    criteria_scores: dict[str, float] = Field(default_factory=dict)
    comments: str | None = None
    submitted_at: datetime | None = None
    counted: bool = True

    @property
    def completed(self) -> bool:
        return self.submitted_at is not None and self.decision != ReviewDecision.pending


@runtime_checkable
class NotificationPort(Protocol):
    """Receives phase-transition notification requests."""

    async def phase_transition(
        self,
        entity: EntitySnapshot,
        old_stage: Stage,
        new_stage: Stage,
    ) -> None:
        """Request notification of a committed stage change.

        Args:
            entity: Snapshot reflecting the new stage.
            old_stage: Stage before the transition.
            new_stage: Stage after the transition.
        """
        ...


@runtime_checkable
class AuditPort(Protocol):
    """Receives audit events."""

    async def record(
        self,
        event_type: str,
        entity_type: str | None,
        entity_id: UUID | None,
        actor_id: UUID | None,
        metadata: dict[str, Any],
    ) -> None:
        """Record one audit event.

        Args:
            event_type: Event name, e.g. ``stage_transition``.
            entity_type: Entity type value, or None for system events.
            entity_id: Entity, or None for system events.
            actor_id: Acting user, or None for automation.
            metadata: Event details.
        """
        ...


@runtime_checkable
class WorkflowStore(Protocol):
    """Entity reads and the single stage-changing write."""

    async def get_snapshot(self, ref: EntityRef) -> EntitySnapshot:
        """Read an entity.

        Raises:
            EntityNotFoundError: If the entity does not exist.
        """
        ...

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
        """Atomically move an entity to ``new_stage``.

        Applies only if the entity is still at ``expected_stage`` and
        ``expected_version``; increments the version and stamps
        ``changed_at`` plus ``milestones`` in the same statement.

        Returns:
            True if the swap was applied, False if the entity had moved.
        """
        ...

    async def find_in_stages(
        self, entity_type: EntityType, stages: list[Stage]
    ) -> list[EntitySnapshot]:
        """Entities of ``entity_type`` currently in any of ``stages``, longest waiting first."""
        ...


@runtime_checkable
class ReviewStore(Protocol):
    """Review rows for one entity at a time."""

    async def begin_review(
        self,
        ref: EntityRef,
        reviewer_id: UUID,
        stage: Stage,
        stage_version: int,
    ) -> ReviewRecord:
        """Create (or return) the in-progress review for this round."""
        ...

    async def save_review(
        self,
        review: ReviewSubmission,
        *,
        stage_version: int | None,
        counted: bool,
        submitted_at: datetime,
    ) -> ReviewRecord:
        """Store a completed review.

        A counted review is written into round ``stage_version`` only if the
        entity is still at ``review.stage`` and ``stage_version`` when the
        write happens, checked atomically with the write. It then overwrites
        the reviewer's existing row for that round. Otherwise, and for
        uncounted (late) reviews, the row is appended with no round and the
        returned record has ``counted=False``.
        """
        ...

    async def list_completed_reviews(
        self,
        ref: EntityRef,
        stage: Stage,
        stage_version: int,
    ) -> list[ReviewRecord]:
        """Completed, counted reviews for one review round."""
        ...

    async def list_reviewer_reviews(self, reviewer_id: UUID) -> list[ReviewRecord]:
        """Completed, counted reviews written by one reviewer."""
        ...


@runtime_checkable
class LifecycleQueries(Protocol):
    """Time-based scans used by the lifecycle scheduler."""

    async def find_expired_active_challenges(self, now: datetime) -> list[EntitySnapshot]:
        ...

    async def find_challenges_in_review(self) -> list[EntitySnapshot]:
        ...

    async def find_stale_challenges(self, cutoff: datetime) -> list[EntitySnapshot]:
        ...

    async def find_abandoned_drafts(self, cutoff: datetime) -> list[EntitySnapshot]:
        ...

    async def list_submissions(self, challenge_id: UUID) -> list[EntitySnapshot]:
        ...
