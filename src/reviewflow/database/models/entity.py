"""Reviewable entity models for Reviewflow.

Defines the Idea, Challenge and ChallengeSubmission tables together with
the closed stage enumeration for each entity type. Every entity carries
the same workflow columns (current stage, stage version, last stage change
and last actor) so that a single compare-and-swap statement can move any
of them between stages.

Stage values are changed only by the workflow engine; nothing else in
the package writes ``current_stage``.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship, synonym

from reviewflow.database.models.base import Base, TimestampMixin


class EntityType(str, enum.Enum):
    """Kinds of entity driven through the review workflow."""

    idea = "idea"
    challenge = "challenge"
    challenge_submission = "challenge_submission"


class IdeaStage(str, enum.Enum):
    """Idea pipeline.

    States:
        draft: Author-editable, not yet visible to reviewers.
        submitted: Awaiting the opening of manager review.
        manager_review: Line-manager review round.
        sme_review: Subject-matter expert review round.
        board_review: Board review round.
        implementation: Approved and being implemented.
        completed: Implementation finished.
        rejected: Rejected at a review stage (terminal for review).
        archived: Soft-removed.
    """

    draft = "draft"
    submitted = "submitted"
    manager_review = "manager_review"
    sme_review = "sme_review"
    board_review = "board_review"
    implementation = "implementation"
    completed = "completed"
    rejected = "rejected"
    archived = "archived"


class ChallengeStatus(str, enum.Enum):
    """Challenge lifecycle.

    States:
        draft: Being prepared by staff.
        active: Open for submissions until the submission deadline.
        review: Submissions are being reviewed.
        judging: All submissions reviewed; winners being chosen.
        completed: Judging finished.
        cancelled: No submissions at the deadline, or abandoned as a draft.
        closed: Administratively force-closed.
    """

    draft = "draft"
    active = "active"
    review = "review"
    judging = "judging"
    completed = "completed"
    cancelled = "cancelled"
    closed = "closed"


class SubmissionStage(str, enum.Enum):
    """Challenge submission pipeline."""

    draft = "draft"
    submitted = "submitted"
    manager_review = "manager_review"
    sme_review = "sme_review"
    approved = "approved"
    rejected = "rejected"
    winner = "winner"
    withdrawn = "withdrawn"
    archived = "archived"


Stage = IdeaStage | ChallengeStatus | SubmissionStage

STAGE_ENUMS: dict[EntityType, type[enum.Enum]] = {
    EntityType.idea: IdeaStage,
    EntityType.challenge: ChallengeStatus,
    EntityType.challenge_submission: SubmissionStage,
}


def coerce_stage(entity_type: EntityType, value: str) -> Stage:
    """Convert a raw stage value into the stage enum of ``entity_type``.

    Raises:
        ValueError: If ``value`` is not a stage of that entity type.
    """
    return STAGE_ENUMS[entity_type](value)  # type: ignore[return-value]


class WorkflowColumnsMixin:
    """Columns written by every committed stage transition.

    Attributes:
        stage_version: Incremented on each transition. Part of the
            compare-and-swap key and identifies the current review round.
        last_stage_change_at: When the current stage was entered.
        last_actor_id: Who triggered the last transition (None for the
            lifecycle scheduler).
    """

    stage_version: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    last_stage_change_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_actor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
    )


class Idea(WorkflowColumnsMixin, TimestampMixin, Base):
    """An idea moving through manager, SME and board review.

    Attributes:
        author_id: Submitting user.
        title: Short title.
        description: Free-form body.
        current_stage: Current IdeaStage.
        submitted_at .. completed_at: Milestone timestamps stamped by the
            workflow engine on entering or leaving a stage.
    """

    __tablename__ = "ideas"

    author_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_stage: Mapped[IdeaStage] = mapped_column(
        default=IdeaStage.draft,
        nullable=False,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    manager_review_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    manager_review_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    sme_review_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    sme_review_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    board_review_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    board_review_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    implementation_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_ideas_current_stage", "current_stage"),
        Index("ix_ideas_author_id", "author_id"),
    )


class Challenge(WorkflowColumnsMixin, TimestampMixin, Base):
    """A time-boxed challenge that collects submissions.

    ``status`` is an alias of ``current_stage`` so queries can read the
    way the lifecycle rules are phrased.

    Attributes:
        created_by: Staff member who owns the challenge.
        submission_deadline: Submissions close after this instant.
        evaluation_deadline: Target date for the end of judging.
        max_participants: Admission cap (None for unlimited).
        current_participants: Admitted participant count.
    """

    __tablename__ = "challenges"

    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_stage: Mapped[ChallengeStatus] = mapped_column(
        default=ChallengeStatus.draft,
        nullable=False,
    )
    status = synonym("current_stage")
    submission_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    evaluation_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_participants: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    review_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    judging_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    submissions: Mapped[list["ChallengeSubmission"]] = relationship(
        "ChallengeSubmission",
        back_populates="challenge",
        lazy="noload",
    )

    __table_args__ = (
        Index("ix_challenges_current_stage", "current_stage"),
        Index("ix_challenges_submission_deadline", "submission_deadline"),
    )


class ChallengeSubmission(WorkflowColumnsMixin, TimestampMixin, Base):
    """An entry submitted to a challenge.

    Attributes:
        challenge_id: Parent challenge.
        author_id: Submitting user (team lead for team entries).
        current_stage: Current SubmissionStage.
        submitted_at: When the entry was submitted.
        review_started_at: When manager review opened.
        reviewed_at: When the review outcome (approved/rejected) was reached.
        winner_selected_at: When the entry was marked a winner.
    """

    __tablename__ = "challenge_submissions"

    challenge_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("challenges.id"),
        nullable=False,
    )
    author_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_stage: Mapped[SubmissionStage] = mapped_column(
        default=SubmissionStage.draft,
        nullable=False,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    review_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    winner_selected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    challenge: Mapped[Challenge] = relationship(
        "Challenge",
        back_populates="submissions",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_challenge_submissions_challenge_id", "challenge_id"),
        Index("ix_challenge_submissions_current_stage", "current_stage"),
    )


ENTITY_MODELS: dict[EntityType, type[Idea] | type[Challenge] | type[ChallengeSubmission]] = {
    EntityType.idea: Idea,
    EntityType.challenge: Challenge,
    EntityType.challenge_submission: ChallengeSubmission,
}
