"""Review model for Reviewflow.

Defines the Review table and ReviewDecision enum. A review row is created
when a reviewer opens a review (decision ``pending``, ``submitted_at``
unset) and is completed or corrected in place on submission. Rows are
never deleted; together they form the review audit trail.

A review belongs to one review round, identified by the entity's
``stage_version`` when the review was recorded. Reviews that arrive after
the stage has already moved on are stored with ``stage_version`` unset
and ``counted`` false so they never influence aggregation.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from reviewflow.database.models.base import Base, TimestampMixin
from reviewflow.database.models.entity import EntityType


class ReviewDecision(str, enum.Enum):
    """Reviewer decision on an entity at a review stage.

    States:
        approve: Advance to the next stage.
        reject: Veto; any reject makes the consensus reject.
        needs_revision: Return to the author for changes.
        pending: Review opened but not yet submitted.
    """

    approve = "approve"
    reject = "reject"
    needs_revision = "needs_revision"
    pending = "pending"


class Review(TimestampMixin, Base):
    """A single reviewer's assessment of an entity at one review stage.

    Attributes:
        entity_type: Kind of entity reviewed.
        entity_id: Reviewed entity.
        reviewer_id: Reviewing user.
        stage: Stage value the review was written for.
        stage_version: Review round; None for late submissions.
        decision: ReviewDecision.
        score: Overall score in [0, 10], optional.
        criteria_scores: Named sub-scores, each in [0, 10].
        comments: Free-form feedback.
        submitted_at: Completion time; None while in progress.
        counted: False for rows kept only as history.
    """

    __tablename__ = "reviews"

    entity_type: Mapped[EntityType] = mapped_column(nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reviewer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    stage: Mapped[str] = mapped_column(Text, nullable=False)
    stage_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    decision: Mapped[ReviewDecision] = mapped_column(
        default=ReviewDecision.pending,
        nullable=False,
    )
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    criteria_scores: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    counted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "entity_type",
            "entity_id",
            "stage_version",
            "reviewer_id",
            name="uq_reviews_round_reviewer",
        ),
        Index("ix_reviews_entity", "entity_type", "entity_id"),
        Index("ix_reviews_reviewer_id", "reviewer_id"),
    )
