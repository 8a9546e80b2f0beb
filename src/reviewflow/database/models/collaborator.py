"""Collaborator model for Reviewflow.

Tracks team membership on ideas and challenge submissions. Pending and
accepted collaborators count as the entity's team for conflict-of-interest
checks; declined and removed ones do not.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from reviewflow.database.models.base import Base, TimestampMixin, utcnow
from reviewflow.database.models.entity import EntityType


class CollaboratorStatus(str, enum.Enum):
    """Invitation state of a collaborator."""

    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    removed = "removed"


# Collaborators in these states are excluded from reviewing the entity
TEAM_STATUSES: frozenset[CollaboratorStatus] = frozenset(
    {CollaboratorStatus.pending, CollaboratorStatus.accepted}
)


class Collaborator(TimestampMixin, Base):
    """Membership of a user in an entity's team.

    Attributes:
        entity_type: Kind of entity.
        entity_id: Entity the user collaborates on.
        user_id: Collaborating user.
        status: CollaboratorStatus.
        invited_at: When the invitation was issued.
        responded_at: When the user accepted or declined.
    """

    __tablename__ = "collaborators"

    entity_type: Mapped[EntityType] = mapped_column(nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    status: Mapped[CollaboratorStatus] = mapped_column(
        default=CollaboratorStatus.pending,
        nullable=False,
    )
    invited_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "user_id", name="uq_collaborators_member"
        ),
        Index("ix_collaborators_entity", "entity_type", "entity_id"),
    )
