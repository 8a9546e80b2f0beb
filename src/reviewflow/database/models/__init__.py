"""SQLAlchemy ORM models for Reviewflow.

This module defines the database schema: ideas, challenges, challenge
submissions, reviews and collaborators.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from reviewflow.database.models.base import Base, TimestampMixin
from reviewflow.database.models.collaborator import Collaborator, CollaboratorStatus
from reviewflow.database.models.entity import (
    Challenge,
    ChallengeStatus,
    ChallengeSubmission,
    EntityType,
    Idea,
    IdeaStage,
    SubmissionStage,
)
from reviewflow.database.models.review import Review, ReviewDecision

__all__ = [
    "Base",
    "TimestampMixin",
    "EntityType",
    "Idea",
    "IdeaStage",
    "Challenge",
    "ChallengeStatus",
    "ChallengeSubmission",
    "SubmissionStage",
    "Review",
    "ReviewDecision",
    "Collaborator",
    "CollaboratorStatus",
]
