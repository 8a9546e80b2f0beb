"""Database layer for Reviewflow.

This module handles database connections, session management, and the
SQLAlchemy models and stores backing the review workflow.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    Base: SQLAlchemy declarative base for all models.
"""

from reviewflow.database.connection import get_engine, get_session_factory
from reviewflow.database.models import (
    Base,
    Challenge,
    ChallengeStatus,
    ChallengeSubmission,
    Collaborator,
    CollaboratorStatus,
    EntityType,
    Idea,
    IdeaStage,
    Review,
    ReviewDecision,
    SubmissionStage,
    TimestampMixin,
)

__all__ = [
    "get_engine",
    "get_session_factory",
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
