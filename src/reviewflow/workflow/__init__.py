"""Review and stage workflow for ideas, challenges and challenge submissions.

Modules:
    registry: Stage definitions and transition tables.
    guard: Conflict-of-interest and role checks.
    aggregator: Review storage, quorum and consensus.
    engine: Compare-and-swap stage transitions with side effects.
    service: Reviewer-facing facade combining the above.
"""

from reviewflow.workflow.aggregator import AggregationResult, ReviewAggregator
from reviewflow.workflow.engine import TransitionResult, WorkflowEngine
from reviewflow.workflow.errors import (
    ConcurrentTransitionError,
    ConflictOfInterestError,
    EntityNotFoundError,
    InvalidDecisionError,
    InvalidScoreError,
    InvalidTransitionError,
    ReviewerIneligibleError,
    RoleMismatchError,
    StageAlreadyAdvancedError,
    StageNotReviewableError,
    WorkflowConflictError,
    WorkflowError,
    WorkflowValidationError,
)
from reviewflow.workflow.guard import ReviewerProfile, can_review
from reviewflow.workflow.ports import EntityRef, EntitySnapshot, ReviewSubmission
from reviewflow.workflow.registry import Role, StageDefinition, get_stage_definition
from reviewflow.workflow.service import ReviewOutcome, ReviewWorkflow
from reviewflow.workflow.triggers import (
    ClockReason,
    ReviewerDecision,
    SystemClock,
    UserAction,
    UserActionType,
)

__all__ = [
    "AggregationResult",
    "ClockReason",
    "ConcurrentTransitionError",
    "ConflictOfInterestError",
    "EntityNotFoundError",
    "EntityRef",
    "EntitySnapshot",
    "InvalidDecisionError",
    "InvalidScoreError",
    "InvalidTransitionError",
    "ReviewAggregator",
    "ReviewOutcome",
    "ReviewSubmission",
    "ReviewWorkflow",
    "ReviewerDecision",
    "ReviewerIneligibleError",
    "ReviewerProfile",
    "Role",
    "RoleMismatchError",
    "StageAlreadyAdvancedError",
    "StageDefinition",
    "StageNotReviewableError",
    "SystemClock",
    "TransitionResult",
    "UserAction",
    "UserActionType",
    "WorkflowConflictError",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowValidationError",
    "can_review",
]
