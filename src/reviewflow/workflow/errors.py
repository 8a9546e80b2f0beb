"""Workflow exception hierarchy.

Errors fall into three groups that callers handle differently:

- ``WorkflowValidationError``: caller mistakes (bad score, illegal trigger,
  ineligible reviewer). Nothing was written.
- ``WorkflowConflictError``: expected under concurrency. The caller decides
  whether to re-read state and try again; nothing retries automatically.
- ``EntityNotFoundError``: the referenced entity does not exist.
"""

from __future__ import annotations

import math
from typing import Any
from uuid import UUID


class WorkflowError(Exception):
    """Base class for all workflow errors."""


class WorkflowValidationError(WorkflowError):
    """Raised for requests that can never succeed as submitted."""


class InvalidScoreError(WorkflowValidationError):
    """Raised when a score or criteria sub-score falls outside [0, 10].

    Attributes:
        value: The offending value.
        field: ``"score"`` or ``"criteria_scores.<name>"``.
    """

    def __init__(self, value: Any, field: str = "score"):
        self.value = value
        self.field = field
        shown = "NaN" if isinstance(value, float) and math.isnan(value) else value
        super().__init__(f"Invalid {field}: {shown} (must be between 0 and 10)")


class InvalidDecisionError(WorkflowValidationError):
    """Raised when a review is submitted without a final decision."""

    def __init__(self, decision: Any):
        self.decision = decision
        super().__init__(f"Invalid review decision for submission: {decision}")


class InvalidTransitionError(WorkflowValidationError):
    """Raised when a trigger is not legal for the entity's current stage.

    Attributes:
        entity_type: Entity type value.
        current: The current stage.
        trigger: Description of the rejected trigger.
        entity_id: The entity, when known.
    """

    def __init__(
        self,
        entity_type: str,
        current: str,
        trigger: str,
        entity_id: UUID | str | None = None,
    ):
        self.entity_type = entity_type
        self.current = current
        self.trigger = trigger
        self.entity_id = entity_id
        msg = f"Invalid transition for {entity_type} in stage {current}: {trigger}"
        if entity_id:
            msg += f" (entity {entity_id})"
        super().__init__(msg)


class ReviewerIneligibleError(WorkflowValidationError):
    """Raised when a reviewer may not review an entity at its current stage.

    Attributes:
        reviewer_id: The rejected reviewer.
        entity_id: The entity under review.
        reason: Machine-readable eligibility outcome.
    """

    def __init__(self, reviewer_id: UUID, entity_id: UUID, reason: str, message: str):
        self.reviewer_id = reviewer_id
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(message)


class ConflictOfInterestError(ReviewerIneligibleError):
    """Reviewer is the author or a member of the entity's team."""

    def __init__(self, reviewer_id: UUID, entity_id: UUID, reason: str):
        super().__init__(
            reviewer_id,
            entity_id,
            reason,
            f"Reviewer {reviewer_id} has a conflict of interest with {entity_id} ({reason})",
        )


class RoleMismatchError(ReviewerIneligibleError):
    """Reviewer does not hold the role required at the current stage."""

    def __init__(self, reviewer_id: UUID, entity_id: UUID, required_role: str):
        self.required_role = required_role
        super().__init__(
            reviewer_id,
            entity_id,
            "role_mismatch",
            f"Reviewer {reviewer_id} lacks required role {required_role} for {entity_id}",
        )


class StageNotReviewableError(ReviewerIneligibleError):
    """The entity's current stage does not accept reviews."""

    def __init__(self, reviewer_id: UUID, entity_id: UUID, stage: str):
        self.stage = stage
        super().__init__(
            reviewer_id,
            entity_id,
            "not_reviewable_stage",
            f"Entity {entity_id} is in stage {stage}, which does not accept reviews",
        )


class WorkflowConflictError(WorkflowError):
    """Raised when state moved underneath the caller."""


class ConcurrentTransitionError(WorkflowConflictError):
    """Raised when the compare-and-swap on an entity's stage fails.

    Attributes:
        entity_id: The entity.
        expected_stage: Stage the caller based its decision on.
        expected_version: Stage version the caller based its decision on.
        actual_stage: Stage observed instead, when known.
    """

    def __init__(
        self,
        entity_id: UUID,
        expected_stage: str,
        expected_version: int | None = None,
        actual_stage: str | None = None,
    ):
        self.entity_id = entity_id
        self.expected_stage = expected_stage
        self.expected_version = expected_version
        self.actual_stage = actual_stage
        msg = f"Concurrent transition on {entity_id}: expected stage {expected_stage}"
        if expected_version is not None:
            msg += f" (version {expected_version})"
        if actual_stage is not None:
            msg += f", found {actual_stage}"
        super().__init__(msg)


class StageAlreadyAdvancedError(WorkflowConflictError):
    """Raised for a review whose stage the entity has already left.

    The review is stored as history but does not count towards quorum.

    Attributes:
        entity_id: The entity.
        review_stage: Stage named in the review.
        current_stage: Stage the entity is in now.
        review_id: Identifier of the stored history row.
    """

    def __init__(
        self,
        entity_id: UUID,
        review_stage: str,
        current_stage: str,
        review_id: UUID | None = None,
    ):
        self.entity_id = entity_id
        self.review_stage = review_stage
        self.current_stage = current_stage
        self.review_id = review_id
        super().__init__(
            f"Entity {entity_id} already left stage {review_stage} (now {current_stage})"
        )


class EntityNotFoundError(WorkflowError):
    """Raised when an entity does not exist."""

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")
