"""Conflict-of-interest guard.

Decides whether a reviewer may review an entity at its current stage.
The checks are pure: they look only at the reviewer profile and entity
snapshot passed in, so callers must evaluate them at submission time with
the reviewer's current roles.

A reviewer is excluded when they:
- wrote the entity,
- are a pending or accepted collaborator on it,
- created the challenge a submission belongs to,
- or lack the role the current stage requires.
"""

from __future__ import annotations

import enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from reviewflow.workflow.errors import (
    ConflictOfInterestError,
    RoleMismatchError,
    StageNotReviewableError,
)
from reviewflow.workflow.ports import EntitySnapshot
from reviewflow.workflow.registry import Role, get_stage_definition


class ReviewerProfile(BaseModel):
    """A reviewer and the roles they hold right now."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    roles: frozenset[Role] = frozenset()


class Eligibility(str, enum.Enum):
    """Outcome of an eligibility check."""

    eligible = "eligible"
    author_conflict = "author_conflict"
    team_conflict = "team_conflict"
    challenge_owner_conflict = "challenge_owner_conflict"
    not_reviewable_stage = "not_reviewable_stage"
    role_mismatch = "role_mismatch"


def check_eligibility(reviewer: ReviewerProfile, entity: EntitySnapshot) -> Eligibility:
    """Return the first reason ``reviewer`` may not review ``entity``."""
    if reviewer.id == entity.author_id:
        return Eligibility.author_conflict
    if reviewer.id in entity.team_ids:
        return Eligibility.team_conflict
    if entity.challenge_creator_id is not None and reviewer.id == entity.challenge_creator_id:
        return Eligibility.challenge_owner_conflict

    definition = get_stage_definition(entity.entity_type, entity.current_stage)
    if definition is None:
        return Eligibility.not_reviewable_stage
    if not definition.accepts(reviewer.roles):
        return Eligibility.role_mismatch
    return Eligibility.eligible


def can_review(reviewer: ReviewerProfile, entity: EntitySnapshot) -> bool:
    """Return True if ``reviewer`` may review ``entity`` at its current stage."""
    return check_eligibility(reviewer, entity) is Eligibility.eligible


def ensure_can_review(reviewer: ReviewerProfile, entity: EntitySnapshot) -> None:
    """Raise the matching ReviewerIneligibleError unless eligible."""
    outcome = check_eligibility(reviewer, entity)
    if outcome is Eligibility.eligible:
        return
    if outcome is Eligibility.not_reviewable_stage:
        raise StageNotReviewableError(reviewer.id, entity.id, entity.current_stage.value)
    if outcome is Eligibility.role_mismatch:
        definition = get_stage_definition(entity.entity_type, entity.current_stage)
        required = definition.required_role.value if definition else "unknown"
        raise RoleMismatchError(reviewer.id, entity.id, required)
    # author, team or challenge-owner conflict
    raise ConflictOfInterestError(reviewer.id, entity.id, outcome.value)
