"""Transition triggers.

A trigger names why an entity should leave its current stage. There are
three kinds:

- ``ReviewerDecision``: the consensus produced by the review aggregator.
- ``SystemClock``: a time-driven reason raised by the lifecycle scheduler.
- ``UserAction``: an explicit author or staff action (submit, publish,
  force close, ...).

Triggers are plain values; whether a trigger is legal for a stage is
decided by the stage registry.
"""

from __future__ import annotations

import enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from reviewflow.database.models.review import ReviewDecision


class ClockReason(str, enum.Enum):
    """Time-driven reasons for a transition."""

    deadline_passed_with_submissions = "deadline_passed_with_submissions"
    deadline_passed_without_submissions = "deadline_passed_without_submissions"
    reviews_complete = "reviews_complete"
    draft_expired = "draft_expired"


class UserActionType(str, enum.Enum):
    """Explicit actions by authors or staff."""

    submit = "submit"
    open_review = "open_review"
    withdraw = "withdraw"
    publish = "publish"
    complete = "complete"
    select_winner = "select_winner"
    force_close = "force_close"
    archive = "archive"


class ReviewerDecision(BaseModel):
    """Consensus reached at a review stage."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["reviewer_decision"] = "reviewer_decision"
    consensus: ReviewDecision

    def describe(self) -> str:
        return f"reviewer_decision:{self.consensus.value}"


class SystemClock(BaseModel):
    """Transition raised by lifecycle automation."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["system_clock"] = "system_clock"
    reason: ClockReason

    def describe(self) -> str:
        return f"system_clock:{self.reason.value}"


class UserAction(BaseModel):
    """Transition requested by an author or staff member."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["user_action"] = "user_action"
    action: UserActionType

    def describe(self) -> str:
        return f"user_action:{self.action.value}"


AnyTrigger = Union[ReviewerDecision, SystemClock, UserAction]

# Discriminated form for request bodies
Trigger = Annotated[AnyTrigger, Field(discriminator="kind")]
