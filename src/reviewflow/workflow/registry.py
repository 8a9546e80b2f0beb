"""Stage definition registry.

Static tables describing every legal stage transition:

- ``STAGE_DEFINITIONS``: review stages, keyed by (entity type, stage), with
  the reviewer role, the quorum and the next stage for each consensus.
- ``ACTION_TRANSITIONS``: author and staff actions per stage.
- ``CLOCK_TRANSITIONS``: lifecycle-automation reasons per stage.
- ``MILESTONES``: timestamp columns stamped when a stage is entered or left.

``VALID_TRANSITIONS`` is derived from the three transition tables and is the
authoritative stage graph for each entity type. None of these tables are
user-configurable.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import NamedTuple

from reviewflow.database.models.entity import (
    STAGE_ENUMS,
    ChallengeStatus,
    EntityType,
    IdeaStage,
    Stage,
    SubmissionStage,
    coerce_stage,
)
from reviewflow.database.models.review import ReviewDecision
from reviewflow.workflow.errors import InvalidTransitionError
from reviewflow.workflow.triggers import (
    AnyTrigger,
    ClockReason,
    ReviewerDecision,
    SystemClock,
    UserAction,
    UserActionType,
)


class Role(str, enum.Enum):
    """Roles a user may hold in the portal."""

    user = "user"
    manager = "manager"
    sme = "sme"
    board_member = "board_member"
    challenge_reviewer = "challenge_reviewer"
    admin = "admin"


@dataclass(frozen=True)
class StageDefinition:
    """Review rules for one (entity type, stage) pair.

    Attributes:
        entity_type: Entity type the stage belongs to.
        stage: The review stage.
        required_role: Role a reviewer needs at this stage.
        quorum: Distinct completed reviews needed before a consensus exists.
        on_approve: Next stage when consensus is approve.
        on_reject: Next stage when consensus is reject.
        on_needs_revision: Next stage when consensus is needs_revision.
        alternate_roles: Other roles also allowed to review this stage.
    """

    entity_type: EntityType
    stage: Stage
    required_role: Role
    quorum: int
    on_approve: Stage
    on_reject: Stage
    on_needs_revision: Stage
    alternate_roles: frozenset[Role] = field(default_factory=lambda: frozenset({Role.admin}))

    def __post_init__(self) -> None:
        if self.quorum < 1:
            raise ValueError(f"quorum must be >= 1, got {self.quorum}")

    def accepts(self, roles: frozenset[Role] | set[Role]) -> bool:
        """Return True if any of ``roles`` may review at this stage."""
        return self.required_role in roles or bool(self.alternate_roles & set(roles))

    def next_stage(self, consensus: ReviewDecision) -> Stage | None:
        """Stage reached for ``consensus``; None for ``pending``."""
        if consensus == ReviewDecision.approve:
            return self.on_approve
        if consensus == ReviewDecision.reject:
            return self.on_reject
        if consensus == ReviewDecision.needs_revision:
            return self.on_needs_revision
        return None


def _idea_review(stage: IdeaStage, role: Role, quorum: int, on_approve: IdeaStage) -> StageDefinition:
    return StageDefinition(
        entity_type=EntityType.idea,
        stage=stage,
        required_role=role,
        quorum=quorum,
        on_approve=on_approve,
        on_reject=IdeaStage.rejected,
        on_needs_revision=IdeaStage.submitted,
    )


def _submission_review(
    stage: SubmissionStage,
    role: Role,
    quorum: int,
    on_approve: SubmissionStage,
    alternate_roles: frozenset[Role] = frozenset({Role.admin}),
) -> StageDefinition:
    return StageDefinition(
        entity_type=EntityType.challenge_submission,
        stage=stage,
        required_role=role,
        quorum=quorum,
        on_approve=on_approve,
        on_reject=SubmissionStage.rejected,
        on_needs_revision=SubmissionStage.submitted,
        alternate_roles=alternate_roles,
    )


_DEFINITIONS: list[StageDefinition] = [
    _idea_review(IdeaStage.manager_review, Role.manager, 2, IdeaStage.sme_review),
    _idea_review(IdeaStage.sme_review, Role.sme, 2, IdeaStage.board_review),
    _idea_review(IdeaStage.board_review, Role.board_member, 3, IdeaStage.implementation),
    _submission_review(
        SubmissionStage.manager_review,
        Role.manager,
        1,
        SubmissionStage.sme_review,
        alternate_roles=frozenset({Role.admin, Role.challenge_reviewer}),
    ),
    _submission_review(SubmissionStage.sme_review, Role.sme, 2, SubmissionStage.approved),
]

STAGE_DEFINITIONS: dict[tuple[EntityType, Stage], StageDefinition] = {
    (definition.entity_type, definition.stage): definition for definition in _DEFINITIONS
}


ACTION_TRANSITIONS: dict[EntityType, dict[Stage, dict[UserActionType, Stage]]] = {
    EntityType.idea: {
        IdeaStage.draft: {
            UserActionType.submit: IdeaStage.submitted,
            UserActionType.withdraw: IdeaStage.archived,
        },
        IdeaStage.submitted: {
            UserActionType.open_review: IdeaStage.manager_review,
            UserActionType.withdraw: IdeaStage.archived,
        },
        IdeaStage.implementation: {
            UserActionType.complete: IdeaStage.completed,
            UserActionType.archive: IdeaStage.archived,
        },
        IdeaStage.completed: {UserActionType.archive: IdeaStage.archived},
        IdeaStage.rejected: {UserActionType.archive: IdeaStage.archived},
    },
    EntityType.challenge: {
        ChallengeStatus.draft: {
            UserActionType.publish: ChallengeStatus.active,
            UserActionType.force_close: ChallengeStatus.closed,
        },
        ChallengeStatus.active: {UserActionType.force_close: ChallengeStatus.closed},
        ChallengeStatus.review: {UserActionType.force_close: ChallengeStatus.closed},
        ChallengeStatus.judging: {
            UserActionType.complete: ChallengeStatus.completed,
            UserActionType.force_close: ChallengeStatus.closed,
        },
    },
    EntityType.challenge_submission: {
        SubmissionStage.draft: {
            UserActionType.submit: SubmissionStage.submitted,
            UserActionType.withdraw: SubmissionStage.withdrawn,
        },
        SubmissionStage.submitted: {
            UserActionType.open_review: SubmissionStage.manager_review,
            UserActionType.withdraw: SubmissionStage.withdrawn,
        },
        SubmissionStage.approved: {
            UserActionType.select_winner: SubmissionStage.winner,
            UserActionType.archive: SubmissionStage.archived,
        },
        SubmissionStage.rejected: {UserActionType.archive: SubmissionStage.archived},
        SubmissionStage.winner: {UserActionType.archive: SubmissionStage.archived},
    },
}


CLOCK_TRANSITIONS: dict[EntityType, dict[Stage, dict[ClockReason, Stage]]] = {
    EntityType.idea: {},
    EntityType.challenge: {
        ChallengeStatus.draft: {ClockReason.draft_expired: ChallengeStatus.cancelled},
        ChallengeStatus.active: {
            ClockReason.deadline_passed_with_submissions: ChallengeStatus.review,
            ClockReason.deadline_passed_without_submissions: ChallengeStatus.cancelled,
        },
        ChallengeStatus.review: {ClockReason.reviews_complete: ChallengeStatus.judging},
    },
    EntityType.challenge_submission: {},
}


class MilestoneFields(NamedTuple):
    """Timestamp columns stamped on entering and on leaving a stage."""

    entered: str | None
    exited: str | None = None


MILESTONES: dict[EntityType, dict[Stage, MilestoneFields]] = {
    EntityType.idea: {
        IdeaStage.submitted: MilestoneFields("submitted_at"),
        IdeaStage.manager_review: MilestoneFields(
            "manager_review_started_at", "manager_review_completed_at"
        ),
        IdeaStage.sme_review: MilestoneFields("sme_review_started_at", "sme_review_completed_at"),
        IdeaStage.board_review: MilestoneFields(
            "board_review_started_at", "board_review_completed_at"
        ),
        IdeaStage.implementation: MilestoneFields("implementation_started_at"),
        IdeaStage.completed: MilestoneFields("completed_at"),
    },
    EntityType.challenge: {
        ChallengeStatus.active: MilestoneFields("published_at"),
        ChallengeStatus.review: MilestoneFields("review_started_at"),
        ChallengeStatus.judging: MilestoneFields("judging_started_at"),
        ChallengeStatus.completed: MilestoneFields("completed_at"),
        ChallengeStatus.cancelled: MilestoneFields("closed_at"),
        ChallengeStatus.closed: MilestoneFields("closed_at"),
    },
    EntityType.challenge_submission: {
        SubmissionStage.submitted: MilestoneFields("submitted_at"),
        SubmissionStage.manager_review: MilestoneFields("review_started_at"),
        SubmissionStage.approved: MilestoneFields("reviewed_at"),
        SubmissionStage.rejected: MilestoneFields("reviewed_at"),
        SubmissionStage.winner: MilestoneFields("winner_selected_at"),
    },
}


def get_stage_definition(entity_type: EntityType, stage: Stage | str) -> StageDefinition | None:
    """Return the review rules for a stage, or None if it is not a review stage."""
    return STAGE_DEFINITIONS.get((entity_type, coerce_stage(entity_type, stage)))


def is_review_stage(entity_type: EntityType, stage: Stage | str) -> bool:
    """Return True if ``stage`` has review rules for ``entity_type``."""
    return get_stage_definition(entity_type, stage) is not None


def review_stages(entity_type: EntityType) -> list[Stage]:
    """Review stages of ``entity_type`` in pipeline order."""
    return [d.stage for d in _DEFINITIONS if d.entity_type == entity_type]


def stages_reviewable_by(
    entity_type: EntityType, roles: frozenset[Role] | set[Role]
) -> list[Stage]:
    """Review stages of ``entity_type`` that ``roles`` may review."""
    return [
        d.stage for d in _DEFINITIONS if d.entity_type == entity_type and d.accepts(roles)
    ]


def resolve_transition(
    entity_type: EntityType,
    current: Stage | str,
    trigger: AnyTrigger,
    entity_id: object | None = None,
) -> Stage:
    """Compute the stage ``trigger`` leads to from ``current``.

    Args:
        entity_type: Entity type.
        current: Current stage.
        trigger: ReviewerDecision, SystemClock or UserAction.
        entity_id: Used only in the error message.

    Returns:
        The target stage.

    Raises:
        InvalidTransitionError: If the trigger is not legal for ``current``.
    """
    stage = coerce_stage(entity_type, current)
    target: Stage | None = None

    if isinstance(trigger, ReviewerDecision):
        definition = STAGE_DEFINITIONS.get((entity_type, stage))
        if definition is not None:
            target = definition.next_stage(trigger.consensus)
    elif isinstance(trigger, SystemClock):
        target = CLOCK_TRANSITIONS[entity_type].get(stage, {}).get(trigger.reason)
    elif isinstance(trigger, UserAction):
        target = ACTION_TRANSITIONS[entity_type].get(stage, {}).get(trigger.action)

    if target is None:
        raise InvalidTransitionError(
            entity_type.value,
            stage.value,
            trigger.describe(),
            str(entity_id) if entity_id is not None else None,
        )
    return target


def available_triggers(entity_type: EntityType, current: Stage | str) -> list[AnyTrigger]:
    """List every trigger that is legal from ``current``."""
    stage = coerce_stage(entity_type, current)
    triggers: list[AnyTrigger] = []
    if (entity_type, stage) in STAGE_DEFINITIONS:
        for decision in (
            ReviewDecision.approve,
            ReviewDecision.reject,
            ReviewDecision.needs_revision,
        ):
            triggers.append(ReviewerDecision(consensus=decision))
    for reason in CLOCK_TRANSITIONS[entity_type].get(stage, {}):
        triggers.append(SystemClock(reason=reason))
    for action in ACTION_TRANSITIONS[entity_type].get(stage, {}):
        triggers.append(UserAction(action=action))
    return triggers


def _build_valid_transitions() -> dict[EntityType, dict[Stage, set[Stage]]]:
    graph: dict[EntityType, dict[Stage, set[Stage]]] = {}
    for entity_type, stage_enum in STAGE_ENUMS.items():
        edges: dict[Stage, set[Stage]] = {stage: set() for stage in stage_enum}  # type: ignore[misc]
        for (def_type, stage), definition in STAGE_DEFINITIONS.items():
            if def_type == entity_type:
                edges[stage] |= {
                    definition.on_approve,
                    definition.on_reject,
                    definition.on_needs_revision,
                }
        for table in (ACTION_TRANSITIONS[entity_type], CLOCK_TRANSITIONS[entity_type]):
            for stage, targets in table.items():
                edges[stage] |= set(targets.values())
        graph[entity_type] = edges
    return graph


# Authoritative stage graph per entity type
VALID_TRANSITIONS: dict[EntityType, dict[Stage, set[Stage]]] = _build_valid_transitions()


def validate_transition(entity_type: EntityType, current: Stage | str, target: Stage | str) -> bool:
    """Return True if some trigger moves ``current`` to ``target``."""
    edges = VALID_TRANSITIONS[entity_type]
    return coerce_stage(entity_type, target) in edges.get(coerce_stage(entity_type, current), set())


def is_terminal(entity_type: EntityType, stage: Stage | str) -> bool:
    """Return True if no trigger leads out of ``stage``."""
    return not VALID_TRANSITIONS[entity_type].get(coerce_stage(entity_type, stage))


def milestone_updates(
    entity_type: EntityType,
    from_stage: Stage,
    to_stage: Stage,
    at: datetime,
) -> dict[str, datetime]:
    """Timestamp columns to set when moving from ``from_stage`` to ``to_stage``."""
    updates: dict[str, datetime] = {}
    milestones = MILESTONES[entity_type]
    left = milestones.get(from_stage)
    if left is not None and left.exited:
        updates[left.exited] = at
    entered = milestones.get(to_stage)
    if entered is not None and entered.entered:
        updates[entered.entered] = at
    return updates
