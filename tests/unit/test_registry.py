"""Unit tests for the stage definition registry."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from reviewflow.database.models.entity import (
    STAGE_ENUMS,
    ChallengeStatus,
    EntityType,
    IdeaStage,
    SubmissionStage,
)
from reviewflow.database.models.review import ReviewDecision
from reviewflow.workflow.errors import InvalidTransitionError
from reviewflow.workflow.registry import (
    STAGE_DEFINITIONS,
    VALID_TRANSITIONS,
    Role,
    StageDefinition,
    available_triggers,
    get_stage_definition,
    is_review_stage,
    is_terminal,
    milestone_updates,
    resolve_transition,
    review_stages,
    stages_reviewable_by,
    validate_transition,
)
from reviewflow.workflow.triggers import (
    ClockReason,
    ReviewerDecision,
    SystemClock,
    UserAction,
    UserActionType,
)


class TestStageDefinitions:
    """Test the review stage table."""

    @pytest.mark.parametrize(
        ("entity_type", "stage", "role", "quorum"),
        [
            (EntityType.idea, IdeaStage.manager_review, Role.manager, 2),
            (EntityType.idea, IdeaStage.sme_review, Role.sme, 2),
            (EntityType.idea, IdeaStage.board_review, Role.board_member, 3),
            (EntityType.challenge_submission, SubmissionStage.manager_review, Role.manager, 1),
            (EntityType.challenge_submission, SubmissionStage.sme_review, Role.sme, 2),
        ],
    )
    def test_review_stage_rules(self, entity_type, stage, role, quorum) -> None:
        """Test required role and quorum of each review stage."""
        definition = get_stage_definition(entity_type, stage)
        assert definition is not None
        assert definition.required_role == role
        assert definition.quorum == quorum

    def test_challenges_have_no_review_stages(self) -> None:
        """Test that challenges are never reviewed directly."""
        assert review_stages(EntityType.challenge) == []
        for status in ChallengeStatus:
            assert not is_review_stage(EntityType.challenge, status)

    def test_review_stages_in_pipeline_order(self) -> None:
        """Test that idea review stages are listed in pipeline order."""
        assert review_stages(EntityType.idea) == [
            IdeaStage.manager_review,
            IdeaStage.sme_review,
            IdeaStage.board_review,
        ]

    def test_lookup_accepts_raw_stage_value(self) -> None:
        """Test that stage lookup accepts the raw string value."""
        assert get_stage_definition(EntityType.idea, "sme_review") is STAGE_DEFINITIONS[
            (EntityType.idea, IdeaStage.sme_review)
        ]

    def test_non_review_stage_has_no_definition(self) -> None:
        assert get_stage_definition(EntityType.idea, IdeaStage.draft) is None

    def test_zero_quorum_rejected(self) -> None:
        """Test that a definition cannot require zero reviews."""
        with pytest.raises(ValueError, match="quorum"):
            StageDefinition(
                entity_type=EntityType.idea,
                stage=IdeaStage.manager_review,
                required_role=Role.manager,
                quorum=0,
                on_approve=IdeaStage.sme_review,
                on_reject=IdeaStage.rejected,
                on_needs_revision=IdeaStage.submitted,
            )

    def test_admin_accepted_at_every_review_stage(self) -> None:
        for definition in STAGE_DEFINITIONS.values():
            assert definition.accepts({Role.admin})

    def test_challenge_reviewer_only_for_submission_manager_review(self) -> None:
        """Test that challenge reviewers may stand in for managers on submissions only."""
        submission = get_stage_definition(
            EntityType.challenge_submission, SubmissionStage.manager_review
        )
        idea = get_stage_definition(EntityType.idea, IdeaStage.manager_review)
        assert submission.accepts({Role.challenge_reviewer})
        assert not idea.accepts({Role.challenge_reviewer})

    def test_plain_user_never_accepted(self) -> None:
        for definition in STAGE_DEFINITIONS.values():
            assert not definition.accepts({Role.user})

    def test_stages_reviewable_by_roles(self) -> None:
        assert stages_reviewable_by(EntityType.idea, {Role.sme}) == [IdeaStage.sme_review]
        assert stages_reviewable_by(
            EntityType.challenge_submission, {Role.challenge_reviewer}
        ) == [SubmissionStage.manager_review]
        assert stages_reviewable_by(EntityType.idea, {Role.admin}) == review_stages(EntityType.idea)
        assert stages_reviewable_by(EntityType.challenge, {Role.admin}) == []


class TestResolveTransition:
    """Test trigger resolution."""

    @pytest.mark.parametrize(
        ("consensus", "expected"),
        [
            (ReviewDecision.approve, IdeaStage.sme_review),
            (ReviewDecision.reject, IdeaStage.rejected),
            (ReviewDecision.needs_revision, IdeaStage.submitted),
        ],
    )
    def test_reviewer_decision_from_manager_review(self, consensus, expected) -> None:
        """Test each consensus from idea manager review."""
        target = resolve_transition(
            EntityType.idea,
            IdeaStage.manager_review,
            ReviewerDecision(consensus=consensus),
        )
        assert target == expected

    def test_board_approval_starts_implementation(self) -> None:
        target = resolve_transition(
            EntityType.idea,
            IdeaStage.board_review,
            ReviewerDecision(consensus=ReviewDecision.approve),
        )
        assert target == IdeaStage.implementation

    def test_submission_sme_approval(self) -> None:
        target = resolve_transition(
            EntityType.challenge_submission,
            SubmissionStage.sme_review,
            ReviewerDecision(consensus=ReviewDecision.approve),
        )
        assert target == SubmissionStage.approved

    @pytest.mark.parametrize(
        ("reason", "expected"),
        [
            (ClockReason.deadline_passed_with_submissions, ChallengeStatus.review),
            (ClockReason.deadline_passed_without_submissions, ChallengeStatus.cancelled),
        ],
    )
    def test_deadline_reasons_from_active(self, reason, expected) -> None:
        target = resolve_transition(
            EntityType.challenge, ChallengeStatus.active, SystemClock(reason=reason)
        )
        assert target == expected

    def test_reviews_complete_moves_to_judging(self) -> None:
        target = resolve_transition(
            EntityType.challenge,
            ChallengeStatus.review,
            SystemClock(reason=ClockReason.reviews_complete),
        )
        assert target == ChallengeStatus.judging

    def test_user_action(self) -> None:
        target = resolve_transition(
            EntityType.idea,
            "draft",
            UserAction(action=UserActionType.submit),
        )
        assert target == IdeaStage.submitted

    def test_pending_consensus_is_not_a_transition(self) -> None:
        """Test that a pending consensus never moves an entity."""
        with pytest.raises(InvalidTransitionError):
            resolve_transition(
                EntityType.idea,
                IdeaStage.manager_review,
                ReviewerDecision(consensus=ReviewDecision.pending),
            )

    def test_reviewer_decision_outside_review_stage(self) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            resolve_transition(
                EntityType.idea,
                IdeaStage.draft,
                ReviewerDecision(consensus=ReviewDecision.approve),
            )
        assert exc_info.value.current == "draft"
        assert exc_info.value.trigger == "reviewer_decision:approve"

    def test_action_not_defined_for_entity_type(self) -> None:
        """Test that challenge-only actions are rejected for ideas."""
        with pytest.raises(InvalidTransitionError, match="user_action:publish"):
            resolve_transition(
                EntityType.idea,
                IdeaStage.draft,
                UserAction(action=UserActionType.publish),
                entity_id="idea-1",
            )

    def test_clock_reason_from_wrong_stage(self) -> None:
        with pytest.raises(InvalidTransitionError):
            resolve_transition(
                EntityType.challenge,
                ChallengeStatus.judging,
                SystemClock(reason=ClockReason.draft_expired),
            )

    def test_terminal_stage_rejects_everything(self) -> None:
        with pytest.raises(InvalidTransitionError):
            resolve_transition(
                EntityType.challenge,
                ChallengeStatus.cancelled,
                UserAction(action=UserActionType.force_close),
            )

    def test_unknown_stage_value(self) -> None:
        with pytest.raises(ValueError):
            resolve_transition(
                EntityType.idea, "pondering", UserAction(action=UserActionType.submit)
            )


class TestAvailableTriggers:
    """Test trigger enumeration."""

    def test_review_stage_offers_reviewer_decisions(self) -> None:
        triggers = available_triggers(EntityType.idea, IdeaStage.manager_review)
        described = {t.describe() for t in triggers}
        assert described == {
            "reviewer_decision:approve",
            "reviewer_decision:reject",
            "reviewer_decision:needs_revision",
        }

    def test_active_challenge_triggers(self) -> None:
        described = {
            t.describe() for t in available_triggers(EntityType.challenge, ChallengeStatus.active)
        }
        assert described == {
            "system_clock:deadline_passed_with_submissions",
            "system_clock:deadline_passed_without_submissions",
            "user_action:force_close",
        }

    def test_terminal_stage_has_no_triggers(self) -> None:
        assert available_triggers(EntityType.idea, IdeaStage.archived) == []

    def test_every_trigger_resolves(self) -> None:
        """Test that every listed trigger is accepted by resolve_transition."""
        for entity_type, stage_enum in STAGE_ENUMS.items():
            for stage in stage_enum:
                for trigger in available_triggers(entity_type, stage):
                    target = resolve_transition(entity_type, stage, trigger)
                    assert validate_transition(entity_type, stage, target)


class TestValidTransitions:
    """Test the derived stage graph."""

    def test_graph_covers_every_stage(self) -> None:
        for entity_type, stage_enum in STAGE_ENUMS.items():
            assert set(VALID_TRANSITIONS[entity_type]) == set(stage_enum)

    def test_valid_edge(self) -> None:
        assert validate_transition(EntityType.idea, IdeaStage.draft, IdeaStage.submitted)

    def test_invalid_edge(self) -> None:
        """Test that review stages cannot be skipped."""
        assert not validate_transition(
            EntityType.idea, IdeaStage.draft, IdeaStage.implementation
        )
        assert not validate_transition(
            EntityType.challenge, ChallengeStatus.active, ChallengeStatus.judging
        )

    @pytest.mark.parametrize(
        ("entity_type", "stage"),
        [
            (EntityType.idea, IdeaStage.archived),
            (EntityType.challenge, ChallengeStatus.completed),
            (EntityType.challenge, ChallengeStatus.cancelled),
            (EntityType.challenge, ChallengeStatus.closed),
            (EntityType.challenge_submission, SubmissionStage.withdrawn),
            (EntityType.challenge_submission, SubmissionStage.archived),
        ],
    )
    def test_terminal_stages(self, entity_type, stage) -> None:
        assert is_terminal(entity_type, stage)

    def test_review_stage_is_not_terminal(self) -> None:
        assert not is_terminal(EntityType.idea, IdeaStage.board_review)


class TestMilestones:
    """Test milestone timestamp selection."""

    def test_leaving_and_entering_review_stages(self) -> None:
        at = datetime(2026, 5, 1, tzinfo=timezone.utc)
        updates = milestone_updates(
            EntityType.idea, IdeaStage.manager_review, IdeaStage.sme_review, at
        )
        assert updates == {
            "manager_review_completed_at": at,
            "sme_review_started_at": at,
        }

    def test_cancelled_challenge_stamps_closed_at(self) -> None:
        at = datetime(2026, 5, 1, tzinfo=timezone.utc)
        updates = milestone_updates(
            EntityType.challenge, ChallengeStatus.draft, ChallengeStatus.cancelled, at
        )
        assert updates == {"closed_at": at}

    def test_no_milestone(self) -> None:
        at = datetime(2026, 5, 1, tzinfo=timezone.utc)
        assert (
            milestone_updates(EntityType.idea, IdeaStage.completed, IdeaStage.archived, at)
            == {}
        )
