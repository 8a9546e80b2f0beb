"""Unit tests for the conflict-of-interest guard."""

from __future__ import annotations

from uuid import uuid4

import pytest

from reviewflow.database.models.entity import (
    ChallengeStatus,
    EntityType,
    IdeaStage,
    SubmissionStage,
)
from reviewflow.workflow.errors import (
    ConflictOfInterestError,
    ReviewerIneligibleError,
    RoleMismatchError,
    StageNotReviewableError,
)
from reviewflow.workflow.guard import (
    Eligibility,
    ReviewerProfile,
    can_review,
    check_eligibility,
    ensure_can_review,
)
from reviewflow.workflow.ports import EntityRef, EntitySnapshot
from reviewflow.workflow.registry import Role

ALL_ROLES = frozenset(Role)


def make_snapshot(entity_type=EntityType.idea, stage=IdeaStage.manager_review, **kwargs):
    return EntitySnapshot(
        ref=EntityRef(entity_type=entity_type, entity_id=uuid4()),
        current_stage=stage,
        author_id=kwargs.pop("author_id", uuid4()),
        **kwargs,
    )


class TestCheckEligibility:
    """Test eligibility outcomes."""

    def test_manager_eligible_for_manager_review(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=frozenset({Role.manager}))
        assert check_eligibility(reviewer, make_snapshot()) == Eligibility.eligible

    def test_author_excluded(self) -> None:
        author = uuid4()
        reviewer = ReviewerProfile(id=author, roles=ALL_ROLES)
        snapshot = make_snapshot(author_id=author)
        assert check_eligibility(reviewer, snapshot) == Eligibility.author_conflict

    def test_team_member_excluded(self) -> None:
        member = uuid4()
        reviewer = ReviewerProfile(id=member, roles=ALL_ROLES)
        snapshot = make_snapshot(team_ids=frozenset({member, uuid4()}))
        assert check_eligibility(reviewer, snapshot) == Eligibility.team_conflict

    def test_challenge_owner_excluded_from_submissions(self) -> None:
        """Test that a challenge's creator cannot review its submissions."""
        owner = uuid4()
        reviewer = ReviewerProfile(id=owner, roles=ALL_ROLES)
        snapshot = make_snapshot(
            EntityType.challenge_submission,
            SubmissionStage.manager_review,
            challenge_id=uuid4(),
            challenge_creator_id=owner,
        )
        assert check_eligibility(reviewer, snapshot) == Eligibility.challenge_owner_conflict

    def test_role_mismatch(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=frozenset({Role.sme}))
        assert check_eligibility(reviewer, make_snapshot()) == Eligibility.role_mismatch

    def test_no_roles(self) -> None:
        reviewer = ReviewerProfile(id=uuid4())
        assert check_eligibility(reviewer, make_snapshot()) == Eligibility.role_mismatch

    def test_admin_eligible_everywhere(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=frozenset({Role.admin}))
        for stage in (IdeaStage.manager_review, IdeaStage.sme_review, IdeaStage.board_review):
            assert can_review(reviewer, make_snapshot(stage=stage))

    def test_challenge_reviewer_on_submission_manager_review(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=frozenset({Role.challenge_reviewer}))
        snapshot = make_snapshot(
            EntityType.challenge_submission,
            SubmissionStage.manager_review,
            challenge_creator_id=uuid4(),
        )
        assert can_review(reviewer, snapshot)

    def test_non_review_stage(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=ALL_ROLES)
        snapshot = make_snapshot(stage=IdeaStage.draft)
        assert check_eligibility(reviewer, snapshot) == Eligibility.not_reviewable_stage

    def test_challenges_are_not_reviewable(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=ALL_ROLES)
        snapshot = make_snapshot(EntityType.challenge, ChallengeStatus.review)
        assert not can_review(reviewer, snapshot)

    def test_conflict_checked_before_stage(self) -> None:
        """Test that the author is reported as a conflict even outside review stages."""
        author = uuid4()
        reviewer = ReviewerProfile(id=author, roles=ALL_ROLES)
        snapshot = make_snapshot(stage=IdeaStage.draft, author_id=author)
        assert check_eligibility(reviewer, snapshot) == Eligibility.author_conflict

    def test_team_never_eligible_whatever_the_roles(self) -> None:
        """Test that no author or team member can review at any review stage."""
        author = uuid4()
        team = frozenset({uuid4(), uuid4()})
        for stage in (IdeaStage.manager_review, IdeaStage.sme_review, IdeaStage.board_review):
            snapshot = make_snapshot(stage=stage, author_id=author, team_ids=team)
            for user in {author, *team}:
                reviewer = ReviewerProfile(id=user, roles=ALL_ROLES)
                assert not can_review(reviewer, snapshot)


class TestEnsureCanReview:
    """Test the raising form of the guard."""

    def test_eligible_returns_none(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=frozenset({Role.manager}))
        assert ensure_can_review(reviewer, make_snapshot()) is None

    def test_author_raises_conflict(self) -> None:
        author = uuid4()
        reviewer = ReviewerProfile(id=author, roles=ALL_ROLES)
        with pytest.raises(ConflictOfInterestError) as exc_info:
            ensure_can_review(reviewer, make_snapshot(author_id=author))
        assert exc_info.value.reason == "author_conflict"
        assert exc_info.value.reviewer_id == author

    def test_role_mismatch_names_required_role(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=frozenset({Role.manager}))
        with pytest.raises(RoleMismatchError) as exc_info:
            ensure_can_review(reviewer, make_snapshot(stage=IdeaStage.board_review))
        assert exc_info.value.required_role == "board_member"

    def test_non_review_stage_raises(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=ALL_ROLES)
        with pytest.raises(StageNotReviewableError) as exc_info:
            ensure_can_review(reviewer, make_snapshot(stage=IdeaStage.implementation))
        assert exc_info.value.stage == "implementation"

    def test_all_errors_share_base_class(self) -> None:
        reviewer = ReviewerProfile(id=uuid4(), roles=frozenset())
        with pytest.raises(ReviewerIneligibleError):
            ensure_can_review(reviewer, make_snapshot())
