"""Unit tests for review aggregation.

Tests cover:
- Score validation and rejection of out-of-range values
- Quorum counting with one vote per reviewer
- Consensus rules (reject veto, needs_revision precedence)
- Late reviews kept as uncounted history
"""

from __future__ import annotations

import math
from uuid import uuid4

import pytest

from reviewflow.database.models.entity import (
    ChallengeStatus,
    EntityType,
    IdeaStage,
    SubmissionStage,
)
from reviewflow.database.models.review import ReviewDecision
from reviewflow.workflow.aggregator import (
    ReviewAggregator,
    compute_consensus,
    validate_score,
)
from reviewflow.workflow.errors import (
    EntityNotFoundError,
    InvalidDecisionError,
    InvalidScoreError,
    StageAlreadyAdvancedError,
    StageNotReviewableError,
)
from reviewflow.workflow.ports import EntityRef, ReviewSubmission


@pytest.fixture
def aggregator(store) -> ReviewAggregator:
    return ReviewAggregator(store, store)


@pytest.fixture
def idea(store):
    """Idea in manager review (quorum 2)."""
    return store.add(EntityType.idea, IdeaStage.manager_review)


def review_for(entity, decision=ReviewDecision.approve, score=None, reviewer_id=None, **kwargs):
    return ReviewSubmission(
        ref=entity.ref,
        reviewer_id=reviewer_id or uuid4(),
        stage=kwargs.pop("stage", entity.current_stage),
        decision=decision,
        score=score,
        **kwargs,
    )


class TestValidateScore:
    """Test score range validation."""

    @pytest.mark.parametrize("value", [None, 0, 0.0, 5, 7.5, 10, 10.0])
    def test_accepts_values_in_range(self, value) -> None:
        validate_score(value)

    @pytest.mark.parametrize("value", [-0.1, -1, 10.01, 11, math.nan, math.inf, -math.inf])
    def test_rejects_values_out_of_range(self, value) -> None:
        with pytest.raises(InvalidScoreError):
            validate_score(value)

    @pytest.mark.parametrize("value", ["7", True, [5]])
    def test_rejects_non_numbers(self, value) -> None:
        with pytest.raises(InvalidScoreError):
            validate_score(value)

    def test_error_names_field(self) -> None:
        with pytest.raises(InvalidScoreError) as exc_info:
            validate_score(12, "criteria_scores.impact")
        assert exc_info.value.field == "criteria_scores.impact"
        assert exc_info.value.value == 12


class TestComputeConsensus:
    """Test consensus derivation."""

    def test_pending_below_quorum(self) -> None:
        assert compute_consensus([ReviewDecision.approve], 2) == ReviewDecision.pending

    def test_unanimous_approval(self) -> None:
        decisions = [ReviewDecision.approve, ReviewDecision.approve]
        assert compute_consensus(decisions, 2) == ReviewDecision.approve

    def test_single_reject_vetoes(self) -> None:
        decisions = [ReviewDecision.approve, ReviewDecision.approve, ReviewDecision.reject]
        assert compute_consensus(decisions, 3) == ReviewDecision.reject

    def test_reject_beats_needs_revision(self) -> None:
        decisions = [ReviewDecision.needs_revision, ReviewDecision.reject]
        assert compute_consensus(decisions, 2) == ReviewDecision.reject

    def test_needs_revision_beats_approve(self) -> None:
        decisions = [ReviewDecision.approve, ReviewDecision.needs_revision]
        assert compute_consensus(decisions, 2) == ReviewDecision.needs_revision

    def test_pending_decisions_do_not_count(self) -> None:
        decisions = [ReviewDecision.approve, ReviewDecision.pending]
        assert compute_consensus(decisions, 2) == ReviewDecision.pending


class TestSubmitReview:
    """Test recording reviews and evaluating the round."""

    @pytest.mark.asyncio
    async def test_first_review_below_quorum(self, aggregator, idea) -> None:
        result = await aggregator.submit_review(review_for(idea, score=6))

        assert result.review_count == 1
        assert result.quorum == 2
        assert result.quorum_met is False
        assert result.consensus == ReviewDecision.pending
        assert result.aggregate_score == 6.0
        assert result.review is not None
        assert result.review.counted is True
        assert result.review.stage_version == idea.stage_version

    @pytest.mark.asyncio
    async def test_quorum_reached_with_approvals(self, aggregator, idea) -> None:
        await aggregator.submit_review(review_for(idea, score=6))
        result = await aggregator.submit_review(review_for(idea, score=8))

        assert result.quorum_met is True
        assert result.consensus == ReviewDecision.approve
        assert result.aggregate_score == 7.0

    @pytest.mark.asyncio
    async def test_reject_veto_at_quorum(self, aggregator, idea) -> None:
        await aggregator.submit_review(review_for(idea, ReviewDecision.approve, score=9))
        result = await aggregator.submit_review(review_for(idea, ReviewDecision.reject, score=9))

        assert result.quorum_met is True
        assert result.consensus == ReviewDecision.reject

    @pytest.mark.asyncio
    async def test_score_does_not_affect_consensus(self, aggregator, idea) -> None:
        """Test that low scores on approvals still approve."""
        await aggregator.submit_review(review_for(idea, score=0))
        result = await aggregator.submit_review(review_for(idea, score=0))
        assert result.consensus == ReviewDecision.approve
        assert result.aggregate_score == 0.0

    @pytest.mark.asyncio
    async def test_aggregate_score_none_without_scores(self, aggregator, idea) -> None:
        result = await aggregator.submit_review(review_for(idea))
        assert result.aggregate_score is None

    @pytest.mark.asyncio
    async def test_resubmission_overwrites(self, aggregator, idea, store) -> None:
        """Test that a reviewer submitting twice in one round counts once."""
        reviewer = uuid4()
        await aggregator.submit_review(review_for(idea, score=3, reviewer_id=reviewer))
        result = await aggregator.submit_review(
            review_for(idea, ReviewDecision.reject, score=4, reviewer_id=reviewer)
        )

        assert result.review_count == 1
        assert result.quorum_met is False
        assert result.aggregate_score == 4.0
        assert len(store.reviews) == 1
        assert store.reviews[0].decision == ReviewDecision.reject

    @pytest.mark.asyncio
    async def test_submission_quorum_of_one(self, aggregator, store) -> None:
        challenge = store.add(EntityType.challenge, ChallengeStatus.review)
        submission = store.add_submission(challenge, SubmissionStage.manager_review)

        result = await aggregator.submit_review(review_for(submission, score=5))

        assert result.quorum == 1
        assert result.quorum_met is True
        assert result.consensus == ReviewDecision.approve

    @pytest.mark.asyncio
    async def test_stage_given_as_string(self, aggregator, idea) -> None:
        result = await aggregator.submit_review(review_for(idea, stage="manager_review"))
        assert result.stage == IdeaStage.manager_review


class TestSubmitReviewRejections:
    """Test reviews that are refused or stored without counting."""

    @pytest.mark.asyncio
    async def test_out_of_range_score_stores_nothing(self, aggregator, idea, store) -> None:
        with pytest.raises(InvalidScoreError):
            await aggregator.submit_review(review_for(idea, score=10.5))
        assert store.reviews == []

    @pytest.mark.asyncio
    async def test_negative_criteria_score(self, aggregator, idea, store) -> None:
        with pytest.raises(InvalidScoreError) as exc_info:
            await aggregator.submit_review(
                review_for(idea, score=5, criteria_scores={"impact": 4, "feasibility": -1})
            )
        assert exc_info.value.field == "criteria_scores.feasibility"
        assert store.reviews == []

    @pytest.mark.asyncio
    async def test_pending_decision_rejected(self, aggregator, idea, store) -> None:
        with pytest.raises(InvalidDecisionError):
            await aggregator.submit_review(review_for(idea, ReviewDecision.pending))
        assert store.reviews == []

    @pytest.mark.asyncio
    async def test_non_review_stage(self, aggregator, store) -> None:
        draft = store.add(EntityType.idea, IdeaStage.draft)
        with pytest.raises(StageNotReviewableError):
            await aggregator.submit_review(review_for(draft))

    @pytest.mark.asyncio
    async def test_unknown_stage_name(self, aggregator, idea) -> None:
        with pytest.raises(StageNotReviewableError):
            await aggregator.submit_review(review_for(idea, stage="triage"))

    @pytest.mark.asyncio
    async def test_unknown_entity(self, aggregator) -> None:
        ref = EntityRef(entity_type=EntityType.idea, entity_id=uuid4())
        review = ReviewSubmission(
            ref=ref,
            reviewer_id=uuid4(),
            stage=IdeaStage.manager_review,
            decision=ReviewDecision.approve,
        )
        with pytest.raises(EntityNotFoundError):
            await aggregator.submit_review(review)

    @pytest.mark.asyncio
    async def test_late_review_kept_as_history(self, aggregator, store) -> None:
        """Test that a review for a stage already left is stored but not counted."""
        idea = store.add(EntityType.idea, IdeaStage.sme_review, stage_version=3)

        with pytest.raises(StageAlreadyAdvancedError) as exc_info:
            await aggregator.submit_review(
                review_for(idea, stage=IdeaStage.manager_review, score=9)
            )

        assert exc_info.value.review_stage == "manager_review"
        assert exc_info.value.current_stage == "sme_review"
        assert len(store.reviews) == 1
        late = store.reviews[0]
        assert late.counted is False
        assert late.stage_version is None
        assert exc_info.value.review_id == late.id

    @pytest.mark.asyncio
    async def test_late_review_does_not_affect_current_round(self, aggregator, store) -> None:
        idea = store.add(EntityType.idea, IdeaStage.sme_review, stage_version=1)
        with pytest.raises(StageAlreadyAdvancedError):
            await aggregator.submit_review(
                review_for(idea, ReviewDecision.reject, stage=IdeaStage.manager_review)
            )

        summary = await aggregator.summarize(store.entities[idea.id])
        assert summary.review_count == 0
        assert summary.consensus == ReviewDecision.pending

    @pytest.mark.asyncio
    async def test_stage_moves_while_review_is_written(self, aggregator, idea, store) -> None:
        """Test that a round closed between snapshot read and write stores the review uncounted."""
        store.before_save = lambda ref: store.move(ref.entity_id, IdeaStage.sme_review)

        with pytest.raises(StageAlreadyAdvancedError) as exc_info:
            await aggregator.submit_review(review_for(idea, score=7))

        assert exc_info.value.review_stage == "manager_review"
        assert exc_info.value.current_stage == "sme_review"
        assert len(store.reviews) == 1
        late = store.reviews[0]
        assert late.counted is False
        assert late.stage_version is None
        assert exc_info.value.review_id == late.id

    @pytest.mark.asyncio
    async def test_review_written_after_move_not_counted_in_new_round(
        self, aggregator, idea, store
    ) -> None:
        store.before_save = lambda ref: store.move(ref.entity_id, IdeaStage.sme_review)
        with pytest.raises(StageAlreadyAdvancedError):
            await aggregator.submit_review(review_for(idea, ReviewDecision.reject))

        summary = await aggregator.summarize(store.entities[idea.id])
        assert summary.stage == IdeaStage.sme_review
        assert summary.review_count == 0


class TestBoardQuorum:
    """Test the three-vote board review quorum."""

    @pytest.mark.asyncio
    async def test_two_approvals_below_quorum(self, aggregator, store) -> None:
        idea = store.add(EntityType.idea, IdeaStage.board_review)
        await aggregator.submit_review(review_for(idea))
        result = await aggregator.submit_review(review_for(idea))

        assert result.quorum == 3
        assert result.review_count == 2
        assert result.quorum_met is False
        assert result.consensus == ReviewDecision.pending

    @pytest.mark.asyncio
    async def test_third_approval_reaches_quorum(self, aggregator, store) -> None:
        idea = store.add(EntityType.idea, IdeaStage.board_review)
        for _ in range(2):
            await aggregator.submit_review(review_for(idea))
        result = await aggregator.submit_review(review_for(idea))

        assert result.quorum_met is True
        assert result.consensus == ReviewDecision.approve


class TestRoundsAndSummaries:
    """Test round isolation, summaries and in-progress reviews."""

    @pytest.mark.asyncio
    async def test_previous_round_not_counted(self, aggregator, store) -> None:
        """Test that reviews from an earlier visit to the stage are ignored."""
        idea = store.add(EntityType.idea, IdeaStage.manager_review)
        await aggregator.submit_review(review_for(idea))

        # needs_revision and resubmission bring the idea back to manager review
        store.move(idea.id, IdeaStage.submitted)
        store.move(idea.id, IdeaStage.manager_review)

        result = await aggregator.submit_review(review_for(store.entities[idea.id]))
        assert result.review_count == 1
        assert result.stage_version == 2
        assert result.quorum_met is False

    @pytest.mark.asyncio
    async def test_summarize_outside_review_stage(self, aggregator, store) -> None:
        draft = store.add(EntityType.idea, IdeaStage.draft)
        assert await aggregator.summarize(draft) is None

    @pytest.mark.asyncio
    async def test_summarize_writes_nothing(self, aggregator, idea, store) -> None:
        await aggregator.submit_review(review_for(idea, score=4))
        before = list(store.reviews)

        summary = await aggregator.summarize(idea)

        assert summary.review_count == 1
        assert summary.aggregate_score == 4.0
        assert store.reviews == before

    @pytest.mark.asyncio
    async def test_begin_review_opens_pending_row(self, aggregator, idea, store) -> None:
        reviewer = uuid4()
        record = await aggregator.begin_review(idea.ref, reviewer)

        assert record.decision == ReviewDecision.pending
        assert record.completed is False
        assert record.stage_version == idea.stage_version

        summary = await aggregator.summarize(idea)
        assert summary.review_count == 0

    @pytest.mark.asyncio
    async def test_begin_review_then_submit_uses_same_row(self, aggregator, idea, store) -> None:
        reviewer = uuid4()
        opened = await aggregator.begin_review(idea.ref, reviewer)
        result = await aggregator.submit_review(review_for(idea, score=5, reviewer_id=reviewer))

        assert result.review.id == opened.id
        assert len(store.reviews) == 1

    @pytest.mark.asyncio
    async def test_begin_review_outside_review_stage(self, aggregator, store) -> None:
        draft = store.add(EntityType.idea, IdeaStage.draft)
        with pytest.raises(StageNotReviewableError):
            await aggregator.begin_review(draft.ref, uuid4())
