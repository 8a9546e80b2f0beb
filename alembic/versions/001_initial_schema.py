"""Initial schema for Reviewflow.

Creates the reviewable entity tables (ideas, challenges,
challenge_submissions), the reviews table keyed by review round, and the
collaborators table used for conflict-of-interest checks.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

IDEA_STAGES = (
    "draft", "submitted", "manager_review", "sme_review", "board_review",
    "implementation", "completed", "rejected", "archived",
)
CHALLENGE_STATUSES = (
    "draft", "active", "review", "judging", "completed", "cancelled", "closed",
)
SUBMISSION_STAGES = (
    "draft", "submitted", "manager_review", "sme_review", "approved",
    "rejected", "winner", "withdrawn", "archived",
)
ENTITY_TYPES = ("idea", "challenge", "challenge_submission")
REVIEW_DECISIONS = ("approve", "reject", "needs_revision", "pending")
COLLABORATOR_STATUSES = ("pending", "accepted", "declined", "removed")


def _workflow_columns() -> list[sa.Column]:
    """Columns shared by every entity table."""
    return [
        sa.Column("stage_version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_stage_change_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_actor_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in (
        ("ideastage", IDEA_STAGES),
        ("challengestatus", CHALLENGE_STATUSES),
        ("submissionstage", SUBMISSION_STAGES),
        ("entitytype", ENTITY_TYPES),
        ("reviewdecision", REVIEW_DECISIONS),
        ("collaboratorstatus", COLLABORATOR_STATUSES),
    ):
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    # Ideas table
    op.create_table(
        "ideas",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("author_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "current_stage",
            sa.Enum(*IDEA_STAGES, name="ideastage", create_type=False),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("manager_review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("manager_review_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sme_review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sme_review_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("board_review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("board_review_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("implementation_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_workflow_columns(),
    )
    op.create_index("ix_ideas_current_stage", "ideas", ["current_stage"])
    op.create_index("ix_ideas_author_id", "ideas", ["author_id"])

    # Challenges table
    op.create_table(
        "challenges",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "current_stage",
            sa.Enum(*CHALLENGE_STATUSES, name="challengestatus", create_type=False),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("submission_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("evaluation_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column(
            "current_participants", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("judging_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        *_workflow_columns(),
        sa.CheckConstraint(
            "max_participants IS NULL OR current_participants <= max_participants",
            name="ck_challenges_participant_cap",
        ),
    )
    op.create_index("ix_challenges_current_stage", "challenges", ["current_stage"])
    op.create_index("ix_challenges_submission_deadline", "challenges", ["submission_deadline"])

    # Challenge submissions table
    op.create_table(
        "challenge_submissions",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("challenge_id", sa.Uuid(), sa.ForeignKey("challenges.id"), nullable=False),
        sa.Column("author_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "current_stage",
            sa.Enum(*SUBMISSION_STAGES, name="submissionstage", create_type=False),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("winner_selected_at", sa.DateTime(timezone=True), nullable=True),
        *_workflow_columns(),
    )
    op.create_index(
        "ix_challenge_submissions_challenge_id", "challenge_submissions", ["challenge_id"]
    )
    op.create_index(
        "ix_challenge_submissions_current_stage", "challenge_submissions", ["current_stage"]
    )

    # Reviews table
    op.create_table(
        "reviews",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "entity_type",
            sa.Enum(*ENTITY_TYPES, name="entitytype", create_type=False),
            nullable=False,
        ),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("reviewer_id", sa.Uuid(), nullable=False),
        sa.Column("stage", sa.Text(), nullable=False),
        sa.Column("stage_version", sa.Integer(), nullable=True),
        sa.Column(
            "decision",
            sa.Enum(*REVIEW_DECISIONS, name="reviewdecision", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("criteria_scores", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("counted", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "entity_type",
            "entity_id",
            "stage_version",
            "reviewer_id",
            name="uq_reviews_round_reviewer",
        ),
        sa.CheckConstraint(
            "score IS NULL OR (score >= 0 AND score <= 10)",
            name="ck_reviews_score_range",
        ),
    )
    op.create_index("ix_reviews_entity", "reviews", ["entity_type", "entity_id"])
    op.create_index("ix_reviews_reviewer_id", "reviews", ["reviewer_id"])

    # Collaborators table
    op.create_table(
        "collaborators",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "entity_type",
            sa.Enum(*ENTITY_TYPES, name="entitytype", create_type=False),
            nullable=False,
        ),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*COLLABORATOR_STATUSES, name="collaboratorstatus", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("invited_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "entity_type", "entity_id", "user_id", name="uq_collaborators_member"
        ),
    )
    op.create_index("ix_collaborators_entity", "collaborators", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("collaborators")
    op.drop_table("reviews")
    op.drop_table("challenge_submissions")
    op.drop_table("challenges")
    op.drop_table("ideas")

    # Drop enum types
    for name in (
        "collaboratorstatus",
        "reviewdecision",
        "entitytype",
        "submissionstage",
        "challengestatus",
        "ideastage",
    ):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
