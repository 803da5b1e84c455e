"""add competencies, practical assessments and email verification tokens

Revision ID: 1b2c3d4e5f60
Revises: 0a1b2c3d4e5f
Create Date: 2026-10-17 10:02:51.440913

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "1b2c3d4e5f60"
down_revision: Union[str, Sequence[str], None] = "0a1b2c3d4e5f"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "email_verification_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_email_verification_tokens_user_id", "email_verification_tokens", ["user_id"])

    op.create_table(
        "competencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("is_critical", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "student_competencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "competency_id", sa.Integer(), sa.ForeignKey("competencies.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("mastery_level", sa.Float(), nullable=False, server_default="0"),
        sa.Column("days_to_master", sa.Integer(), nullable=True),
        sa.Column("achieved_at", sa.DateTime(), nullable=True),
        sa.Column("last_assessed_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("student_id", "competency_id", name="uq_student_competencies_student_competency"),
    )
    op.create_index("ix_student_competencies_student_id", "student_competencies", ["student_id"])
    op.create_index("ix_student_competencies_competency_id", "student_competencies", ["competency_id"])

    op.create_table(
        "practical_assessments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "competency_id", sa.Integer(), sa.ForeignKey("competencies.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("competency_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(100), nullable=True),
        sa.Column("evidence_url", sa.String(2048), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("rubric_scores", JSONType, nullable=True),
        sa.Column("overall_score", sa.Float(), nullable=True),
        sa.Column("admin_feedback", JSONType, nullable=True),
        sa.Column("mastery_level", sa.String(32), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_practical_assessments_student_id", "practical_assessments", ["student_id"])
    op.create_index("ix_practical_assessments_role", "practical_assessments", ["role"])
    op.create_index("ix_practical_assessments_status", "practical_assessments", ["status"])


def downgrade() -> None:
    for table in (
        "practical_assessments",
        "student_competencies",
        "competencies",
        "email_verification_tokens",
    ):
        op.drop_table(table)
