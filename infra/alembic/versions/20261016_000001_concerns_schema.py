"""Concerns and concern audit log tables."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "20261016_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "concerns",
        sa.Column("id", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("submission_type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=True),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("priority", sa.String(length=20), nullable=True),
        sa.Column("category", sa.String(length=255), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("subject", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("message", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("submitter_name", sa.String(length=255), nullable=False),
        sa.Column("submitter_email", sa.String(length=255), nullable=False),
        sa.Column("notes", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.String(length=255), nullable=True),
        sa.Column("resolved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("in_progress_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint("rating IS NULL OR rating BETWEEN 1 AND 5", name="concerns_rating_range"),
        sa.CheckConstraint(
            "(status = 'resolved') = (COALESCE(resolution, '') <> '')",
            name="concerns_resolution_iff_resolved",
        ),
    )
    op.create_index(
        "concerns_status_submitted_idx",
        "concerns",
        ["submission_type", "status", sa.text("submitted_at DESC")],
    )

    op.create_table(
        "concern_audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "concern_id",
            sa.String(length=32),
            sa.ForeignKey("concerns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("from_status", sa.String(length=20), nullable=True),
        sa.Column("to_status", sa.String(length=20), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("concern_audit_logs_concern_idx", "concern_audit_logs", ["concern_id", "created_at"])


def downgrade() -> None:
    op.drop_index("concern_audit_logs_concern_idx", table_name="concern_audit_logs")
    op.drop_table("concern_audit_logs")
    op.drop_index("concerns_status_submitted_idx", table_name="concerns")
    op.drop_table("concerns")
