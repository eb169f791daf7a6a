"""Tracking run history baseline

Revision ID: 20261018_01
Revises: None
Create Date: 2026-10-18
"""
# pylint: disable=no-member,invalid-name,wrong-import-order

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261018_01"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the finalized tracking session history table."""

    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "tracking_run",
        sa.Column("tracking_run_id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("job_id", sa.Text(), nullable=False),
        sa.Column("outcome", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("final_percentage", sa.Integer(), nullable=True),
        sa.Column("final_stage_ordinal", sa.Integer(), nullable=True),
        sa.Column("elapsed_seconds", sa.Float(), nullable=True),
        sa.Column("diagnostics", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "outcome IN ('completed', 'failed', 'timed_out', 'cancelled')",
            name="ck_tracking_run_outcome",
        ),
        sa.CheckConstraint("attempt_count >= 0", name="ck_tracking_run_attempt_count_non_negative"),
        sa.CheckConstraint(
            "final_percentage IS NULL OR (final_percentage >= 0 AND final_percentage <= 100)",
            name="ck_tracking_run_final_percentage_range",
        ),
    )
    op.create_index("ix_tracking_run_job_id_created_at_utc", "tracking_run", ["job_id", "created_at_utc"])
    op.create_index("ix_tracking_run_created_at_utc", "tracking_run", ["created_at_utc"])


def downgrade() -> None:
    """Drop the tracking run history table."""

    op.drop_index("ix_tracking_run_created_at_utc", table_name="tracking_run")
    op.drop_index("ix_tracking_run_job_id_created_at_utc", table_name="tracking_run")
    op.drop_table("tracking_run")
