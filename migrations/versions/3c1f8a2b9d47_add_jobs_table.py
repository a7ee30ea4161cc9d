"""add jobs table for the background job queue

Revision ID: 3c1f8a2b9d47
Revises:
Create Date: 2026-10-19 09:12:41.305118

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c1f8a2b9d47"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("type", sa.Text, nullable=False, comment="Payload discriminator"),
        sa.Column("payload", sa.JSON, nullable=False, comment="Job-specific parameters"),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Job status: pending|processing|completed|dead",
        ),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Higher is serviced first",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Number of claims made",
        ),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "payload_hash",
            sa.String(64),
            nullable=True,
            comment="Dedup fingerprint, NULL never dedups",
        ),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "retry_after",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Earliest time to claim",
        ),
        # Worker coordination
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID that claimed the job"
        ),
        # Timestamps
        sa.Column(
            "enqueued_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'dead')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("attempts <= max_attempts", name="jobs_attempts_check"),
    )

    # Claim order: status filter, then priority desc / enqueued_at asc
    op.create_index(
        "ix_jobs_status_priority_enqueued_at",
        "jobs",
        ["status", "priority", "enqueued_at"],
    )
    op.create_index("ix_jobs_payload_hash_status", "jobs", ["payload_hash", "status"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_jobs_payload_hash_status", table_name="jobs")
    op.drop_index("ix_jobs_status_priority_enqueued_at", table_name="jobs")
    op.drop_table("jobs")
