"""add researchers, selection edges and evaluation records

Revision ID: 7e5d0c4a1f26
Revises: 3c1f8a2b9d47
Create Date: 2026-10-19 11:40:07.881254

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7e5d0c4a1f26"
down_revision: Union[str, Sequence[str], None] = "3c1f8a2b9d47"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "researchers",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column(
            "allow_incoming_proposals",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
            comment="Accept pairings the researcher did not select",
        ),
        sa.Column(
            "profile_version",
            sa.Integer,
            nullable=True,
            comment="Current profile version, NULL until the profile is complete",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "selection_edges",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.Text, nullable=False),
        sa.Column("target_id", sa.Text, nullable=False),
        sa.Column(
            "source",
            sa.Text,
            nullable=False,
            server_default="individual",
            comment="individual|affiliation|all_entities",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "owner_id", "target_id", name="uq_selection_edges_owner_target"
        ),
        sa.CheckConstraint(
            "source IN ('individual', 'affiliation', 'all_entities')",
            name="selection_edges_source_check",
        ),
        sa.CheckConstraint("owner_id <> target_id", name="selection_edges_no_self_check"),
    )
    op.create_index("ix_selection_edges_target_id", "selection_edges", ["target_id"])

    op.create_table(
        "evaluation_records",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("researcher_a_id", sa.Text, nullable=False),
        sa.Column("researcher_b_id", sa.Text, nullable=False),
        sa.Column("profile_version_a", sa.Integer, nullable=False),
        sa.Column("profile_version_b", sa.Integer, nullable=False),
        sa.Column(
            "evaluated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_evaluation_records_pair_versions",
        "evaluation_records",
        ["researcher_a_id", "researcher_b_id", "profile_version_a", "profile_version_b"],
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_evaluation_records_pair_versions", table_name="evaluation_records")
    op.drop_table("evaluation_records")
    op.drop_index("ix_selection_edges_target_id", table_name="selection_edges")
    op.drop_table("selection_edges")
    op.drop_table("researchers")
