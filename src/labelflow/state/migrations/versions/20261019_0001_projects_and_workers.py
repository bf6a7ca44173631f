"""Create projects and workers tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("project_id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("repo", sa.String(), nullable=False),
        sa.Column("group_name", sa.String(), nullable=False, server_default=""),
        sa.Column("channel", sa.String(), nullable=False, server_default="telegram"),
        sa.Column("provider", sa.String(), nullable=False, server_default="github"),
        sa.Column("base_branch", sa.String(), nullable=False, server_default="main"),
        sa.Column("role_execution", sa.String(), nullable=False, server_default="parallel"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "workers",
        sa.Column(
            "project_id",
            sa.String(),
            sa.ForeignKey("projects.project_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("issue_id", sa.String(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("level", sa.String(), nullable=True),
        sa.Column("sessions_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("project_id", "role"),
    )
    op.create_index("ix_workers_active", "workers", ["active"])


def downgrade() -> None:
    op.drop_index("ix_workers_active", table_name="workers")
    op.drop_table("workers")
    op.drop_table("projects")
