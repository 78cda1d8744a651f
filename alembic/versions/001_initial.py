"""Initial scheduler schema: servers, meetings, users, memberships.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "servers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("secret", sa.String(200), nullable=False),
        sa.Column("server_limit", sa.Integer(), nullable=False),
        sa.Column("occupancy", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("server_limit >= 0", name="ck_servers_limit_non_negative"),
        sa.CheckConstraint("occupancy >= 0", name="ck_servers_occupancy_non_negative"),
    )

    op.create_table(
        "meetings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("external_id", sa.String(200), nullable=False),
        sa.Column("moderator_password", sa.String(200), nullable=False),
        sa.Column("attendee_password", sa.String(200), nullable=False),
        sa.Column("record", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("server_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'running'"), nullable=False),
        sa.Column("user_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
    )
    # At most one running meeting per external_id; ended ones may share it
    op.create_index(
        "uq_meetings_running_external_id",
        "meetings",
        ["external_id"],
        unique=True,
        postgresql_where=sa.text("status = 'running'"),
    )
    op.create_index("ix_meetings_server_status", "meetings", ["server_id", "status"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("alias", sa.String(200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("full_name", "alias", name="uq_users_identity"),
    )

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("meeting_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("rejected", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("exited", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    )
    op.create_index("ix_memberships_meeting_user", "memberships", ["meeting_id", "user_id"])


def downgrade() -> None:
    op.drop_index("ix_memberships_meeting_user", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("users")
    op.drop_index("ix_meetings_server_status", table_name="meetings")
    op.drop_index("uq_meetings_running_external_id", table_name="meetings")
    op.drop_table("meetings")
    op.drop_table("servers")
