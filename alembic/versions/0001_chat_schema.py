"""Chat schema: profiles, lessons, the three message tables, study groups, settings.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
import sqlmodel

from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _message_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("content", sqlmodel.AutoString(), nullable=False),
        sa.Column("message_type", sqlmodel.AutoString(), nullable=False),
        sa.Column("media_url", sqlmodel.AutoString(), nullable=True),
        sa.Column("reply_to", sa.Integer(), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("clerk_user_id", sqlmodel.AutoString(), nullable=False),
        sa.Column("email", sqlmodel.AutoString(), nullable=False),
        sa.Column("full_name", sqlmodel.AutoString(), nullable=False),
        sa.Column("role", sqlmodel.AutoString(), nullable=False),
        sa.Column("school", sqlmodel.AutoString(), nullable=True),
        sa.Column("course", sqlmodel.AutoString(), nullable=True),
        sa.Column("is_hand_raised", sa.Boolean(), nullable=False),
        sa.Column("is_unlocked", sa.Boolean(), nullable=False),
        sa.Column("is_premium", sa.Boolean(), nullable=False),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_clerk_user_id", "profiles", ["clerk_user_id"], unique=True)
    op.create_index("ix_profiles_email", "profiles", ["email"])

    op.create_table(
        "lessons",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("topic", sqlmodel.AutoString(), nullable=False),
        sa.Column("status", sqlmodel.AutoString(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["created_by"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lessons_status", "lessons", ["status"])
    op.create_index("ix_lessons_scheduled_at", "lessons", ["scheduled_at"])

    op.create_table(
        "study_groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("group_type", sqlmodel.AutoString(), nullable=False),
        sa.Column("school_name", sqlmodel.AutoString(), nullable=True),
        sa.Column("course_name", sqlmodel.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_study_groups_group_type", "study_groups", ["group_type"])
    op.create_index("ix_study_groups_school_name", "study_groups", ["school_name"])
    op.create_index("ix_study_groups_course_name", "study_groups", ["course_name"])

    op.create_table(
        "platform_settings",
        sa.Column("key", sqlmodel.AutoString(), nullable=False),
        sa.Column("value", sqlmodel.AutoString(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "messages",
        *_message_columns(),
        sa.Column("lesson_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "direct_messages",
        *_message_columns(),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column("receiver_id", sa.Integer(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["sender_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["receiver_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "study_group_messages",
        *_message_columns(),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["study_groups.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for table, scope_columns in (
        ("messages", ["lesson_id", "user_id"]),
        ("direct_messages", ["sender_id", "receiver_id"]),
        ("study_group_messages", ["group_id", "user_id"]),
    ):
        for column in (*scope_columns, "reply_to", "created_at"):
            op.create_index(f"ix_{table}_{column}", table, [column])


def downgrade() -> None:
    op.drop_table("study_group_messages")
    op.drop_table("direct_messages")
    op.drop_table("messages")
    op.drop_table("platform_settings")
    op.drop_table("study_groups")
    op.drop_table("lessons")
    op.drop_table("profiles")
