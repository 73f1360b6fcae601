"""Initial forum schema

Revision ID: 5c2e7a91b0d3
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e7a91b0d3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(36), primary_key=True)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, server_default=sa.func.now())


def _profile_fk(name: str = "user_id") -> sa.Column:
    return sa.Column(
        name, sa.String(36), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False,
    )


def upgrade() -> None:
    """Create every forum table."""

    # --- identity ---
    op.create_table(
        "auth_users",
        _id(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(100), nullable=False),
        sa.Column("user_metadata", postgresql.JSONB, nullable=True),
        _ts("created_at"),
        sa.Column("last_sign_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("email", name="auth_users_email_key"),
    )
    op.create_table(
        "profiles",
        sa.Column(
            "id", sa.String(36),
            sa.ForeignKey("auth_users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("username", sa.String(20), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("bio", sa.Text, nullable=True),
        sa.Column("location", sa.String(100), nullable=True),
        sa.Column("website", sa.String(255), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("username", name="profiles_username_key"),
    )

    # --- points ---
    op.create_table(
        "user_points",
        _id(),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, unique=True,
        ),
        sa.Column("points", sa.Integer, server_default="0"),
        sa.Column("member_level", sa.String(30), server_default="Bronz Üye"),
        sa.Column("total_topics", sa.Integer, server_default="0"),
        sa.Column("total_comments", sa.Integer, server_default="0"),
        sa.Column("total_likes_received", sa.Integer, server_default="0"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_user_points_points_desc", "user_points", ["points"])
    op.create_table(
        "points_history",
        _id(),
        _profile_fk(),
        sa.Column("points_earned", sa.Integer, nullable=False),
        sa.Column("points_type", sa.String(30), nullable=False),
        sa.Column("source_id", sa.String(36), nullable=True),
        sa.Column("source_type", sa.String(20), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_points_history_user_created", "points_history", ["user_id", "created_at"])
    op.create_table(
        "member_level_history",
        _id(),
        _profile_fk(),
        sa.Column("old_level", sa.String(30), nullable=True),
        sa.Column("new_level", sa.String(30), nullable=False),
        sa.Column("points_at_change", sa.Integer, nullable=False),
        _ts("changed_at"),
    )

    # --- content ---
    op.create_table(
        "categories",
        _id(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("icon", sa.String(20), server_default="\U0001f4c1"),
        sa.Column("color", sa.String(20), server_default="#6B7280"),
        sa.Column(
            "parent_id", sa.String(36),
            sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("sort_order", sa.Integer, server_default="0"),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("topic_count", sa.Integer, server_default="0"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_table(
        "topics",
        _id(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        _profile_fk(),
        sa.Column(
            "category_id", sa.String(36),
            sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True,
        ),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_topics_category_created", "topics", ["category_id", "created_at"])
    op.create_table(
        "comments",
        _id(),
        sa.Column(
            "topic_id", sa.String(36),
            sa.ForeignKey("topics.id", ondelete="CASCADE"), nullable=False,
        ),
        _profile_fk(),
        sa.Column("content", sa.Text, nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_comments_topic_created", "comments", ["topic_id", "created_at"])

    # --- reactions (one row per target + user) ---
    op.create_table(
        "topic_likes",
        _id(),
        sa.Column(
            "topic_id", sa.String(36),
            sa.ForeignKey("topics.id", ondelete="CASCADE"), nullable=False,
        ),
        _profile_fk(),
        sa.Column("like_type", sa.String(10), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("topic_id", "user_id", name="uq_topic_likes_topic_user"),
    )
    op.create_table(
        "comment_likes",
        _id(),
        sa.Column(
            "comment_id", sa.String(36),
            sa.ForeignKey("comments.id", ondelete="CASCADE"), nullable=False,
        ),
        _profile_fk(),
        sa.Column("like_type", sa.String(10), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("comment_id", "user_id", name="uq_comment_likes_comment_user"),
    )

    # --- notifications ---
    op.create_table(
        "notifications",
        _id(),
        _profile_fk(),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", postgresql.JSONB, server_default=sa.text("'{}'::jsonb")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_sent", sa.Boolean, server_default="false"),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "read_at"])
    op.create_table(
        "notification_preferences",
        _id(),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, unique=True,
        ),
        *[
            sa.Column(flag, sa.Boolean, server_default="true")
            for flag in (
                "email_notifications",
                "browser_notifications",
                "desktop_notifications",
                "comment_notifications",
                "like_notifications",
                "mention_notifications",
                "follow_notifications",
                "system_notifications",
            )
        ],
        _ts("created_at"),
        _ts("updated_at"),
    )

    # --- administration ---
    op.create_table(
        "user_roles",
        _id(),
        _profile_fk(),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("granted_by", sa.String(36), nullable=True),
        _ts("granted_at"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        _ts("created_at"),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
    op.create_table(
        "admin_actions",
        _id(),
        sa.Column("admin_id", sa.String(36), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_type", sa.String(30), nullable=True),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("details", postgresql.JSONB, nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(300), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_admin_actions_created", "admin_actions", ["created_at"])
    op.create_table(
        "system_settings",
        _id(),
        sa.Column("setting_key", sa.String(100), nullable=False, unique=True),
        sa.Column("setting_value", sa.Text, nullable=False),
        sa.Column("setting_type", sa.String(20), server_default="string"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("is_public", sa.Boolean, server_default="false"),
        sa.Column("updated_by", sa.String(36), nullable=True),
        _ts("updated_at"),
    )
    op.create_table(
        "user_reports",
        _id(),
        _profile_fk("reporter_id"),
        sa.Column("reported_user_id", sa.String(36), nullable=True),
        sa.Column("reported_topic_id", sa.String(36), nullable=True),
        sa.Column("reported_comment_id", sa.String(36), nullable=True),
        sa.Column("report_type", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("admin_notes", sa.Text, nullable=True),
        sa.Column("resolved_by", sa.String(36), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_user_reports_status_created", "user_reports", ["status", "created_at"])
    op.create_table(
        "moderation_actions",
        _id(),
        sa.Column("moderator_id", sa.String(36), nullable=False),
        sa.Column("target_type", sa.String(20), nullable=False),
        sa.Column("target_id", sa.String(36), nullable=False),
        sa.Column("action_type", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("duration_hours", sa.Integer, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        _ts("created_at"),
    )


def downgrade() -> None:
    """Drop every forum table, children first."""
    for table in (
        "moderation_actions",
        "user_reports",
        "system_settings",
        "admin_actions",
        "user_roles",
        "notification_preferences",
        "notifications",
        "comment_likes",
        "topic_likes",
        "comments",
        "topics",
        "categories",
        "member_level_history",
        "points_history",
        "user_points",
        "profiles",
        "auth_users",
    ):
        op.drop_table(table)
