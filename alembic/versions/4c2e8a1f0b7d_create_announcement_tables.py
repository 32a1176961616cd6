"""Create announcement_templates and announcements tables

Revision ID: 4c2e8a1f0b7d
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "4c2e8a1f0b7d"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "announcement_templates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("category", sa.String(20), nullable=False, server_default="custom"),
        sa.Column("type", sa.String(20), nullable=False, server_default="general"),
        sa.Column("priority", sa.String(10), nullable=False, server_default="normal"),
        sa.Column("title_template", sa.String(300), nullable=False),
        sa.Column("content_template", sa.Text, nullable=False),
        sa.Column("summary_template", sa.String(500), nullable=True),
        sa.Column("variables", sa.JSON, nullable=True),
        sa.Column("default_settings", sa.JSON, nullable=True),
        sa.Column("styling", sa.JSON, nullable=True),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_system", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("updated_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_announcement_templates_category", "announcement_templates", ["category"]
    )
    op.create_index(
        "ix_announcement_templates_name_system",
        "announcement_templates",
        ["name", "is_system"],
    )

    op.create_table(
        "announcements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("summary", sa.String(500), nullable=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="general"),
        sa.Column("priority", sa.String(10), nullable=False, server_default="normal"),
        sa.Column("status", sa.String(12), nullable=False, server_default="draft"),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("target_audience", sa.JSON, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_published", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_featured", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_pinned", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "requires_acknowledgment", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("allow_comments", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("notify_users", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("event_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("view_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("like_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("share_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("click_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("acknowledge_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_announcements_schedule",
        "announcements",
        ["is_published", "is_active", "scheduled_for"],
    )
    op.create_index("ix_announcements_published_at", "announcements", ["published_at"])
    op.create_index("ix_announcements_type", "announcements", ["type"])


def downgrade() -> None:
    op.drop_index("ix_announcements_type", table_name="announcements")
    op.drop_index("ix_announcements_published_at", table_name="announcements")
    op.drop_index("ix_announcements_schedule", table_name="announcements")
    op.drop_table("announcements")
    op.drop_index("ix_announcement_templates_name_system", table_name="announcement_templates")
    op.drop_index("ix_announcement_templates_category", table_name="announcement_templates")
    op.drop_table("announcement_templates")
