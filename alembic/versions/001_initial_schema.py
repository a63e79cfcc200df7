"""Initial schema: content corpus, calendar cache and run journal.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Content items table
    op.create_table(
        "content_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("source_channel", sa.String(), nullable=True),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("origin_tag", sa.String(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("embedding_json", sa.Text(), nullable=True),
        sa.Column("comments_json", sa.Text(), nullable=True),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_content_items_consumed", "content_items", ["consumed"])
    op.create_index("ix_content_items_origin_tag", "content_items", ["origin_tag"])

    # Calendar meetings cache
    op.create_table(
        "calendar_meetings",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_identity", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False, server_default=""),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("body_preview", sa.Text(), nullable=True),
        sa.Column("cached_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_calendar_meetings_user_start",
        "calendar_meetings",
        ["user_identity", "start_time"],
    )

    # Run journal
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_name", sa.String(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=True),
        sa.Column("user_identity", sa.String(), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_name_created", "events", ["event_name", "created_at"])
    op.create_index("ix_events_run_id", "events", ["run_id"])


def downgrade() -> None:
    op.drop_index("ix_events_run_id", table_name="events")
    op.drop_index("ix_events_name_created", table_name="events")
    op.drop_table("events")

    op.drop_index("ix_calendar_meetings_user_start", table_name="calendar_meetings")
    op.drop_table("calendar_meetings")

    op.drop_index("ix_content_items_origin_tag", table_name="content_items")
    op.drop_index("ix_content_items_consumed", table_name="content_items")
    op.drop_table("content_items")
