"""Create telemetry tables

Revision ID: 001
Revises: None
Create Date: 2026-10-17 00:00:00.000000+00:00

What:  Creates page_views, asset_user_accesses and error_reports.
How:   Generic types only (Uuid, TIMESTAMP WITH TIME ZONE); the same schema
       runs on PostgreSQL and on the SQLite files used in development.

Rollback: downgrade() drops all three tables (destructive — usage history lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "page_views",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "request_id",
            sa.String(64),
            nullable=True,
            comment="Correlation id of the request that generated the view",
        ),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column(
            "real_user_id",
            sa.Integer(),
            nullable=True,
            comment="Masquerading user, when different from user_id",
        ),
        sa.Column("developer_key_id", sa.Integer(), nullable=True),
        sa.Column("context_type", sa.String(32), nullable=True),
        sa.Column("context_id", sa.Integer(), nullable=True),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("asset_user_access_id", sa.Integer(), nullable=True),
        sa.Column("url", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("http_method", sa.String(10), nullable=False, server_default=sa.text("'GET'")),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("user_request", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("participated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("generated_by_hand", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("contributed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("render_time", sa.Float(), nullable=True, comment="Seconds"),
        sa.Column("interaction_seconds", sa.Float(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    # Per-user activity listings and per-context reports
    op.create_index("idx_page_views_user_created_at", "page_views", ["user_id", "created_at"])
    op.create_index("idx_page_views_context", "page_views", ["context_type", "context_id"])

    op.create_table(
        "asset_user_accesses",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("asset_code", sa.String(255), nullable=False),
        sa.Column("asset_group_code", sa.String(255), nullable=True),
        sa.Column("asset_category", sa.String(64), nullable=True),
        sa.Column("membership_type", sa.String(64), nullable=True),
        sa.Column("context_type", sa.String(32), nullable=True),
        sa.Column("context_id", sa.Integer(), nullable=True),
        sa.Column("action_level", sa.String(32), nullable=True),
        sa.Column("view_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("participate_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_access", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        # Concurrent first accesses race on this; the loser re-reads the row
        sa.UniqueConstraint("user_id", "asset_code", name="uq_asset_user_accesses_user_asset"),
    )

    op.create_table(
        "error_reports",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("category", sa.String(64), nullable=False, server_default=sa.text("'default'")),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("exception_class", sa.String(255), nullable=True),
        sa.Column("backtrace", sa.Text(), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("request_context_id", sa.String(64), nullable=True),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("http_method", sa.String(10), nullable=True),
        sa.Column("format", sa.String(16), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    """Drop all telemetry tables. Destructive: page views and reports are lost."""
    op.drop_table("error_reports")
    op.drop_table("asset_user_accesses")
    op.drop_index("idx_page_views_context", table_name="page_views")
    op.drop_index("idx_page_views_user_created_at", table_name="page_views")
    op.drop_table("page_views")
