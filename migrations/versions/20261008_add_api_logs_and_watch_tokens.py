"""add api_logs table and ad watch token ids

Revision ID: 20261008_add_api_logs
Revises: 20261001_initial_schema
Create Date: 2026-10-08 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261008_add_api_logs"
down_revision = "20261001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "api_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("endpoint", sa.String(length=128), nullable=False),
        sa.Column("symbol", sa.String(length=32)),
        sa.Column("timeframe", sa.String(length=8)),
        sa.Column("analysis_level", sa.Integer()),
        sa.Column("method", sa.String(length=32)),
        sa.Column("degraded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("response_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("error_message", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_api_logs_user_id", "api_logs", ["user_id"])
    op.create_index("ix_api_logs_created_at", "api_logs", ["created_at"])

    with op.batch_alter_table("ad_rewards") as batch:
        batch.add_column(sa.Column("watch_token_id", sa.String(length=64), nullable=True))
        batch.create_unique_constraint("uq_ad_rewards_watch_token_id", ["watch_token_id"])


def downgrade() -> None:
    with op.batch_alter_table("ad_rewards") as batch:
        batch.drop_constraint("uq_ad_rewards_watch_token_id", type_="unique")
        batch.drop_column("watch_token_id")
    op.drop_index("ix_api_logs_created_at", table_name="api_logs")
    op.drop_index("ix_api_logs_user_id", table_name="api_logs")
    op.drop_table("api_logs")
