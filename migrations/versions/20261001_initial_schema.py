"""initial schema: users, usage counters, ad rewards, subscriptions

Revision ID: 20261001_initial_schema
Revises:
Create Date: 2026-10-01 10:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

SUBSCRIPTION_STATUSES = ("pending", "active", "cancelled", "grace_period", "expired", "upgraded")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("plan", sa.String(length=32), nullable=False, server_default="free"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "daily_usage",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("date", sa.String(length=10), primary_key=True),
        sa.Column("refresh_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level1_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level2_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level3_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "ad_rewards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("ad_type", sa.String(length=32), nullable=False),
        sa.Column("reward_type", sa.String(length=16), nullable=False),
        sa.Column("reward_amount", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("ad_provider", sa.String(length=64)),
        sa.Column("ad_unit_id", sa.String(length=128)),
        sa.Column("watched_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index(
        "ix_ad_rewards_user_date_type", "ad_rewards", ["user_id", "date", "ad_type"]
    )

    op.create_table(
        "daily_ad_summary",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("date", sa.String(length=10), primary_key=True),
        sa.Column("total_ads_watched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refresh_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level2_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level3_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("plan_id", sa.String(length=32), nullable=False),
        sa.Column("product_id", sa.String(length=128), nullable=False),
        sa.Column("transaction_id", sa.String(length=128), nullable=False),
        sa.Column("original_transaction_id", sa.String(length=128)),
        sa.Column("platform", sa.String(length=16), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*SUBSCRIPTION_STATUSES, name="subscription_status", native_enum=False),
            nullable=False,
            server_default="active",
        ),
        sa.Column("purchased_at", sa.DateTime(timezone=True)),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("cancel_reason", sa.String(length=255)),
        sa.Column("receipt_data", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("platform", "transaction_id", name="uq_subscriptions_platform_tx"),
    )
    op.create_index("ix_subscriptions_user_status", "subscriptions", ["user_id", "status"])

    op.create_table(
        "subscription_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("subscription_id", sa.Integer()),
        sa.Column("plan", sa.String(length=32), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_subscription_history_user_id", "subscription_history", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_subscription_history_user_id", table_name="subscription_history")
    op.drop_table("subscription_history")
    op.drop_index("ix_subscriptions_user_status", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("daily_ad_summary")
    op.drop_index("ix_ad_rewards_user_date_type", table_name="ad_rewards")
    op.drop_table("ad_rewards")
    op.drop_table("daily_usage")
    op.drop_table("users")
