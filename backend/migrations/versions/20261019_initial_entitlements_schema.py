"""Initial schema: stories, chapters, purchase records and coin ledger

Revision ID: 20261019_initial_entitlements
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_entitlements"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "stories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("has_paid_chapters", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("chapter_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stories_slug", "stories", ["slug"], unique=True)
    op.create_index("ix_stories_is_paid", "stories", ["is_paid"], unique=False)

    op.create_table(
        "chapters",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("story_id", sa.Integer(), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=True),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("show_ads", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_new", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("story_id", "number", name="uq_chapters_story_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_chapters_story_id", "chapters", ["story_id"], unique=False)
    op.create_index("ix_chapters_status", "chapters", ["status"], unique=False)
    op.create_index("ix_chapters_story_paid", "chapters", ["story_id", "is_paid"], unique=False)

    op.create_table(
        "user_purchases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("total_stories_purchased", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_chapters_purchased", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_coins_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("first_purchase_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_purchase_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_user_purchases_user_id", "user_purchases", ["user_id"], unique=True)

    op.create_table(
        "purchase_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_purchases_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("target_id", sa.Integer(), nullable=False),
        sa.Column("story_id", sa.Integer(), nullable=False),
        sa.Column("price_paid", sa.Integer(), nullable=False),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transaction_ref", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_purchases_id"], ["user_purchases.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_purchase_entries_user_purchases_id", "purchase_entries", ["user_purchases_id"], unique=False)
    op.create_index("ix_purchase_entries_transaction_ref", "purchase_entries", ["transaction_ref"], unique=False)
    op.create_index("ix_purchase_entries_story_status", "purchase_entries", ["story_id", "status"], unique=False)
    op.create_index("ix_purchase_entries_user_purchased", "purchase_entries", ["user_id", "purchased_at"], unique=False)
    # At most one active entry per (user, kind, target)
    op.create_index(
        "uq_purchase_entries_active_target",
        "purchase_entries",
        ["user_id", "kind", "target_id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "coin_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_credited", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("balance >= 0", name="ck_coin_accounts_balance_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_coin_accounts_user_id", "coin_accounts", ["user_id"], unique=True)

    op.create_table(
        "coin_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_ref", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("coin_change", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("reference_type", sa.String(length=16), nullable=False, server_default="other"),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("story_id", sa.Integer(), nullable=True),
        sa.Column("memo", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_coin_transactions_transaction_ref", "coin_transactions", ["transaction_ref"], unique=True)
    op.create_index("ix_coin_transactions_user_created", "coin_transactions", ["user_id", "created_at"], unique=False)


def downgrade():
    op.drop_index("ix_coin_transactions_user_created", table_name="coin_transactions")
    op.drop_index("ix_coin_transactions_transaction_ref", table_name="coin_transactions")
    op.drop_table("coin_transactions")

    op.drop_index("ix_coin_accounts_user_id", table_name="coin_accounts")
    op.drop_table("coin_accounts")

    op.drop_index("uq_purchase_entries_active_target", table_name="purchase_entries")
    op.drop_index("ix_purchase_entries_user_purchased", table_name="purchase_entries")
    op.drop_index("ix_purchase_entries_story_status", table_name="purchase_entries")
    op.drop_index("ix_purchase_entries_transaction_ref", table_name="purchase_entries")
    op.drop_index("ix_purchase_entries_user_purchases_id", table_name="purchase_entries")
    op.drop_table("purchase_entries")

    op.drop_index("ix_user_purchases_user_id", table_name="user_purchases")
    op.drop_table("user_purchases")

    op.drop_index("ix_chapters_story_paid", table_name="chapters")
    op.drop_index("ix_chapters_status", table_name="chapters")
    op.drop_index("ix_chapters_story_id", table_name="chapters")
    op.drop_table("chapters")

    op.drop_index("ix_stories_is_paid", table_name="stories")
    op.drop_index("ix_stories_slug", table_name="stories")
    op.drop_table("stories")
