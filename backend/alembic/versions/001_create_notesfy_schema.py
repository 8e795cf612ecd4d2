"""Create notesfy schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Users and their ledger, posts with likes, subject / chapter catalogs,
       download receipts, payees, payee accounts and withdrawals.
How:   Generic SQLAlchemy types (Uuid, DateTime with timezone, Numeric) so the
       same revision runs on PostgreSQL and SQLite. Ids are generated by
       the application.

Rollback: downgrade() drops every table (destructive).
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
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("username", sa.String(80), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("profile_image", sa.String(512), nullable=False),
        sa.Column(
            "downloads",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Number of paid downloads of this user's posts",
        ),
        sa.Column(
            "amount",
            sa.Numeric(12, 2),
            nullable=False,
            server_default=sa.text("0"),
            comment="Withdrawable balance in major currency units",
        ),
        sa.Column(
            "active_withdrawal_id",
            sa.Uuid(),
            nullable=True,
            comment="Withdrawal currently holding the payout lock",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint("amount >= 0", name="ck_users_amount_non_negative"),
        sa.CheckConstraint("downloads >= 0", name="ck_users_downloads_non_negative"),
    )

    op.create_table(
        "posts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("chapter", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("topics", sa.Text(), nullable=False),
        sa.Column("qualification", sa.String(255), nullable=False),
        sa.Column(
            "filename",
            sa.String(255),
            nullable=False,
            comment="Relative path from storage root to the stored PDF",
        ),
        sa.Column("author_id", sa.Uuid(), nullable=False),
        sa.Column("author", sa.String(80), nullable=False),
        sa.Column("posted_date", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_posts_author_id", "posts", ["author_id"])
    op.create_index("idx_posts_subject", "posts", ["subject"])
    op.create_index("idx_posts_chapter", "posts", ["chapter"])

    op.create_table(
        "post_likes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("post_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("post_id", "user_id", name="uq_post_likes_post_user"),
    )

    op.create_table(
        "subjects",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("title"),
    )

    op.create_table(
        "chapters",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("title"),
    )

    op.create_table(
        "download_receipts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("payment_id", sa.String(64), nullable=False),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("post_id", sa.Uuid(), nullable=True),
        sa.Column("author_id", sa.Uuid(), nullable=False),
        sa.Column("credited_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_id"),
    )

    op.create_table(
        "payees",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "payee_accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("account_number", sa.String(34), nullable=False),
        sa.Column("ifsc", sa.String(11), nullable=False),
        sa.Column("fund_account_id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["payees.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "account_number", "ifsc", name="uq_payee_accounts_destination"),
    )

    op.create_table(
        "withdrawals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("idempotency_key", sa.String(64), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, comment="Amount requested for payout"),
        sa.Column(
            "balance_snapshot",
            sa.Numeric(12, 2),
            nullable=False,
            comment="Balance read atomically when the payout lock was taken",
        ),
        sa.Column("ifsc", sa.String(11), nullable=False),
        sa.Column("account_last4", sa.String(4), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("failed_step", sa.String(32), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("contact_id", sa.String(64), nullable=True),
        sa.Column("fund_account_id", sa.String(64), nullable=True),
        sa.Column("payout_id", sa.String(64), nullable=True),
        sa.Column("payout_status", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("idx_withdrawals_user_id", "withdrawals", ["user_id"])


def downgrade() -> None:
    """Drops every table, dependents first. All data is lost."""
    op.drop_index("idx_withdrawals_user_id", table_name="withdrawals")
    op.drop_table("withdrawals")
    op.drop_table("payee_accounts")
    op.drop_table("payees")
    op.drop_table("download_receipts")
    op.drop_table("chapters")
    op.drop_table("subjects")
    op.drop_table("post_likes")
    op.drop_index("idx_posts_chapter", table_name="posts")
    op.drop_index("idx_posts_subject", table_name="posts")
    op.drop_index("idx_posts_author_id", table_name="posts")
    op.drop_table("posts")
    op.drop_table("users")
