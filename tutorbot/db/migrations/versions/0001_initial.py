"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("tg_id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("first_name", sa.String(length=128), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("is_verified", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("registration_step", sa.String(length=32), server_default="not_started", nullable=False),
        sa.Column("payment_status", sa.String(length=16), server_default="not_started", nullable=False),
        sa.Column("student_type", sa.String(length=32), nullable=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("blocked", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("payment_method_preference", sa.String(length=32), nullable=True),
        sa.Column("account_step", sa.String(length=32), nullable=True),
        sa.Column("account_number", sa.Text(), nullable=True),
        sa.Column("account_name", sa.Text(), nullable=True),
        sa.Column("referrer_id", sa.BigInteger(), nullable=True),
        sa.Column("referral_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("rewards", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_rewards", sa.Integer(), server_default="0", nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("referral_count >= 0", name="ck_users_referral_count_non_negative"),
        sa.CheckConstraint("rewards >= 0", name="ck_users_rewards_non_negative"),
        sa.CheckConstraint("rewards <= total_rewards", name="ck_users_rewards_le_total"),
    )
    op.create_index("ix_users_referrer_id", "users", ["referrer_id"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tg_id", sa.BigInteger(), nullable=False),
        sa.Column("file_id", sa.String(length=256), nullable=False),
        sa.Column("file_kind", sa.String(length=16), server_default="photo", nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="pending", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_by", sa.BigInteger(), nullable=True),
    )
    op.create_index("ix_payments_tg_id", "payments", ["tg_id"], unique=False)
    op.create_index("ix_payments_status", "payments", ["status"], unique=False)

    op.create_table(
        "withdrawals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tg_id", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("account_number", sa.Text(), nullable=False),
        sa.Column("account_name", sa.Text(), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=16), server_default="pending", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.BigInteger(), nullable=True),
    )
    op.create_index("ix_withdrawals_tg_id", "withdrawals", ["tg_id"], unique=False)
    op.create_index("ix_withdrawals_status", "withdrawals", ["status"], unique=False)


def downgrade() -> None:
    op.drop_table("withdrawals")
    op.drop_table("payments")
    op.drop_index("ix_users_referrer_id", table_name="users")
    op.drop_table("users")
