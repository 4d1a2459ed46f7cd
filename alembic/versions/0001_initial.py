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


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.Enum("user", "subscriber", "dj", "admin", name="userrole"), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role_active", "users", ["role", "is_active"], unique=False)

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("balance", sa.Integer, nullable=False, server_default="0"),
        sa.Column("subscription_expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )
    op.create_index("ix_wallets_user_id", "wallets", ["user_id"], unique=False)

    op.create_table(
        "wallet_ledger",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("wallet_id", sa.Integer, sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("entry_type", sa.Enum("credit", "subscription", name="ledgertype"), nullable=False),
        sa.Column("reference", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_wallet_ledger_wallet_id_type", "wallet_ledger", ["wallet_id", "entry_type"], unique=False)
    op.create_index("ix_wallet_ledger_reference", "wallet_ledger", ["reference"], unique=True)

    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reference", sa.String(64), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("status", sa.Enum("pending", "completed", "failed", name="transactionstatus"), nullable=False),
        sa.Column("effect", sa.Enum("topup", "subscription", name="paymenteffect"), nullable=False),
        sa.Column("raw_status", sa.String(64), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_payment_transactions_amount_positive"),
    )
    op.create_index("ix_payment_transactions_reference", "payment_transactions", ["reference"], unique=True)
    op.create_index("ix_payment_transactions_user_status", "payment_transactions", ["user_id", "status"], unique=False)
    op.create_index("ix_payment_transactions_effect_status", "payment_transactions", ["effect", "status"], unique=False)

    op.create_table(
        "app_settings",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("value", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_app_settings_key", "app_settings", ["key"], unique=True)


def downgrade():
    op.drop_table("app_settings")
    op.drop_table("payment_transactions")
    op.drop_table("wallet_ledger")
    op.drop_table("wallets")
    op.drop_table("users")
    for name in ("transactionstatus", "paymenteffect", "ledgertype", "userrole"):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
