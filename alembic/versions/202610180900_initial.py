"""initial finance schema

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("theme", sa.String(length=7), nullable=False, server_default="#000000"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name", name="uq_categories_name"),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("theme", sa.String(length=7), nullable=False, server_default="#000000"),
        sa.Column(
            "period",
            sa.Enum("monthly", "quarterly", "yearly", name="budgetperiod"),
            nullable=False,
        ),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budgets_amount_positive"),
    )
    op.create_index("ix_budgets_user_active", "budgets", ["user_id", "is_active"])

    op.create_table(
        "pots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("goal_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "current_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("target_date", sa.DateTime(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(length=100)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "name", name="uq_pot_user_name"),
        sa.CheckConstraint("goal_amount_cents >= 0", name="ck_pots_goal_positive"),
        sa.CheckConstraint(
            "current_amount_cents >= 0", name="ck_pots_current_positive"
        ),
    )
    op.create_index("ix_pots_user_category", "pots", ["user_id", "category"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "recurring_frequency",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="recurringfrequency"),
        ),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column(
            "budget_id",
            sa.Integer(),
            sa.ForeignKey(
                "budgets.id",
                ondelete="SET NULL",
                name="fk_transactions_budget_id_budgets",
            ),
        ),
        sa.Column(
            "pot_id",
            sa.Integer(),
            sa.ForeignKey(
                "pots.id", ondelete="SET NULL", name="fk_transactions_pot_id_pots"
            ),
        ),
        sa.Column(
            "parent_transaction_id",
            sa.Integer(),
            sa.ForeignKey(
                "transactions.id",
                ondelete="SET NULL",
                name="fk_transactions_parent_transaction_id_transactions",
            ),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "parent_transaction_id", name="uq_transactions_parent_transaction_id"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category", "transactions", ["user_id", "category"]
    )
    op.create_index(
        "ix_transactions_user_deleted", "transactions", ["user_id", "is_deleted"]
    )
    op.create_index("ix_transactions_user_type", "transactions", ["user_id", "type"])
    op.create_index(
        "ix_transactions_budget_type_date",
        "transactions",
        ["budget_id", "type", "date"],
    )
    op.create_index(
        "ix_transactions_recurring_date",
        "transactions",
        ["recurring", "is_deleted", "date"],
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "type",
            sa.Enum("info", "success", "warning", "error", name="notificationtype"),
            nullable=False,
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "category", sa.String(length=50), nullable=False, server_default="general"
        ),
        sa.Column("related_id", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_notifications_user_read_created",
        "notifications",
        ["user_id", "is_read", "created_at"],
    )


def downgrade():
    op.drop_index("ix_notifications_user_read_created", table_name="notifications")
    op.drop_table("notifications")
    for name in (
        "ix_transactions_recurring_date",
        "ix_transactions_budget_type_date",
        "ix_transactions_user_type",
        "ix_transactions_user_deleted",
        "ix_transactions_user_category",
        "ix_transactions_user_date",
    ):
        op.drop_index(name, table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_pots_user_category", table_name="pots")
    op.drop_table("pots")
    op.drop_index("ix_budgets_user_active", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("categories")
