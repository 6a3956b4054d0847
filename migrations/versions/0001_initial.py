"""initial schema
Revision ID: 0001
Revises:
Create Date: 2025-01-08
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=80), nullable=False),
        sa.Column("password", sa.String(length=120), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.CheckConstraint(
            "role IN ('student', 'staff', 'admin')",
            name="ck_users_role",
        ),
    )

    op.create_table(
        "menu_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("meal", sa.String(length=20), nullable=False),
        sa.Column("img", sa.String(length=200), nullable=True),
        sa.CheckConstraint(
            "meal IN ('breakfast', 'lunch', 'dinner')",
            name="ck_menu_items_meal",
        ),
    )

    op.create_table(
        "selections",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("menu_item_id", sa.Integer(), nullable=False),
        sa.Column("selected_for_date", sa.Date(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete=None),
        sa.ForeignKeyConstraint(
            ["menu_item_id"], ["menu_items.id"], ondelete=None
        ),
        sa.UniqueConstraint(
            "user_id",
            "menu_item_id",
            "selected_for_date",
            name="uq_selection_user_item_date",
        ),
        sa.CheckConstraint("quantity > 0", name="ck_selections_quantity"),
    )


def downgrade() -> None:
    op.drop_table("selections")
    op.drop_table("menu_items")
    op.drop_table("users")
