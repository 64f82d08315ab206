"""add parent_order_id for merged orders and note to order items

Revision ID: 8e4d5b0c6a21
Revises: 3f1c2a9b7d10
Create Date: 2026-10-19 15:40:27.083145
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8e4d5b0c6a21"
down_revision: Union[str, Sequence[str], None] = "3f1c2a9b7d10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema: orders.parent_order_id (self FK) and order_items.note."""
    op.add_column("orders", sa.Column("parent_order_id", sa.Integer, nullable=True))
    op.create_foreign_key(
        "fk_orders_parent_order_id", "orders", "orders", ["parent_order_id"], ["id"], ondelete="CASCADE"
    )
    op.create_index("ix_orders_parent_order_id", "orders", ["parent_order_id"])
    op.add_column("order_items", sa.Column("note", sa.Text, nullable=True))


def downgrade() -> None:
    """Downgrade schema: remove merge support and item notes."""
    op.drop_column("order_items", "note")
    op.drop_index("ix_orders_parent_order_id", table_name="orders")
    op.drop_constraint("fk_orders_parent_order_id", "orders", type_="foreignkey")
    op.drop_column("orders", "parent_order_id")
