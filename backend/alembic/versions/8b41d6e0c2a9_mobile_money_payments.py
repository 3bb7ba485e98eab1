"""mobile_money_payments

Revision ID: 8b41d6e0c2a9
Revises: 3f9c2a7d1e04
Create Date: 2026-10-19 14:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b41d6e0c2a9'
down_revision: Union[str, Sequence[str], None] = '3f9c2a7d1e04'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("payments", sa.Column("sender_phone", sa.String(30), nullable=True))
    op.add_column("payments", sa.Column("product_id", sa.String(100), nullable=True))
    op.create_index("ix_payments_method_status", "payments", ["payment_method", "status"])


def downgrade() -> None:
    op.drop_index("ix_payments_method_status", table_name="payments")
    op.drop_column("payments", "product_id")
    op.drop_column("payments", "sender_phone")
