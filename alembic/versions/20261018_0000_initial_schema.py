"""Initial schema for price samples and threshold alerts.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Price samples (append-only)
    op.create_table(
        "price",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("chain", sa.String(64), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_price_created_at", "price", ["created_at"])
    op.create_index("idx_price_chain_created_at", "price", ["chain", "created_at"])

    # Threshold alerts
    op.create_table(
        "alert",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("chain", sa.String(64), nullable=False),
        sa.Column("alert_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_alert_chain", "alert", ["chain"])


def downgrade() -> None:
    op.drop_index("idx_alert_chain", table_name="alert")
    op.drop_table("alert")
    op.drop_index("idx_price_chain_created_at", table_name="price")
    op.drop_index("idx_price_created_at", table_name="price")
    op.drop_table("price")
