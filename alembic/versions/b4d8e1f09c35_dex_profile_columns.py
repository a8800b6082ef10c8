"""Add DexScreener profile columns to graduated_tokens.

Revision ID: b4d8e1f09c35
Revises: a1c0f3e2b7d4
Create Date: 2026-10-17 15:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "b4d8e1f09c35"
down_revision = "a1c0f3e2b7d4"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "graduated_tokens",
        sa.Column("pair_created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column("graduated_tokens", sa.Column("dex_header", sa.String(500), nullable=True))
    op.add_column(
        "graduated_tokens",
        sa.Column("dex_boosts", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index(
        "idx_graduated_tokens_dex_paid", "graduated_tokens", ["dex_paid", "pair_created_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_graduated_tokens_dex_paid", table_name="graduated_tokens")
    op.drop_column("graduated_tokens", "dex_boosts")
    op.drop_column("graduated_tokens", "dex_header")
    op.drop_column("graduated_tokens", "pair_created_at")
