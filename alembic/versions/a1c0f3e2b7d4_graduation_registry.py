"""graduation_registry

Create graduated_tokens and scan_checkpoints.

Revision ID: a1c0f3e2b7d4
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c0f3e2b7d4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'graduated_tokens',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('address', sa.String(64), nullable=False),
        # Identity
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('ticker', sa.String(50), nullable=True),
        sa.Column('image', sa.String(500), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('website', sa.String(500), nullable=True),
        sa.Column('twitter', sa.String(500), nullable=True),
        sa.Column('telegram', sa.String(500), nullable=True),
        sa.Column('creator', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('holders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('dev_hold_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('burn_percent', sa.Float(), nullable=False, server_default='0'),
        # Bonding curve
        sa.Column('reserve', sa.Float(), nullable=False, server_default='0'),
        sa.Column('bonding_progress_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('listed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('bonding_curve_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        # Market
        sa.Column('price_usd', sa.Float(), nullable=False, server_default='0'),
        sa.Column('market_cap_usd', sa.Float(), nullable=False, server_default='0'),
        sa.Column('liquidity_usd', sa.Float(), nullable=False, server_default='0'),
        sa.Column('volume_24h_usd', sa.Float(), nullable=False, server_default='0'),
        sa.Column('price_change_24h', sa.Float(), nullable=False, server_default='0'),
        sa.Column('buys_24h', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sells_24h', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('dex_url', sa.String(500), nullable=True),
        sa.Column('pair_address', sa.String(64), nullable=True),
        # Graduation
        sa.Column('graduated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('confirmed_graduated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('graduated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('graduation_block', sa.BigInteger(), nullable=True),
        sa.Column('dex_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('dex_paid_detected_at', sa.DateTime(timezone=True), nullable=True),
        # Provenance
        sa.Column('section', sa.String(50), nullable=True),
        sa.Column('placeholder', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolve_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('provenance', sa.JSON(), nullable=True),
        sa.Column('first_seen_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('address', name='uq_graduated_token_address'),
    )
    op.create_index('idx_graduated_tokens_confirmed', 'graduated_tokens', ['confirmed_graduated'])
    op.create_index('idx_graduated_tokens_graduated_at', 'graduated_tokens', ['graduated_at'])

    op.create_table(
        'scan_checkpoints',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(64), nullable=False),
        sa.Column('last_block', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('key', name='uq_scan_checkpoint_key'),
    )


def downgrade() -> None:
    op.drop_table('scan_checkpoints')
    op.drop_index('idx_graduated_tokens_graduated_at', table_name='graduated_tokens')
    op.drop_index('idx_graduated_tokens_confirmed', table_name='graduated_tokens')
    op.drop_table('graduated_tokens')
