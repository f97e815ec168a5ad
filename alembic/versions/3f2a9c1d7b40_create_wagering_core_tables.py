"""create_wagering_core_tables

Revision ID: 3f2a9c1d7b40
Revises:
Create Date: 2026-10-19 10:12:41.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')
MONEY = sa.Numeric(18, 4)


def upgrade() -> None:
    """Upgrade schema."""
    # vouchers
    op.create_table(
        'vouchers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False, comment='Owning tenant'),
        sa.Column('code', sa.String(32), nullable=False, comment='Redeem code'),
        sa.Column('pin_hash', sa.String(64), nullable=False, comment='SHA-256 of the voucher PIN'),
        sa.Column('amount', MONEY, nullable=False, comment='Principal credited on redeem'),
        sa.Column('bonus_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('max_cashout', MONEY, nullable=False, server_default='0', comment='Maximum cashout, frozen at redemption'),
        sa.Column('currency', sa.String(16), nullable=False, server_default='FUN'),
        sa.Column('status', sa.String(16), nullable=False, server_default='new', comment='new | redeemed | cancelled | expired'),
        sa.Column('created_by_user_id', sa.String(64), nullable=True),
        sa.Column('redeemed_by_user_id', sa.String(64), nullable=True),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('policy_state', JSON_TYPE, nullable=True),
        sa.Column('cap_strategy', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'code', name='uix_voucher_tenant_code'),
    )
    op.create_index('ix_vouchers_tenant_id', 'vouchers', ['tenant_id'])
    op.create_index('ix_vouchers_status', 'vouchers', ['status'])
    op.create_index('ix_vouchers_redeemed_by_user_id', 'vouchers', ['redeemed_by_user_id'])

    # wallets
    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('currency', sa.String(16), nullable=False, server_default='FUN'),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('active_voucher_id', sa.Integer(), nullable=True, comment='Voucher currently governing outcomes'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['active_voucher_id'], ['vouchers.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'user_id', 'currency', name='uix_wallet_owner'),
    )
    op.create_index('ix_wallets_tenant_id', 'wallets', ['tenant_id'])
    op.create_index('ix_wallets_user_id', 'wallets', ['user_id'])

    # wallet_transactions
    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('wallet_id', sa.Integer(), nullable=False),
        sa.Column('tx_type', sa.String(32), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('balance_before', MONEY, nullable=False),
        sa.Column('balance_after', MONEY, nullable=False),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('metadata', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_wallet_transactions_tenant_id', 'wallet_transactions', ['tenant_id'])
    op.create_index('ix_wallet_transactions_wallet_id', 'wallet_transactions', ['wallet_id'])
    op.create_index('ix_wallet_transactions_tx_type', 'wallet_transactions', ['tx_type'])
    op.create_index('ix_wallet_transactions_created_at', 'wallet_transactions', ['created_at'])

    # ledger_events
    op.create_table(
        'ledger_events',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('ts', sa.DateTime(timezone=True), nullable=False, comment='Server event time'),
        sa.Column('client_ts', sa.DateTime(timezone=True), nullable=True, comment='Device clock, spin pacing only'),
        sa.Column('player_id', sa.String(64), nullable=True),
        sa.Column('session_id', sa.String(128), nullable=True),
        sa.Column('action_id', sa.String(128), nullable=True, comment='Idempotency key'),
        sa.Column('game_key', sa.String(64), nullable=True),
        sa.Column('event_type', sa.String(32), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=True),
        sa.Column('bet_cents', sa.BigInteger(), nullable=True),
        sa.Column('win_cents', sa.BigInteger(), nullable=True),
        sa.Column('balance_cents', sa.BigInteger(), nullable=True),
        sa.Column('source', sa.String(64), nullable=True),
        sa.Column('meta', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('action_id', 'event_type', name='uix_ledger_action_event'),
    )
    op.create_index('ix_ledger_events_player_id', 'ledger_events', ['player_id'])
    op.create_index('ix_ledger_events_event_type', 'ledger_events', ['event_type'])
    op.create_index('ix_ledger_session_type_ts', 'ledger_events', ['tenant_id', 'session_id', 'event_type', 'ts'])

    # player_safety_limits
    op.create_table(
        'player_safety_limits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('player_id', sa.String(64), nullable=True),
        sa.Column('session_id', sa.String(128), nullable=False),
        sa.Column('loss_limit_cents', sa.BigInteger(), nullable=False),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'session_id', name='uix_safety_limit_session'),
    )
    op.create_index('ix_player_safety_limits_player_id', 'player_safety_limits', ['player_id'])

    # player_safety_actions
    op.create_table(
        'player_safety_actions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('player_id', sa.String(64), nullable=True),
        sa.Column('session_id', sa.String(128), nullable=False),
        sa.Column('game_key', sa.String(64), nullable=True),
        sa.Column('action_type', sa.String(16), nullable=False, comment='NUDGE | COOLDOWN | STOP'),
        sa.Column('reason_codes', JSON_TYPE, nullable=False),
        sa.Column('severity', sa.Integer(), nullable=False, comment='1-5'),
        sa.Column('details', JSON_TYPE, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_player_safety_actions_tenant_id', 'player_safety_actions', ['tenant_id'])
    op.create_index(
        'ix_safety_action_session_type',
        'player_safety_actions',
        ['tenant_id', 'session_id', 'action_type', 'created_at'],
    )

    # tenant_settings
    op.create_table(
        'tenant_settings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('key', sa.String(128), nullable=False),
        sa.Column('value', JSON_TYPE, nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tenant_settings_key', 'tenant_settings', ['key'], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_tenant_settings_key', table_name='tenant_settings')
    op.drop_table('tenant_settings')

    op.drop_index('ix_safety_action_session_type', table_name='player_safety_actions')
    op.drop_index('ix_player_safety_actions_tenant_id', table_name='player_safety_actions')
    op.drop_table('player_safety_actions')

    op.drop_index('ix_player_safety_limits_player_id', table_name='player_safety_limits')
    op.drop_table('player_safety_limits')

    op.drop_index('ix_ledger_session_type_ts', table_name='ledger_events')
    op.drop_index('ix_ledger_events_event_type', table_name='ledger_events')
    op.drop_index('ix_ledger_events_player_id', table_name='ledger_events')
    op.drop_table('ledger_events')

    op.drop_index('ix_wallet_transactions_created_at', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_tx_type', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_wallet_id', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_tenant_id', table_name='wallet_transactions')
    op.drop_table('wallet_transactions')

    op.drop_index('ix_wallets_user_id', table_name='wallets')
    op.drop_index('ix_wallets_tenant_id', table_name='wallets')
    op.drop_table('wallets')

    op.drop_index('ix_vouchers_redeemed_by_user_id', table_name='vouchers')
    op.drop_index('ix_vouchers_status', table_name='vouchers')
    op.drop_index('ix_vouchers_tenant_id', table_name='vouchers')
    op.drop_table('vouchers')
