"""create_ledger_tables

Revision ID: 5e1d0a7c3b21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5e1d0a7c3b21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Shared by several tables; created once up front
network_enum = postgresql.ENUM(
    'BTC', 'ETH', 'TRON', 'USDT', 'BNB', 'SOL',
    name='ledger_network_enum', create_type=False,
)
rate_mode_enum = postgresql.ENUM(
    'auto', 'manual', name='ledger_rate_mode_enum', create_type=False
)
topup_status_enum = postgresql.ENUM(
    'pending', 'approved', 'rejected',
    name='ledger_topup_status_enum', create_type=False,
)
payment_status_enum = postgresql.ENUM(
    'pending', 'detected', 'confirming', 'confirmed', 'completed', 'expired', 'failed',
    name='ledger_payment_status_enum', create_type=False,
)
withdraw_status_enum = postgresql.ENUM(
    'pending', 'approved', 'rejected', 'completed',
    name='ledger_withdraw_status_enum', create_type=False,
)
tier_request_status_enum = postgresql.ENUM(
    'pending', 'approved', 'rejected',
    name='ledger_tier_request_status_enum', create_type=False,
)
entry_type_enum = postgresql.ENUM(
    'topup', 'commission', 'withdrawal', 'withdrawal_settlement', 'reward_credit',
    name='ledger_entry_type_enum', create_type=False,
)
entry_direction_enum = postgresql.ENUM(
    'credit', 'debit', name='ledger_entry_direction_enum', create_type=False
)

ALL_ENUMS = (
    network_enum,
    rate_mode_enum,
    topup_status_enum,
    payment_status_enum,
    withdraw_status_enum,
    tier_request_status_enum,
    entry_type_enum,
    entry_direction_enum,
)


def upgrade() -> None:
    """Upgrade schema - Create ledger service tables."""
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'ledger_accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('auth_id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('balance', sa.Numeric(18, 2), nullable=False),
        sa.Column('tier', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('balance >= 0', name='ck_ledger_account_balance_non_negative'),
        sa.CheckConstraint('tier >= 1 AND tier <= 5', name='ck_ledger_account_tier_range'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ledger_accounts_auth_id', 'ledger_accounts', ['auth_id'], unique=True)

    op.create_table(
        'ledger_account_levels',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('completed', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('commission_percent', sa.Numeric(5, 2), nullable=False),
        sa.Column('reward_total_usd', sa.Numeric(18, 2), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('level >= 1 AND level <= 5', name='ck_ledger_level_range'),
        sa.CheckConstraint(
            'commission_percent >= 0 AND commission_percent <= 100',
            name='ck_ledger_level_commission_range',
        ),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'level', name='uq_ledger_account_level'),
    )
    op.create_index('ix_ledger_account_levels_account_id', 'ledger_account_levels', ['account_id'])

    op.create_table(
        'ledger_account_network_rewards',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('network', network_enum, nullable=False),
        sa.Column('amount', sa.Numeric(30, 10), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_ledger_network_reward_non_negative'),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'account_id', 'level', 'network', name='uq_ledger_account_network_reward'
        ),
    )
    op.create_index(
        'ix_ledger_account_network_rewards_account_id',
        'ledger_account_network_rewards',
        ['account_id'],
    )

    op.create_table(
        'ledger_conversion_rates',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('network', network_enum, nullable=False),
        sa.Column('rate_to_usd', sa.Numeric(24, 10), nullable=False),
        sa.Column('mode', rate_mode_enum, nullable=False),
        sa.Column('updated_by', sa.String(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('rate_to_usd >= 0', name='ck_ledger_rate_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('network'),
    )

    op.create_table(
        'ledger_network_rewards',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('network', network_enum, nullable=False),
        sa.Column('reward_amount', sa.Numeric(30, 10), nullable=False),
        sa.Column('commission_percent', sa.Numeric(5, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('reward_amount >= 0', name='ck_ledger_default_reward_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('level', 'network', name='uq_ledger_network_reward_level'),
    )

    op.create_table(
        'ledger_topup_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('crypto_amount', sa.Numeric(30, 10), nullable=True),
        sa.Column('cryptocurrency', network_enum, nullable=False),
        sa.Column('status', topup_status_enum, nullable=False),
        sa.Column('payment_status', payment_status_enum, nullable=False),
        sa.Column('confirmations', sa.Integer(), nullable=False),
        sa.Column('required_confirmations', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=True),
        sa.Column('payment_address', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tx_hash', sa.String(), nullable=True),
        sa.Column('approved_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('processed_by', sa.String(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_ledger_topup_amount_positive'),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ledger_topup_requests_account_id', 'ledger_topup_requests', ['account_id'])
    op.create_index(
        'ix_ledger_topup_requests_session_id', 'ledger_topup_requests', ['session_id'], unique=True
    )
    op.create_index('ix_ledger_topup_requests_tx_hash', 'ledger_topup_requests', ['tx_hash'])
    op.create_index(
        'ix_ledger_topups_status_created', 'ledger_topup_requests', ['status', 'created_at']
    )

    op.create_table(
        'ledger_withdraw_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('wallet_address', sa.String(), nullable=True),
        sa.Column('networks', sa.JSON(), nullable=False),
        sa.Column('network_rewards', sa.JSON(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=True),
        sa.Column('commission_paid', sa.Numeric(18, 2), nullable=False),
        sa.Column('is_direct_balance_withdraw', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('add_to_balance', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('rewards_added_to_balance', sa.Numeric(18, 2), nullable=True),
        sa.Column('withdraw_all', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('status', withdraw_status_enum, nullable=False),
        sa.Column('confirmed_wallet', sa.String(), nullable=True),
        sa.Column('confirmed_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('processed_by', sa.String(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_ledger_withdraw_amount_non_negative'),
        sa.CheckConstraint(
            'commission_paid >= 0', name='ck_ledger_withdraw_commission_non_negative'
        ),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_ledger_withdraw_requests_account_id', 'ledger_withdraw_requests', ['account_id']
    )
    op.create_index(
        'ix_ledger_withdraws_account_level', 'ledger_withdraw_requests', ['account_id', 'level']
    )

    op.create_table(
        'ledger_tier_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('requested_tier', sa.Integer(), nullable=False),
        sa.Column('current_tier', sa.Integer(), nullable=False),
        sa.Column('status', tier_request_status_enum, nullable=False),
        sa.Column('reviewed_by', sa.String(), nullable=True),
        sa.Column('admin_note', sa.Text(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            'requested_tier >= 1 AND requested_tier <= 5', name='ck_ledger_tier_request_range'
        ),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ledger_tier_requests_account_id', 'ledger_tier_requests', ['account_id'])

    op.create_table(
        'ledger_balance_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('idempotency_key', sa.String(), nullable=False),
        sa.Column('entry_type', entry_type_enum, nullable=False),
        sa.Column('direction', entry_direction_enum, nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('balance_before', sa.Numeric(18, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(18, 2), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('reference_type', sa.String(), nullable=True),
        sa.Column('reference_id', sa.String(), nullable=True),
        sa.Column('initiated_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_ledger_entry_amount_positive'),
        sa.ForeignKeyConstraint(['account_id'], ['ledger_accounts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_ledger_balance_entries_account_id', 'ledger_balance_entries', ['account_id']
    )
    op.create_index(
        'ix_ledger_balance_entries_idempotency_key',
        'ledger_balance_entries',
        ['idempotency_key'],
        unique=True,
    )
    op.create_index(
        'ix_ledger_entries_account_created', 'ledger_balance_entries', ['account_id', 'created_at']
    )


def downgrade() -> None:
    """Downgrade schema - Drop ledger service tables."""
    op.drop_table('ledger_balance_entries')
    op.drop_table('ledger_tier_requests')
    op.drop_table('ledger_withdraw_requests')
    op.drop_table('ledger_topup_requests')
    op.drop_table('ledger_network_rewards')
    op.drop_table('ledger_conversion_rates')
    op.drop_table('ledger_account_network_rewards')
    op.drop_table('ledger_account_levels')
    op.drop_table('ledger_accounts')

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
