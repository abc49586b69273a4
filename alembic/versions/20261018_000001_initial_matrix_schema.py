"""Initial matrix schema.

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261018_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.DECIMAL(18, 8)


def upgrade() -> None:
    """Create users, levels, queue, ledger and history tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('wallet_address', sa.String(255), nullable=True),
        sa.Column('referral_code', sa.String(20), nullable=True),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('total_deposited', MONEY, nullable=False, server_default='0', comment='Total spent on quota purchases'),
        sa.Column('total_earned', MONEY, nullable=False, server_default='0'),
        sa.Column('total_bonus', MONEY, nullable=False, server_default='0'),
        sa.Column('total_withdrawn', MONEY, nullable=False, server_default='0'),
        sa.Column('status', sa.String(32), nullable=False, server_default='PENDING'),
        sa.Column('is_kyc_verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('referrer_id', sa.Integer(), nullable=True),
        sa.Column('pin_hash', sa.String(255), nullable=True),
        sa.Column('pin_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pin_locked_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['referrer_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('wallet_address'),
        sa.CheckConstraint('balance >= 0', name='check_user_balance_non_negative'),
        sa.CheckConstraint('total_earned >= 0', name='check_user_total_earned_non_negative'),
        sa.CheckConstraint('total_bonus >= 0', name='check_user_total_bonus_non_negative'),
        sa.CheckConstraint('referrer_id IS NULL OR referrer_id != id', name='check_user_not_self_referred'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_referral_code', 'users', ['referral_code'], unique=True)
    op.create_index('ix_users_status', 'users', ['status'])
    op.create_index('ix_users_referrer_id', 'users', ['referrer_id'])

    op.create_table(
        'levels',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('level_number', sa.Integer(), nullable=False),
        sa.Column('entry_value', MONEY, nullable=False),
        sa.Column('reward_value', MONEY, nullable=False),
        sa.Column('bonus_value', MONEY, nullable=False),
        sa.Column('cash_balance', MONEY, nullable=False, server_default='0'),
        sa.Column('total_cycles', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_users', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_halted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('halted_reason', sa.String(500), nullable=True),
        sa.Column('halted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_cycle_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('cash_balance >= 0', name='check_level_cash_non_negative'),
        sa.CheckConstraint('level_number >= 1 AND level_number <= 10', name='check_level_number_range'),
    )
    op.create_index('ix_levels_level_number', 'levels', ['level_number'], unique=True)

    op.create_table(
        'queue_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('level_number', sa.Integer(), nullable=False),
        sa.Column('quota_number', sa.Integer(), nullable=False),
        sa.Column('entered_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('reentries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('score', sa.DECIMAL(18, 4), nullable=False, server_default='0'),
        sa.Column('cycles_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_earned', MONEY, nullable=False, server_default='0'),
        sa.Column('status', sa.String(32), nullable=False, server_default='WAITING'),
        sa.Column('origin', sa.String(32), nullable=False, server_default='PURCHASE'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['level_number'], ['levels.level_number']),
        sa.UniqueConstraint('user_id', 'level_number', 'quota_number', name='uq_queue_entry_quota'),
        sa.CheckConstraint('reentries >= 0', name='check_queue_entry_reentries'),
    )
    op.create_index(
        'idx_queue_entries_ranking',
        'queue_entries',
        ['level_number', 'status', 'score', 'entered_at'],
    )
    op.create_index(
        'idx_queue_entries_user_level', 'queue_entries', ['user_id', 'level_number', 'status']
    )

    op.create_table(
        'system_funds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reserve', MONEY, nullable=False, server_default='0'),
        sa.Column('operational', MONEY, nullable=False, server_default='0'),
        sa.Column('profit', MONEY, nullable=False, server_default='0'),
        sa.Column('total_in', MONEY, nullable=False, server_default='0'),
        sa.Column('total_out', MONEY, nullable=False, server_default='0'),
        sa.Column('external_in', MONEY, nullable=False, server_default='0'),
        sa.Column('external_out', MONEY, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('reserve >= 0', name='check_funds_reserve_non_negative'),
        sa.CheckConstraint('operational >= 0', name='check_funds_operational_non_negative'),
        sa.CheckConstraint('profit >= 0', name='check_funds_profit_non_negative'),
    )

    op.create_table(
        'jupiter_pool',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('total_deposits', MONEY, nullable=False, server_default='0'),
        sa.Column('total_withdrawals', MONEY, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('balance >= 0', name='check_pool_balance_non_negative'),
    )

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('level_number', sa.Integer(), nullable=True),
        sa.Column('reference_id', sa.String(64), nullable=True, comment='Cycle id or transfer id'),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('idx_transactions_user_type', 'transactions', ['user_id', 'type'])
    op.create_index('idx_transactions_created_at', 'transactions', ['created_at'])
    op.create_index('ix_transactions_reference_id', 'transactions', ['reference_id'])

    op.create_table(
        'cycle_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('cycle_id', sa.String(32), nullable=False),
        sa.Column('level_number', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('queue_entry_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(32), nullable=False),
        sa.Column('amount', MONEY, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['queue_entry_id'], ['queue_entries.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_cycle_history_cycle_id', 'cycle_history', ['cycle_id'])
    op.create_index('ix_cycle_history_user_id', 'cycle_history', ['user_id'])
    op.create_index(
        'idx_cycle_history_level_role', 'cycle_history', ['level_number', 'role', 'created_at']
    )

    op.create_table(
        'bonus_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('referrer_id', sa.Integer(), nullable=False),
        sa.Column('source_user_id', sa.Integer(), nullable=False),
        sa.Column('level_number', sa.Integer(), nullable=False),
        sa.Column('cycle_id', sa.String(32), nullable=False),
        sa.Column('rate', sa.DECIMAL(6, 4), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['referrer_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['source_user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_bonus_history_referrer_id', 'bonus_history', ['referrer_id'])
    op.create_index('ix_bonus_history_cycle_id', 'bonus_history', ['cycle_id'])

    op.create_table(
        'internal_transfers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('from_user_id', sa.Integer(), nullable=False),
        sa.Column('to_user_id', sa.Integer(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['from_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['to_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.CheckConstraint('amount > 0', name='check_transfer_amount_positive'),
        sa.CheckConstraint('from_user_id != to_user_id', name='check_transfer_not_self'),
    )
    op.create_index(
        'idx_internal_transfers_sender_day', 'internal_transfers', ['from_user_id', 'created_at']
    )
    op.create_index('ix_internal_transfers_to_user_id', 'internal_transfers', ['to_user_id'])


def downgrade() -> None:
    """Drop every matrix table."""
    op.drop_table('internal_transfers')
    op.drop_table('bonus_history')
    op.drop_table('cycle_history')
    op.drop_table('transactions')
    op.drop_table('jupiter_pool')
    op.drop_table('system_funds')
    op.drop_table('queue_entries')
    op.drop_table('levels')
    op.drop_table('users')
