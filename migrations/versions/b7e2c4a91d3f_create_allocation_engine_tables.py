"""create allocation engine tables

Revision ID: b7e2c4a91d3f
Revises:
Create Date: 2026-10-19 10:12:41.204517

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = 'b7e2c4a91d3f'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # 1. users
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('pay_cycle', sa.String(length=20), nullable=False, server_default='fortnightly'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    # 2. event_log
    op.create_table(
        'event_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=128), nullable=False),
        sa.Column('payload_json', JSONB, nullable=False),
        sa.Column('occurred_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_event_log_account_id', 'event_log', ['account_id'])
    op.create_index('ix_event_log_event_type', 'event_log', ['event_type'])
    op.create_index('ix_event_log_occurred_at', 'event_log', ['occurred_at'])
    op.create_index('ix_event_log_idempotency_key', 'event_log', ['idempotency_key'], unique=True)

    # 3. income_sources
    op.create_table(
        'income_sources',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('typical_amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('frequency', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('next_pay_date', sa.Date(), nullable=True),
        sa.Column('last_reconciled_date', sa.Date(), nullable=True),
        sa.Column('last_reconciled_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_income_sources_account_id', 'income_sources', ['account_id'])
    op.create_index('ix_income_source_account_active', 'income_sources', ['account_id', 'is_active'])

    # 4. income_allocation_rules (saved plan, per occurrence of the source)
    op.create_table(
        'income_allocation_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('income_source_id', sa.Integer(), nullable=False),
        sa.Column('envelope_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('income_source_id', 'envelope_id', name='uq_income_rule_envelope')
    )
    op.create_index('ix_income_allocation_rules_account_id', 'income_allocation_rules', ['account_id'])
    op.create_index('ix_income_rule_source', 'income_allocation_rules', ['income_source_id', 'position'])

    # 5. envelopes
    op.create_table(
        'envelopes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('subtype', sa.String(length=20), nullable=False),
        sa.Column('target_amount', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('due_frequency', sa.String(length=20), nullable=True),
        sa.Column('priority', sa.String(length=20), nullable=False, server_default='important'),
        sa.Column('current_balance', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('allocation_revision', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_envelopes_account_id', 'envelopes', ['account_id'])

    # 6. envelope_income_allocations (allocation map, per user pay cycle)
    op.create_table(
        'envelope_income_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('envelope_id', sa.Integer(), nullable=False),
        sa.Column('income_source_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('envelope_id', 'income_source_id', name='uq_envelope_income_allocation')
    )
    op.create_index('ix_envelope_income_allocations_account_id', 'envelope_income_allocations', ['account_id'])
    op.create_index('ix_envelope_allocation_source', 'envelope_income_allocations', ['income_source_id'])

    # 7. income_transactions
    op.create_table(
        'income_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('description', sa.String(length=512), nullable=False, server_default=''),
        sa.Column('merchant', sa.String(length=255), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('occurred_on', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='unprocessed'),
        sa.Column('income_source_id', sa.Integer(), nullable=True),
        sa.Column('match_confidence', sa.Float(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_income_transactions_account_id', 'income_transactions', ['account_id'])

    # 8. income_allocations (one per processed transaction; the unique key is the posting guard)
    op.create_table(
        'income_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('source_transaction_id', sa.Integer(), nullable=False),
        sa.Column('income_source_id', sa.Integer(), nullable=False),
        sa.Column('actual_amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('total_allocated', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('unallocated', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('is_reversed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_transaction_id', name='uq_income_allocation_transaction')
    )
    op.create_index('ix_income_allocations_account_id', 'income_allocations', ['account_id'])

    # 9. allocation_postings
    op.create_table(
        'allocation_postings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('allocation_id', sa.Integer(), nullable=False),
        sa.Column('source_transaction_id', sa.Integer(), nullable=False),
        sa.Column('envelope_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('reverses_posting_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reverses_posting_id')
    )
    op.create_index('ix_allocation_postings_account_id', 'allocation_postings', ['account_id'])
    op.create_index('ix_posting_transaction', 'allocation_postings', ['source_transaction_id'])
    op.create_index('ix_posting_envelope', 'allocation_postings', ['envelope_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_posting_envelope', table_name='allocation_postings')
    op.drop_index('ix_posting_transaction', table_name='allocation_postings')
    op.drop_index('ix_allocation_postings_account_id', table_name='allocation_postings')
    op.drop_table('allocation_postings')

    op.drop_index('ix_income_allocations_account_id', table_name='income_allocations')
    op.drop_table('income_allocations')

    op.drop_index('ix_income_transactions_account_id', table_name='income_transactions')
    op.drop_table('income_transactions')

    op.drop_index('ix_envelope_allocation_source', table_name='envelope_income_allocations')
    op.drop_index('ix_envelope_income_allocations_account_id', table_name='envelope_income_allocations')
    op.drop_table('envelope_income_allocations')

    op.drop_index('ix_envelopes_account_id', table_name='envelopes')
    op.drop_table('envelopes')

    op.drop_index('ix_income_rule_source', table_name='income_allocation_rules')
    op.drop_index('ix_income_allocation_rules_account_id', table_name='income_allocation_rules')
    op.drop_table('income_allocation_rules')

    op.drop_index('ix_income_source_account_active', table_name='income_sources')
    op.drop_index('ix_income_sources_account_id', table_name='income_sources')
    op.drop_table('income_sources')

    op.drop_index('ix_event_log_idempotency_key', table_name='event_log')
    op.drop_index('ix_event_log_occurred_at', table_name='event_log')
    op.drop_index('ix_event_log_event_type', table_name='event_log')
    op.drop_index('ix_event_log_account_id', table_name='event_log')
    op.drop_table('event_log')

    op.drop_table('users')
