"""initial backoffice tables

Revision ID: 0001_initial_backoffice
Revises: 
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_backoffice'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table('permission_groups',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False, unique=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('grants', sa.JSON(), nullable=False),
        sa.Column('catalog_version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps()
    )

    op.create_table('credentials',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_credentials_email', 'credentials', ['email'])

    op.create_table('principals',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('credential_id', sa.String(length=64), sa.ForeignKey('credentials.id', ondelete='SET NULL'), nullable=True),
        sa.Column('permission_group_id', sa.String(length=64), sa.ForeignKey('permission_groups.id'), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps()
    )
    op.create_index('ix_principals_email', 'principals', ['email'])
    op.create_index('ix_principals_permission_group_id', 'principals', ['permission_group_id'])

    # primary key on key makes the bootstrap claim a create-if-absent insert
    op.create_table('system_state',
        sa.Column('key', sa.String(length=64), primary_key=True),
        sa.Column('principal_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('ledger_entries',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('pnr', sa.String(length=32), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('source', sa.String(length=128), nullable=False),
        sa.Column('beneficiary', sa.String(length=128), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('source_currency', sa.String(length=3), nullable=True),
        sa.Column('beneficiary_currency', sa.String(length=3), nullable=True),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=False, server_default=''),
        sa.Column('audit_checked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('entry_checked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        *_timestamps()
    )
    op.create_index('ix_ledger_entries_pnr', 'ledger_entries', ['pnr'])
    op.create_index('ix_ledger_entries_kind', 'ledger_entries', ['kind'])
    op.create_index('ix_ledger_entries_beneficiary', 'ledger_entries', ['beneficiary'])
    op.create_index('ix_ledger_entries_currency', 'ledger_entries', ['currency'])

    op.create_table('passenger_lines',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('entry_id', sa.String(length=64), sa.ForeignKey('ledger_entries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(length=128), nullable=False, server_default=''),
        sa.Column('passport_number', sa.String(length=64), nullable=False, server_default=''),
        sa.Column('passenger_type', sa.String(length=16), nullable=False, server_default='adult'),
        sa.Column('purchase_price', sa.String(length=40), nullable=False),
        sa.Column('sale_price', sa.String(length=40), nullable=False),
        sa.Column('ticket_number', sa.String(length=64), nullable=False, server_default=''),
    )
    op.create_index('ix_passenger_lines_entry_id', 'passenger_lines', ['entry_id'])

    op.create_table('removed_ledger_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('original_id', sa.String(length=64), nullable=False),
        sa.Column('snapshot', sa.JSON(), nullable=False),
        sa.Column('removed_by', sa.String(length=64), nullable=True),
        sa.Column('removed_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_removed_ledger_entries_original_id', 'removed_ledger_entries', ['original_id'])

    op.create_table('exchange_rates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rate', sa.String(length=40), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('recorded_by', sa.String(length=64), nullable=True),
    )
    op.create_index('ix_exchange_rates_recorded_at', 'exchange_rates', ['recorded_at'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_principal_id', sa.String(length=64), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_actor_principal_id', 'audit_logs', ['actor_principal_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity', 'entity_id'])


def downgrade():
    for table in ('audit_logs', 'exchange_rates', 'removed_ledger_entries', 'passenger_lines',
                  'ledger_entries', 'system_state', 'principals', 'credentials', 'permission_groups'):
        op.drop_table(table)
