"""Initial migration - organizations, payment buttons, transactions, liquidations, sync ledger and leases

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'payment_buttons',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('api_key', sa.String(255), nullable=False),
        sa.Column('secret_key', sa.String(255), nullable=False),
        sa.Column('organization_id', sa.String(36), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_payment_buttons_organization_id', 'payment_buttons', ['organization_id'])

    op.create_table(
        'liquidations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('liquidation_id', sa.String(255), nullable=False, unique=True),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='ARS'),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('payment_button_id', sa.String(36), sa.ForeignKey('payment_buttons.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_liquidations_payment_button_id', 'liquidations', ['payment_button_id'])
    op.create_index('ix_liquidations_date', 'liquidations', ['date'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('transaction_id', sa.String(255), nullable=False, unique=True),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='ARS'),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('payment_method', sa.String(50), nullable=False),
        sa.Column('quotas', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('expected_pay_date', sa.DateTime(), nullable=True),
        sa.Column('payment_button_id', sa.String(36), sa.ForeignKey('payment_buttons.id'), nullable=False),
        sa.Column('liquidation_id', sa.String(36), sa.ForeignKey('liquidations.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_transactions_payment_button_id', 'transactions', ['payment_button_id'])
    op.create_index('ix_transactions_liquidation_id', 'transactions', ['liquidation_id'])
    op.create_index('ix_transactions_status', 'transactions', ['status'])
    op.create_index('ix_transactions_date', 'transactions', ['date'])

    op.create_table(
        'sync_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('payment_button_id', sa.String(36), sa.ForeignKey('payment_buttons.id'), nullable=True),
        sa.Column('organization_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sync_logs_type_status_created_at', 'sync_logs', ['type', 'status', 'created_at'])
    op.create_index('ix_sync_logs_payment_button_id', 'sync_logs', ['payment_button_id'])

    op.create_table(
        'sync_leases',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('lease_key', sa.String(255), nullable=False),
        sa.Column('owner', sa.String(255), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_sync_leases_lease_key', 'sync_leases', ['lease_key'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_sync_leases_lease_key', table_name='sync_leases')
    op.drop_index('ix_sync_logs_payment_button_id', table_name='sync_logs')
    op.drop_index('ix_sync_logs_type_status_created_at', table_name='sync_logs')

    op.drop_index('ix_transactions_date', table_name='transactions')
    op.drop_index('ix_transactions_status', table_name='transactions')
    op.drop_index('ix_transactions_liquidation_id', table_name='transactions')
    op.drop_index('ix_transactions_payment_button_id', table_name='transactions')

    op.drop_index('ix_liquidations_date', table_name='liquidations')
    op.drop_index('ix_liquidations_payment_button_id', table_name='liquidations')
    op.drop_index('ix_payment_buttons_organization_id', table_name='payment_buttons')

    op.drop_table('sync_leases')
    op.drop_table('sync_logs')
    op.drop_table('transactions')
    op.drop_table('liquidations')
    op.drop_table('payment_buttons')
    op.drop_table('organizations')
