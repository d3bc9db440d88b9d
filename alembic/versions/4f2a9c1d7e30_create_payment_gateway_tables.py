"""Create payment gateway tables

Revision ID: 4f2a9c1d7e30
Revises:
Create Date: 2026-10-18 09:12:41.503117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '4f2a9c1d7e30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # properties, units, leases and invoices are owned by the CRUD schema
    op.create_table(
        'provider_credentials',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('landlord_id', sa.String(length=36), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('environment', sa.String(length=20), nullable=False),
        sa.Column('encrypted_secrets', sa.Text(), nullable=False),
        sa.Column('shortcode', sa.String(length=20), nullable=True),
        sa.Column('till_number', sa.String(length=20), nullable=True),
        sa.Column('shortcode_type', sa.String(length=20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('last_verified_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_provider_credentials_landlord_id', 'provider_credentials', ['landlord_id'])
    op.create_index(
        'ix_credential_lookup', 'provider_credentials', ['landlord_id', 'provider'], unique=True
    )

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('checkout_request_id', sa.String(length=100), nullable=False),
        sa.Column('merchant_request_id', sa.String(length=100), nullable=True),
        sa.Column('phone_number', sa.String(length=20), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('invoice_id', sa.String(length=36), nullable=True),
        sa.Column('tenant_id', sa.String(length=36), nullable=True),
        sa.Column('landlord_id', sa.String(length=36), nullable=True),
        sa.Column('payment_type', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('result_code', sa.String(length=20), nullable=True),
        sa.Column('result_desc', sa.String(length=255), nullable=True),
        sa.Column('receipt_number', sa.String(length=100), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed')", name='ck_transaction_status'
        ),
    )
    op.create_index(
        'ix_transaction_correlation',
        'payment_transactions',
        ['provider', 'checkout_request_id'],
        unique=True,
    )
    op.create_index(
        'ix_payment_transactions_merchant_request_id',
        'payment_transactions',
        ['merchant_request_id'],
    )
    op.create_index('ix_payment_transactions_invoice_id', 'payment_transactions', ['invoice_id'])
    op.create_index('ix_payment_transactions_tenant_id', 'payment_transactions', ['tenant_id'])
    op.create_index('ix_transaction_status', 'payment_transactions', ['status'])

    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('lease_id', sa.String(length=36), nullable=True),
        sa.Column('invoice_id', sa.String(length=36), sa.ForeignKey('invoices.id'), nullable=True),
        sa.Column('landlord_id', sa.String(length=36), nullable=True),
        sa.Column(
            'payment_transaction_id',
            sa.String(length=36),
            sa.ForeignKey('payment_transactions.id'),
            nullable=True,
        ),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('transaction_id', sa.String(length=100), nullable=True),
        sa.Column('payment_reference', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_payment_amount_positive'),
    )
    op.create_index('ix_payments_tenant_id', 'payments', ['tenant_id'])
    op.create_index('ix_payment_transaction', 'payments', ['payment_transaction_id'], unique=True)
    op.create_index(
        'ix_payment_receipt', 'payments', ['transaction_id', 'payment_reference'], unique=True
    )

    op.create_table(
        'tenant_credits',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('landlord_id', sa.String(length=36), nullable=True),
        sa.Column(
            'source_payment_id', sa.String(length=36), sa.ForeignKey('payments.id'), nullable=True
        ),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('balance', sa.Numeric(12, 2), nullable=False),
        sa.Column('source_type', sa.String(length=20), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_credit_amount_positive'),
        sa.CheckConstraint('balance >= 0', name='ck_credit_balance_non_negative'),
        sa.CheckConstraint('balance <= amount', name='ck_credit_balance_within_amount'),
        sa.CheckConstraint(
            "source_type IN ('overpayment', 'refund', 'adjustment', 'manual')",
            name='ck_credit_source_type',
        ),
    )
    op.create_index('ix_tenant_credits_tenant_id', 'tenant_credits', ['tenant_id'])
    op.create_index('ix_tenant_credits_source_payment_id', 'tenant_credits', ['source_payment_id'])

    op.create_table(
        'credit_applications',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column(
            'credit_id', sa.String(length=36), sa.ForeignKey('tenant_credits.id'), nullable=False
        ),
        sa.Column('invoice_id', sa.String(length=36), sa.ForeignKey('invoices.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('applied_by', sa.String(length=36), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_credit_application_positive'),
    )
    op.create_index('ix_credit_applications_credit_id', 'credit_applications', ['credit_id'])
    op.create_index('ix_credit_applications_invoice_id', 'credit_applications', ['invoice_id'])

    op.create_table(
        'payment_allocations',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('payment_id', sa.String(length=36), sa.ForeignKey('payments.id'), nullable=True),
        sa.Column('invoice_id', sa.String(length=36), sa.ForeignKey('invoices.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column(
            'credit_application_id',
            sa.String(length=36),
            sa.ForeignKey('credit_applications.id'),
            nullable=True,
        ),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_allocation_amount_positive'),
    )
    op.create_index('ix_payment_allocations_payment_id', 'payment_allocations', ['payment_id'])
    op.create_index('ix_payment_allocations_invoice_id', 'payment_allocations', ['invoice_id'])

    op.create_table(
        'payment_audit_events',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('event_type', sa.String(length=40), nullable=False),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=True),
        sa.Column('correlation_id', sa.String(length=100), nullable=True),
        sa.Column('source_address', sa.String(length=64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('payload', postgresql.JSONB(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('replay_count', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        'ix_payment_audit_events_correlation_id', 'payment_audit_events', ['correlation_id']
    )
    op.create_index(
        'ix_audit_event_type_status', 'payment_audit_events', ['event_type', 'status']
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('payment_audit_events')
    op.drop_table('payment_allocations')
    op.drop_table('credit_applications')
    op.drop_table('tenant_credits')
    op.drop_table('payments')
    op.drop_table('payment_transactions')
    op.drop_table('provider_credentials')
