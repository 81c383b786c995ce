"""Create customer_mappings, orders and subscriptions tables

Revision ID: 7c2e91d4a0b3
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c2e91d4a0b3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('customer_mappings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('local_user_id', sa.String(length=255), nullable=True),
        sa.Column('external_customer_id', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_customer_id')
    )
    op.create_index('ix_customer_mappings_local_user_id', 'customer_mappings', ['local_user_id'], unique=False)
    op.create_index(
        'uq_customer_mappings_live_user', 'customer_mappings', ['local_user_id'], unique=True,
        sqlite_where=sa.text('deleted_at IS NULL'),
        postgresql_where=sa.text('deleted_at IS NULL'),
    )

    op.create_table('orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('checkout_session_id', sa.String(length=255), nullable=False),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('external_customer_id', sa.String(length=255), nullable=False),
        sa.Column('amount_subtotal', sa.BigInteger(), nullable=False),
        sa.Column('amount_total', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('payment_status', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('checkout_session_id')
    )
    op.create_index('ix_orders_external_customer_id', 'orders', ['external_customer_id'], unique=False)

    op.create_table('subscriptions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_customer_id', sa.String(length=255), nullable=False),
        sa.Column('subscription_id', sa.String(length=255), nullable=True),
        sa.Column('price_id', sa.String(length=255), nullable=True),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payment_method_brand', sa.String(length=50), nullable=True),
        sa.Column('payment_method_last4', sa.String(length=4), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='not_started'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_customer_id')
    )


def downgrade():
    op.drop_table('subscriptions')
    op.drop_index('ix_orders_external_customer_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('uq_customer_mappings_live_user', table_name='customer_mappings')
    op.drop_index('ix_customer_mappings_local_user_id', table_name='customer_mappings')
    op.drop_table('customer_mappings')
