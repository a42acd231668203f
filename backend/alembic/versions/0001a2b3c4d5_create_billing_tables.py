"""create accounts, subscriptions and usage tables

Revision ID: 0001a2b3c4d5
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001a2b3c4d5'
down_revision = None
branch_labels = None
depends_on = None

SUBSCRIPTION_STATUSES = ('TRIAL', 'ACTIVE', 'PAST_DUE', 'CANCELED', 'UNPAID')
SUBSCRIPTION_PLANS = ('STARTER', 'PRO', 'BUSINESS')


def upgrade() -> None:
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, comment='表示名'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'], unique=True)

    # subscriptions テーブル (アカウントごとに1行)
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('provider_customer_id', sa.String(255), nullable=True, comment='Stripe Customer ID'),
        sa.Column('provider_subscription_id', sa.String(255), nullable=True,
                  comment='Stripe Subscription ID (有料購読中のみ)'),
        sa.Column('status', sa.Enum(*SUBSCRIPTION_STATUSES, name='subscription_status'), nullable=False),
        sa.Column('plan', sa.Enum(*SUBSCRIPTION_PLANS, name='subscription_plan'), nullable=False),
        sa.Column('resource_limits', sa.JSON(), nullable=True, comment='planと同時に書き込む上限スナップショット'),
        sa.Column('billing_period', sa.String(10), nullable=True, comment='monthly / yearly'),
        sa.Column('trial_ends_at', sa.DateTime(), nullable=True),
        sa.Column('current_period_start', sa.DateTime(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('provider_event_id', sa.String(255), nullable=True, comment='最後に適用したStripeイベントID'),
        sa.Column('provider_event_at', sa.DateTime(), nullable=True, comment='最後に適用したStripeイベントの発生日時'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_customer_id'),
        sa.UniqueConstraint('provider_subscription_id'),
    )
    op.create_index('ix_subscriptions_account_id', 'subscriptions', ['account_id'], unique=True)

    # 使用量集計の対象テーブル (論理削除)
    op.create_table(
        'properties',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, comment='物件名'),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True, comment='論理削除日時'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_properties_account_id', 'properties', ['account_id'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('occurred_on', sa.Date(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True, comment='論理削除日時'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_transactions_account_id', 'transactions', ['account_id'])
    op.create_index('ix_transactions_property_id', 'transactions', ['property_id'])

    op.create_table(
        'documents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=True),
        sa.Column('filename', sa.String(255), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('deleted_at', sa.DateTime(), nullable=True, comment='論理削除日時'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_documents_account_id', 'documents', ['account_id'])
    op.create_index('ix_documents_property_id', 'documents', ['property_id'])


def downgrade() -> None:
    op.drop_index('ix_documents_property_id', table_name='documents')
    op.drop_index('ix_documents_account_id', table_name='documents')
    op.drop_table('documents')
    op.drop_index('ix_transactions_property_id', table_name='transactions')
    op.drop_index('ix_transactions_account_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('ix_properties_account_id', table_name='properties')
    op.drop_table('properties')
    op.drop_index('ix_subscriptions_account_id', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_index('ix_accounts_email', table_name='accounts')
    op.drop_table('accounts')
