"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 03:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('telegram_id', sa.BigInteger(), autoincrement=False, nullable=False, comment='Telegram user ID'),
        sa.Column('username', sa.String(length=255), nullable=True, comment='Telegram username without @'),
        sa.Column('first_name', sa.String(length=255), nullable=True, comment='User first name'),
        sa.Column('last_name', sa.String(length=255), nullable=True, comment='User last name'),
        sa.Column('language_code', sa.String(length=10), nullable=False, server_default='en', comment='Telegram language code'),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false(), comment='Informational admin flag'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='User registration timestamp'),
        sa.Column('last_activity', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Last user activity timestamp'),
        sa.PrimaryKeyConstraint('telegram_id'),
    )
    op.create_index('ix_users_username', 'users', ['username'])

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['parent_id'], ['categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_categories_parent_id', 'categories', ['parent_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False, comment='Price in USD'),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_category_id', 'products', ['category_id'])

    op.create_table(
        'wallet_addresses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('address', sa.String(length=128), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=True),
        sa.Column('tag', sa.String(length=64), nullable=True),
        sa.Column('added_by', sa.BigInteger(), nullable=True),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_wallet_addresses_currency', 'wallet_addresses', ['currency'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='Buyer telegram id'),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False, comment='USD price snapshot'),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_product_id', 'orders', ['product_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])

    op.create_table(
        'detected_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('txid', sa.String(length=128), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('address', sa.String(length=128), nullable=False),
        sa.Column('amount', sa.String(length=32), nullable=False, server_default='0', comment='Coin units, 8 decimals'),
        sa.Column('confirmations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('block_height', sa.Integer(), nullable=True),
        sa.Column('first_seen_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('txid'),
    )
    op.create_index('ix_detected_transactions_address', 'detected_transactions', ['address'])

    op.create_table(
        'removed_users_ledger',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('telegram_id', sa.BigInteger(), nullable=False),
        sa.Column('username', sa.String(length=255), nullable=True),
        sa.Column('first_name', sa.String(length=255), nullable=True),
        sa.Column('last_name', sa.String(length=255), nullable=True),
        sa.Column('language_code', sa.String(length=10), nullable=True),
        sa.Column('original_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_activity', sa.DateTime(timezone=True), nullable=True),
        sa.Column('removal_reason', sa.String(length=255), nullable=False),
        sa.Column('removal_category', sa.String(length=32), nullable=False),
        sa.Column('api_error_message', sa.Text(), nullable=True),
        sa.Column('removed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('removed_on', sa.Date(), nullable=False, comment='UTC date of removal, part of the upsert key'),
        sa.Column('restored_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('telegram_id', 'removed_on', name='uq_ledger_user_day'),
    )
    op.create_index('ix_removed_users_ledger_telegram_id', 'removed_users_ledger', ['telegram_id'])
    op.create_index('ix_removed_users_ledger_removal_category', 'removed_users_ledger', ['removal_category'])
    op.create_index('ix_removed_users_ledger_removed_at', 'removed_users_ledger', ['removed_at'])
    op.create_index('ix_ledger_category_restored', 'removed_users_ledger', ['removal_category', 'restored_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_ledger_category_restored', table_name='removed_users_ledger')
    op.drop_index('ix_removed_users_ledger_removed_at', table_name='removed_users_ledger')
    op.drop_index('ix_removed_users_ledger_removal_category', table_name='removed_users_ledger')
    op.drop_index('ix_removed_users_ledger_telegram_id', table_name='removed_users_ledger')
    op.drop_table('removed_users_ledger')

    op.drop_index('ix_detected_transactions_address', table_name='detected_transactions')
    op.drop_table('detected_transactions')

    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_product_id', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_wallet_addresses_currency', table_name='wallet_addresses')
    op.drop_table('wallet_addresses')

    op.drop_index('ix_products_category_id', table_name='products')
    op.drop_table('products')

    op.drop_index('ix_categories_parent_id', table_name='categories')
    op.drop_table('categories')

    op.drop_index('ix_users_username', table_name='users')
    op.drop_table('users')
