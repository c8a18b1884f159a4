"""sale templates

Revision ID: 0002_sale_templates
Revises: 0001_initial
Create Date: 2026-10-18 00:00:00.000000

Adds sale_templates: named, reusable sets of sale lines (JSON) with header
defaults and usage tracking.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_sale_templates'
down_revision = '0001_initial'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'sale_templates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('discount_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            'discount_bps >= 0 AND discount_bps <= 10000',
            name='ck_sale_templates_discount_bps',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_templates_user_id', 'sale_templates', ['user_id'])
    op.create_index('ix_sale_templates_customer_id', 'sale_templates', ['customer_id'])
    op.create_index('ix_sale_templates_active_usage', 'sale_templates', ['is_active', 'usage_count'])


def downgrade():
    op.drop_index('ix_sale_templates_active_usage', table_name='sale_templates')
    op.drop_index('ix_sale_templates_customer_id', table_name='sale_templates')
    op.drop_index('ix_sale_templates_user_id', table_name='sale_templates')
    op.drop_table('sale_templates')
