"""initial licensing schema

Revision ID: 4f1c2a9d7e10
Revises:
Create Date: 2026-10-19 09:12:44.318201

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4f1c2a9d7e10'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    op.create_table(
        'admins',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
    )

    op.create_table(
        'software',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('version', sa.String(length=50), nullable=True),
        sa.Column('announcement', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'key_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('hours', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'software_key_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('software_id', sa.Integer(), nullable=False),
        sa.Column('key_type_id', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['key_type_id'], ['key_types.id']),
        sa.ForeignKeyConstraint(['software_id'], ['software.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('software_id', 'key_type_id', name='uq_software_key_type'),
    )

    op.create_table(
        'salespersons',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('email', sa.String(length=120), nullable=True),
        sa.Column('avatar', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('commission_rate', sa.Numeric(precision=8, scale=4), nullable=False),
        sa.Column('total_sales', sa.Numeric(precision=18, scale=2), server_default=sa.text('0'), nullable=False),
        sa.Column('total_commission', sa.Numeric(precision=18, scale=4), server_default=sa.text('0'), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=True),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('children_count', sa.Integer(), nullable=False),
        sa.Column('agent_code', sa.String(length=20), nullable=True),
        sa.Column('parent_commission_rate', sa.Numeric(precision=8, scale=4), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['parent_id'], ['salespersons.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
        sa.UniqueConstraint('agent_code'),
    )
    op.create_index('idx_salesperson_parent', 'salespersons', ['parent_id'], unique=False)

    op.create_table(
        'salesperson_products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('salesperson_id', sa.Integer(), nullable=False),
        sa.Column('software_id', sa.Integer(), nullable=False),
        sa.Column('key_type_id', sa.Integer(), nullable=False),
        sa.Column('commission_rate', sa.Numeric(precision=8, scale=4), nullable=False),
        sa.Column('key_gen_limit', sa.Integer(), nullable=False),
        sa.Column('keys_generated', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['key_type_id'], ['key_types.id']),
        sa.ForeignKeyConstraint(['salesperson_id'], ['salespersons.id']),
        sa.ForeignKeyConstraint(['software_id'], ['software.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('salesperson_id', 'software_id', 'key_type_id', name='uq_salesperson_product'),
    )

    op.create_table(
        'salesperson_sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('salesperson_id', sa.Integer(), nullable=False),
        sa.Column('software_id', sa.Integer(), nullable=False),
        sa.Column('key_type_id', sa.Integer(), nullable=False),
        sa.Column('sale_code', sa.String(length=64), nullable=True),
        sa.Column('key_count', sa.Integer(), nullable=False),
        sa.Column('sale_amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('commission_rate', sa.Numeric(precision=8, scale=4), nullable=False),
        sa.Column('commission_amount', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('customer_name', sa.String(length=100), nullable=True),
        sa.Column('customer_phone', sa.String(length=20), nullable=True),
        sa.Column('customer_email', sa.String(length=120), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['key_type_id'], ['key_types.id']),
        sa.ForeignKeyConstraint(['salesperson_id'], ['salespersons.id']),
        sa.ForeignKeyConstraint(['software_id'], ['software.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_code'),
    )
    op.create_index('idx_sales_salesperson', 'salesperson_sales', ['salesperson_id'], unique=False)

    op.create_table(
        'keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('key_code', sa.String(length=32), nullable=False),
        sa.Column('key_type_id', sa.Integer(), nullable=False),
        sa.Column('key_type_name', sa.String(length=100), nullable=False),
        sa.Column('hours', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('software_id', sa.Integer(), nullable=False),
        sa.Column('software_name', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=True),
        sa.Column('creator_type', sa.String(length=20), nullable=False),
        sa.Column('salesperson_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('device_info', sa.Text(), nullable=True),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_blacklisted', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['key_type_id'], ['key_types.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['salesperson_sales.id']),
        sa.ForeignKeyConstraint(['salesperson_id'], ['salespersons.id']),
        sa.ForeignKeyConstraint(['software_id'], ['software.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sa.UniqueConstraint('key_code'),
    )
    op.create_index('idx_keys_salesperson', 'keys', ['salesperson_id'], unique=False)
    op.create_index('idx_keys_status', 'keys', ['status'], unique=False)
    op.create_index('idx_keys_software_type', 'keys', ['software_id', 'key_type_id'], unique=False)

    op.create_table(
        'commission_settlements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('settlement_no', sa.String(length=64), nullable=False),
        sa.Column('agent_id', sa.Integer(), nullable=False),
        sa.Column('commission_count', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('approver_id', sa.Integer(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['agent_id'], ['salespersons.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('settlement_no'),
    )

    op.create_table(
        'salesperson_agent_commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('salesperson_id', sa.Integer(), nullable=False),
        sa.Column('agent_id', sa.Integer(), nullable=False),
        sa.Column('agent_level', sa.Integer(), nullable=False),
        sa.Column('original_amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('commission_rate', sa.Numeric(precision=12, scale=8), nullable=False),
        sa.Column('commission_amount', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('settlement_id', sa.Integer(), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['agent_id'], ['salespersons.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['salesperson_sales.id']),
        sa.ForeignKeyConstraint(['salesperson_id'], ['salespersons.id']),
        sa.ForeignKeyConstraint(['settlement_id'], ['commission_settlements.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_agent_commission_agent', 'salesperson_agent_commissions', ['agent_id', 'status'], unique=False)
    op.create_index('idx_agent_commission_sale', 'salesperson_agent_commissions', ['sale_id'], unique=False)

    op.create_table(
        'salesperson_agent_invitations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inviter_id', sa.Integer(), nullable=False),
        sa.Column('invite_code', sa.String(length=20), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('invitee_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['invitee_id'], ['salespersons.id']),
        sa.ForeignKeyConstraint(['inviter_id'], ['salespersons.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invite_code'),
    )


def downgrade():
    op.drop_table('salesperson_agent_invitations')
    op.drop_index('idx_agent_commission_sale', table_name='salesperson_agent_commissions')
    op.drop_index('idx_agent_commission_agent', table_name='salesperson_agent_commissions')
    op.drop_table('salesperson_agent_commissions')
    op.drop_table('commission_settlements')
    op.drop_index('idx_keys_software_type', table_name='keys')
    op.drop_index('idx_keys_status', table_name='keys')
    op.drop_index('idx_keys_salesperson', table_name='keys')
    op.drop_table('keys')
    op.drop_index('idx_sales_salesperson', table_name='salesperson_sales')
    op.drop_table('salesperson_sales')
    op.drop_table('salesperson_products')
    op.drop_index('idx_salesperson_parent', table_name='salespersons')
    op.drop_table('salespersons')
    op.drop_table('software_key_types')
    op.drop_table('key_types')
    op.drop_table('software')
    op.drop_table('admins')
