"""create arkana combat tables

Revision ID: 3a7c9e1d2b4f
Revises:
Create Date: 2025-10-02 10:12:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3a7c9e1d2b4f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'admin_user' not in existing_tables:
        op.create_table(
            'admin_user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
        )
        op.create_index('ix_admin_user_username', 'admin_user', ['username'], unique=True)

    if 'users' not in existing_tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('sl_uuid', sa.String(length=36), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('universe', sa.String(length=50), nullable=False, server_default='arkana'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint('sl_uuid', 'universe', name='uq_users_sl_uuid_universe'),
        )
        op.create_index('ix_users_sl_uuid', 'users', ['sl_uuid'])

    if 'user_stats' not in existing_tables:
        op.create_table(
            'user_stats',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, unique=True),
            sa.Column('health', sa.Integer(), nullable=False, server_default='100'),
            sa.Column('status', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('last_updated', sa.DateTime(timezone=True), nullable=True),
        )

    if 'arkana_stats' not in existing_tables:
        op.create_table(
            'arkana_stats',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, unique=True),
            sa.Column('character_name', sa.String(length=128), nullable=False),
            sa.Column('race', sa.String(length=64), nullable=True),
            sa.Column('archetype', sa.String(length=64), nullable=True),
            sa.Column('physical', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('dexterity', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('mental', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('perception', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('hit_points', sa.Integer(), nullable=False, server_default='5'),
            sa.Column('max_hp', sa.Integer(), nullable=True),
            sa.Column('registration_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('active_effects', sa.Text(), nullable=True),
            sa.Column('live_stats', sa.Text(), nullable=True),
            sa.Column('passive_effects', sa.Text(), nullable=True),
        )

    if 'events' not in existing_tables:
        op.create_table(
            'events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('type', sa.String(length=100), nullable=False),
            sa.Column('details', sa.Text(), nullable=False),
            sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        )
        op.create_index('ix_events_type', 'events', ['type'])
        op.create_index('ix_events_timestamp', 'events', ['timestamp'])

    if 'arkana_data' not in existing_tables:
        op.create_table(
            'arkana_data',
            sa.Column('id', sa.String(length=128), primary_key=True),
            sa.Column('data_type', sa.String(length=64), nullable=False),
            sa.Column('json_data', sa.Text(), nullable=False),
            sa.Column('order_number', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_arkana_data_data_type', 'arkana_data', ['data_type'])


def downgrade():
    op.drop_index('ix_arkana_data_data_type', table_name='arkana_data')
    op.drop_table('arkana_data')
    op.drop_index('ix_events_timestamp', table_name='events')
    op.drop_index('ix_events_type', table_name='events')
    op.drop_table('events')
    op.drop_table('arkana_stats')
    op.drop_table('user_stats')
    op.drop_index('ix_users_sl_uuid', table_name='users')
    op.drop_table('users')
    op.drop_index('ix_admin_user_username', table_name='admin_user')
    op.drop_table('admin_user')
