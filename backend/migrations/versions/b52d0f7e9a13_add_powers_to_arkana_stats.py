"""add powers to arkana_stats

Revision ID: b52d0f7e9a13
Revises: 3a7c9e1d2b4f
Create Date: 2025-10-20 09:40:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b52d0f7e9a13'
down_revision = '3a7c9e1d2b4f'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    if 'arkana_stats' not in set(insp.get_table_names()):
        return

    cols = {c['name'] for c in insp.get_columns('arkana_stats')}
    if 'powers' not in cols:
        op.add_column('arkana_stats', sa.Column('powers', sa.Text(), nullable=True))
        op.execute("UPDATE arkana_stats SET powers = '[]' WHERE powers IS NULL")


def downgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    cols = {c['name'] for c in insp.get_columns('arkana_stats')}
    if 'powers' in cols:
        op.drop_column('arkana_stats', 'powers')
