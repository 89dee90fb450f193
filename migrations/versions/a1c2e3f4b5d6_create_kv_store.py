"""create kv_store table

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = 'a1c2e3f4b5d6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'kv_store',
        sa.Column('key', sa.String(255), primary_key=True),
        sa.Column('value_json', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade():
    op.drop_table('kv_store')
