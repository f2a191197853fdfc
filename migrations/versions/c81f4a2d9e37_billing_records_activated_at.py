"""billing records: activated_at (event time of the last Activate)

Revision ID: c81f4a2d9e37
Revises: 5b2e8c41d7a0
Create Date: 2026-10-20 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'c81f4a2d9e37'
down_revision = '5b2e8c41d7a0'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('billing_records', sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True))
    # backfill: best available nominal time for rows already active
    op.execute("UPDATE billing_records SET activated_at = updated_at WHERE status = 'active'")


def downgrade():
    op.drop_column('billing_records', 'activated_at')
