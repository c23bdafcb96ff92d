"""Create feedback_event table

Revision ID: 005
Revises: 004
Create Date: 2026-09-14 10:40:00.000000

Audit trail of review decisions (MATCH_APPROVED, MATCH_REJECTED).
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '005'
down_revision = '004'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'feedback_event',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('actor', sa.Text(), nullable=True),
        sa.Column('event_type', sa.Text(), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('training_example_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('query_text', sa.Text(), nullable=True),
        sa.Column('before_json', postgresql.JSONB(), nullable=True),
        sa.Column('after_json', postgresql.JSONB(), nullable=True),
        sa.Column('meta_json', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.CheckConstraint("event_type IN ('MATCH_APPROVED', 'MATCH_REJECTED')", name='ck_feedback_event_type'),
    )

    op.create_index(
        'idx_feedback_event_org_created',
        'feedback_event',
        ['org_id', sa.text('created_at DESC')]
    )
    op.create_index(
        'idx_feedback_event_org_type_created',
        'feedback_event',
        ['org_id', 'event_type', sa.text('created_at DESC')]
    )


def downgrade() -> None:
    op.drop_index('idx_feedback_event_org_type_created', table_name='feedback_event')
    op.drop_index('idx_feedback_event_org_created', table_name='feedback_event')
    op.drop_table('feedback_event')
