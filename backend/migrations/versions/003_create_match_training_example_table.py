"""Create match_training_example table

Revision ID: 003
Revises: 002
Create Date: 2026-09-14 10:20:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '003'
down_revision = '002'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'match_training_example',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('query_text', sa.Text(), nullable=False),
        sa.Column('query_norm', sa.Text(), nullable=False),
        sa.Column('product_sku', sa.Text(), nullable=True),
        sa.Column('product_name', sa.Text(), nullable=True),
        sa.Column('trigram_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('fuzzy_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('alias_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('vector_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('final_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('quality', sa.Text(), nullable=False, server_default='good'),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0.8'),
        sa.Column('weight', sa.Float(), nullable=False, server_default='1.0'),
        sa.Column('times_referenced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('source', sa.Text(), nullable=False, server_default='APPROVAL'),
        sa.Column('approved_by', sa.Text(), nullable=True),
        sa.Column('approved_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('last_referenced_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['product.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('org_id', 'query_norm', 'product_id', name='uq_training_org_norm_product'),
        sa.CheckConstraint("quality IN ('excellent', 'good', 'fair', 'poor')", name='ck_training_quality'),
        sa.CheckConstraint('confidence >= 0 AND confidence <= 1', name='ck_training_confidence'),
        sa.CheckConstraint('weight >= 0', name='ck_training_weight'),
    )

    op.create_index('ix_training_org_id', 'match_training_example', ['org_id'])
    op.create_index('ix_training_org_product', 'match_training_example', ['org_id', 'product_id'])
    op.create_index(
        'idx_training_org_quality_approved',
        'match_training_example',
        ['org_id', 'quality', 'approved_at'],
    )
    op.execute("""
        CREATE INDEX idx_training_query_norm_trgm ON match_training_example
        USING GIN (query_norm gin_trgm_ops)
    """)

    # No updated_at trigger: the application sets updated_at on approvals
    # only, so reference counter updates leave the snapshot version unchanged.


def downgrade():
    op.execute('DROP INDEX IF EXISTS idx_training_query_norm_trgm')
    op.drop_index('idx_training_org_quality_approved', table_name='match_training_example')
    op.drop_index('ix_training_org_product', table_name='match_training_example')
    op.drop_index('ix_training_org_id', table_name='match_training_example')
    op.drop_table('match_training_example')
