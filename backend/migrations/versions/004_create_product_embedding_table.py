"""Create product_embedding table with pgvector support

Revision ID: 004
Revises: 003
Create Date: 2026-09-14 10:30:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision = '004'
down_revision = '003'
branch_labels = None
depends_on = None


def upgrade():
    # Enable pgvector extension (idempotent)
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    op.create_table(
        'product_embedding',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('embedding_model', sa.String(100), nullable=False),
        sa.Column('embedding_dim', sa.Integer(), nullable=False, server_default='1536'),
        sa.Column('embedding', Vector(1536), nullable=False),
        sa.Column('text_hash', sa.String(64), nullable=False),  # SHA256 hex
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['product.id'], ondelete='CASCADE'),
    )

    # One embedding per product per model (allows model migration)
    op.create_index(
        'idx_product_embedding_unique',
        'product_embedding',
        ['org_id', 'product_id', 'embedding_model'],
        unique=True
    )
    op.create_index('ix_product_embedding_org_id', 'product_embedding', ['org_id'])
    op.create_index('ix_product_embedding_product_id', 'product_embedding', ['product_id'])

    op.execute("""
        CREATE TRIGGER update_product_embedding_updated_at
        BEFORE UPDATE ON product_embedding
        FOR EACH ROW
        EXECUTE FUNCTION update_updated_at_column();
    """)


def downgrade():
    op.execute('DROP TRIGGER IF EXISTS update_product_embedding_updated_at ON product_embedding')
    op.drop_index('ix_product_embedding_product_id', table_name='product_embedding')
    op.drop_index('ix_product_embedding_org_id', table_name='product_embedding')
    op.drop_index('idx_product_embedding_unique', table_name='product_embedding')
    op.drop_table('product_embedding')

    # The vector extension is left installed
