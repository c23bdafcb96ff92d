"""Create product table

Revision ID: 001
Revises:
Create Date: 2026-09-14 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Ensure required extensions exist
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')
    op.execute('CREATE EXTENSION IF NOT EXISTS "pg_trgm"')

    # Reusable updated_at trigger function
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
          NEW.updated_at = NOW();
          RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.create_table(
        'product',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('sku', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('manufacturer', sa.Text(), nullable=True),
        sa.Column('category', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'sku', name='uq_product_org_sku'),
    )

    op.create_index('ix_product_org_id', 'product', ['org_id'])
    op.create_index('idx_product_org_active', 'product', ['org_id', 'active'])

    # Trigram index for catalog tooling and ad-hoc similarity() queries
    op.execute("""
        CREATE INDEX idx_product_name_trgm ON product
        USING GIN (name gin_trgm_ops)
    """)

    op.execute("""
        CREATE TRIGGER update_product_updated_at
        BEFORE UPDATE ON product
        FOR EACH ROW
        EXECUTE FUNCTION update_updated_at_column();
    """)


def downgrade():
    op.execute('DROP TRIGGER IF EXISTS update_product_updated_at ON product')
    op.execute('DROP INDEX IF EXISTS idx_product_name_trgm')
    op.drop_index('idx_product_org_active', table_name='product')
    op.drop_index('ix_product_org_id', table_name='product')
    op.drop_table('product')
    op.execute('DROP FUNCTION IF EXISTS update_updated_at_column()')
