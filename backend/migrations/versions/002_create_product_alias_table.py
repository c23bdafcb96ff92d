"""Create product_alias table

Revision ID: 002
Revises: 001
Create Date: 2026-09-14 10:10:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'product_alias',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('alias_name', sa.Text(), nullable=False),
        sa.Column('alias_name_norm', sa.Text(), nullable=False),
        sa.Column('alias_sku', sa.Text(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='1.0'),
        sa.Column('source', sa.Text(), nullable=False, server_default='MANUAL'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['product.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('org_id', 'product_id', 'alias_name_norm', name='uq_product_alias_org_product_norm'),
        sa.CheckConstraint('confidence >= 0 AND confidence <= 1', name='ck_product_alias_confidence'),
        sa.CheckConstraint("source IN ('MANUAL', 'LEARNED')", name='ck_product_alias_source'),
    )

    op.create_index('ix_product_alias_org_id', 'product_alias', ['org_id'])
    op.create_index('ix_product_alias_product_id', 'product_alias', ['product_id'])

    op.execute("""
        CREATE TRIGGER update_product_alias_updated_at
        BEFORE UPDATE ON product_alias
        FOR EACH ROW
        EXECUTE FUNCTION update_updated_at_column();
    """)


def downgrade():
    op.execute('DROP TRIGGER IF EXISTS update_product_alias_updated_at ON product_alias')
    op.drop_index('ix_product_alias_product_id', table_name='product_alias')
    op.drop_index('ix_product_alias_org_id', table_name='product_alias')
    op.drop_table('product_alias')
