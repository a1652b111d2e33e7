"""create check pipeline tables

Revision ID: 5f3a9c1e2b7d
Revises:
Create Date: 2026-10-19 10:12:31.208114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5f3a9c1e2b7d'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    """Upgrade schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS pg_trgm')
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    op.create_table('organizations',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('plan', sa.String(), nullable=False, server_default='trial'),
    sa.Column('max_checks', sa.Integer(), nullable=False, server_default='100'),
    sa.Column('used_checks', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('dictionaries',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('organization_id', sa.UUID(), nullable=False),
    sa.Column('phrase', sa.Text(), nullable=False),
    sa.Column('category', sa.String(), nullable=False, server_default='NG'),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('vector', Vector(EMBEDDING_DIMENSIONS), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.CheckConstraint("category IN ('NG', 'ALLOW')", name='ck_dictionaries_category'),
    sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_dictionaries_organization_category', 'dictionaries', ['organization_id', 'category'])
    op.execute('CREATE INDEX ix_dictionaries_phrase_trgm ON dictionaries USING gin (phrase gin_trgm_ops)')
    op.execute('CREATE INDEX ix_dictionaries_vector_hnsw ON dictionaries USING hnsw (vector vector_cosine_ops)')

    op.create_table('checks',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('organization_id', sa.UUID(), nullable=False),
    sa.Column('user_id', sa.UUID(), nullable=True),
    sa.Column('input_type', sa.String(), nullable=False, server_default='text'),
    sa.Column('original_text', sa.Text(), nullable=False, server_default=''),
    sa.Column('image_url', sa.String(), nullable=True),
    sa.Column('extracted_text', sa.Text(), nullable=True),
    sa.Column('modified_text', sa.Text(), nullable=True),
    sa.Column('status', sa.String(), nullable=False, server_default='pending'),
    sa.Column('ocr_status', sa.String(), nullable=True),
    sa.Column('ocr_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
    sa.CheckConstraint("status IN ('pending', 'processing', 'completed', 'failed')", name='ck_checks_status'),
    sa.CheckConstraint("input_type IN ('text', 'image')", name='ck_checks_input_type'),
    sa.CheckConstraint("ocr_status IS NULL OR input_type = 'image'", name='ck_checks_ocr_status_image_only'),
    sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_checks_organization_status', 'checks', ['organization_id', 'status'])

    op.create_table('violations',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('check_id', sa.UUID(), nullable=False),
    sa.Column('start_pos', sa.Integer(), nullable=False),
    sa.Column('end_pos', sa.Integer(), nullable=False),
    sa.Column('reason', sa.Text(), nullable=False),
    sa.Column('dictionary_id', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default='NOW()', nullable=False),
    sa.CheckConstraint('start_pos >= 0 AND end_pos >= start_pos', name='ck_violations_offsets'),
    sa.ForeignKeyConstraint(['check_id'], ['checks.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['dictionary_id'], ['dictionaries.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_violations_check_id', 'violations', ['check_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_violations_check_id', table_name='violations')
    op.drop_table('violations')
    op.drop_index('ix_checks_organization_status', table_name='checks')
    op.drop_table('checks')
    op.execute('DROP INDEX IF EXISTS ix_dictionaries_vector_hnsw')
    op.execute('DROP INDEX IF EXISTS ix_dictionaries_phrase_trgm')
    op.drop_index('ix_dictionaries_organization_category', table_name='dictionaries')
    op.drop_table('dictionaries')
    op.drop_table('organizations')
