"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2025-09-15 00:00:00.000000

This is the baseline migration that creates all tables for the EthicCheck
registry. It corresponds to the models in registry/models.py.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # Enable required extensions
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # Create enums (SQLAlchemy stores enum member names)
    alias_type = postgresql.ENUM(
        'TICKER', 'PRIOR_TICKER', 'BRAND', 'LEGAL_NAME', 'PREVIOUS_NAME', 'OTHER',
        name='aliastype', create_type=True
    )
    alias_type.create(op.get_bind(), checkfirst=True)

    evidence_strength = postgresql.ENUM(
        'LOW', 'MEDIUM', 'HIGH',
        name='evidencestrength', create_type=True
    )
    evidence_strength.create(op.get_bind(), checkfirst=True)

    bds_category = postgresql.ENUM(
        'ECONOMIC_EXPLOITATION', 'EXPLOITATION_OCCUPIED_RESOURCES', 'SETTLEMENT_ENTERPRISE',
        'ISRAELI_CONSTRUCTION_OCCUPIED_LAND', 'SERVICES_TO_SETTLEMENTS', 'OTHER_BDS_ACTIVITIES',
        name='bdscategory', create_type=True
    )
    bds_category.create(op.get_bind(), checkfirst=True)

    final_verdict = postgresql.ENUM(
        'PASS', 'REVIEW', 'EXCLUDED',
        name='finalverdict', create_type=True
    )
    final_verdict.create(op.get_bind(), checkfirst=True)

    confidence_level = postgresql.ENUM(
        'LOW', 'MEDIUM', 'HIGH',
        name='confidencelevel', create_type=True
    )
    confidence_level.create(op.get_bind(), checkfirst=True)

    # Create companies table
    op.create_table(
        'companies',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('name', sa.String(500), nullable=False),
        sa.Column('normalized_name', sa.String(500), nullable=False),
        sa.Column('ticker', sa.String(20)),
        sa.Column('country', sa.String(100)),
        sa.Column('sector', sa.String(200)),
        sa.Column('industry', sa.String(200)),
        sa.Column('description', sa.Text),
        sa.Column('active', sa.Boolean, nullable=False, server_default='true'),
        *_timestamps()
    )

    # Create company_aliases table
    op.create_table(
        'company_aliases',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('company_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('alias', sa.String(500), nullable=False),
        sa.Column('normalized_alias', sa.String(500), nullable=False),
        sa.Column('alias_type', postgresql.ENUM(name='aliastype', create_type=False),
                  nullable=False, server_default='OTHER'),
        *_timestamps()
    )

    # Create tags table
    op.create_table(
        'tags',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('name', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.Text),
        *_timestamps()
    )

    # Create sources table
    op.create_table(
        'sources',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('domain', sa.String(255), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('url', sa.String(1000), nullable=False),
        sa.Column('publisher', sa.String(255)),
        *_timestamps()
    )

    # Create evidence table
    op.create_table(
        'evidence',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('company_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tag_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('tags.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('source_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sources.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('strength', postgresql.ENUM(name='evidencestrength', create_type=False),
                  nullable=False, server_default='MEDIUM'),
        sa.Column('notes', sa.Text),
        sa.Column('bds_category', postgresql.ENUM(name='bdscategory', create_type=False)),
        sa.Column('observed_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()')),
        *_timestamps()
    )

    # Create financials table
    op.create_table(
        'financials',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('company_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sources.id', ondelete='SET NULL')),
        sa.Column('period', sa.String(20), nullable=False),
        sa.Column('market_cap', sa.Float),
        sa.Column('total_assets', sa.Float),
        sa.Column('debt', sa.Float),
        sa.Column('cash_securities', sa.Float),
        sa.Column('short_term_investments', sa.Float),
        sa.Column('receivables', sa.Float),
        *_timestamps()
    )

    # Create screen_results table
    op.create_table(
        'screen_results',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('uuid_generate_v4()')),
        sa.Column('audit_id', sa.String(64), nullable=False, unique=True),
        sa.Column('company_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('companies.id', ondelete='SET NULL')),
        sa.Column('symbol', sa.String(50), nullable=False),
        sa.Column('final_verdict', postgresql.ENUM(name='finalverdict', create_type=False), nullable=False),
        sa.Column('confidence', postgresql.ENUM(name='confidencelevel', create_type=False), nullable=False),
        sa.Column('statuses', postgresql.JSONB, nullable=False),
        sa.Column('reasons', postgresql.JSONB, nullable=False),
        sa.Column('as_of', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('NOW()'))
    )

    # Create indexes
    op.create_index('ix_companies_name', 'companies', ['name'])
    op.create_index('ix_companies_normalized_name', 'companies', ['normalized_name'])
    op.create_index('ix_companies_ticker', 'companies', ['ticker'])
    op.create_index('ix_companies_active', 'companies', ['active'])
    op.create_index('ix_companies_active_name', 'companies', ['active', 'normalized_name'])

    # At most one active holder per ticker
    op.create_index(
        'uq_companies_active_ticker', 'companies', ['ticker'], unique=True,
        postgresql_where=sa.text('active = true AND ticker IS NOT NULL')
    )

    op.create_index('ix_company_aliases_company_id', 'company_aliases', ['company_id'])
    op.create_index('ix_company_aliases_normalized_alias', 'company_aliases', ['normalized_alias'])
    op.create_index('ix_company_alias_type_value', 'company_aliases', ['alias_type', 'alias'])

    op.create_index('ix_sources_domain', 'sources', ['domain'])

    op.create_index('ix_evidence_company_id', 'evidence', ['company_id'])
    op.create_index('ix_evidence_tag_id', 'evidence', ['tag_id'])
    op.create_index('ix_evidence_company_tag', 'evidence', ['company_id', 'tag_id'])

    op.create_index('ix_financials_company_id', 'financials', ['company_id'])
    op.create_index('ix_financials_company_period', 'financials', ['company_id', 'period'])

    op.create_index('ix_screen_results_company_id', 'screen_results', ['company_id'])
    op.create_index('ix_screen_results_symbol', 'screen_results', ['symbol'])
    op.create_index('ix_screen_results_symbol_date', 'screen_results', ['symbol', 'as_of'])

    # Insert reference tags
    op.execute("""
        INSERT INTO tags (name, description)
        VALUES
            ('BDS', 'Involvement in the occupation of Palestinian territory'),
            ('DEFENSE', 'Weapons manufacturing and military contracting'),
            ('SURVEILLANCE', 'Supply of surveillance technology to law enforcement'),
            ('SHARIAH', 'Islamic finance compliance')
        ON CONFLICT (name) DO NOTHING
    """)


def downgrade() -> None:
    """Drop all tables and types."""
    # Drop tables in reverse order
    op.drop_table('screen_results')
    op.drop_table('financials')
    op.drop_table('evidence')
    op.drop_table('sources')
    op.drop_table('tags')
    op.drop_table('company_aliases')
    op.drop_table('companies')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS confidencelevel')
    op.execute('DROP TYPE IF EXISTS finalverdict')
    op.execute('DROP TYPE IF EXISTS bdscategory')
    op.execute('DROP TYPE IF EXISTS evidencestrength')
    op.execute('DROP TYPE IF EXISTS aliastype')
