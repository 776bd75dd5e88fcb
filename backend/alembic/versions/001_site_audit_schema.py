"""Site audit schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy persists enum member names
AUDIT_STATUS = ('PENDING', 'CRAWLING', 'BATCH_COMPLETE', 'CHECKING', 'COMPLETED', 'FAILED', 'STOPPED')
CHECK_TYPE = ('SEO', 'AI_READINESS', 'TECHNICAL')
CHECK_PRIORITY = ('CRITICAL', 'RECOMMENDED', 'OPTIONAL')
CHECK_STATUS = ('PASSED', 'FAILED', 'WARNING')


def upgrade() -> None:
    # Create site_audits table
    op.create_table(
        'site_audits',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('url', sa.Text, nullable=False),
        sa.Column('status', sa.Enum(*AUDIT_STATUS, name='auditstatus'),
                  nullable=False, server_default='PENDING'),
        sa.Column('current_batch', sa.Integer, nullable=False, server_default='0'),
        sa.Column('use_relaxed_ssl', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('urls_discovered', sa.Integer, nullable=False, server_default='0'),
        sa.Column('pages_crawled', sa.Integer, nullable=False, server_default='0'),
        sa.Column('overall_score', sa.Integer),
        sa.Column('seo_score', sa.Integer),
        sa.Column('ai_readiness_score', sa.Integer),
        sa.Column('technical_score', sa.Integer),
        sa.Column('failed_count', sa.Integer),
        sa.Column('warning_count', sa.Integer),
        sa.Column('passed_count', sa.Integer),
        sa.Column('executive_summary', sa.Text),
        sa.Column('error_message', sa.Text),
        sa.Column('started_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_site_audits_id', 'site_audits', ['id'])
    op.create_index('ix_site_audits_organization_id', 'site_audits', ['organization_id'])
    op.create_index('ix_site_audits_status', 'site_audits', ['status'])

    # Create site_audit_pages table
    op.create_table(
        'site_audit_pages',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('audit_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('site_audits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('url', sa.Text, nullable=False),
        sa.Column('status_code', sa.Integer),
        sa.Column('title', sa.Text),
        sa.Column('meta_description', sa.Text),
        sa.Column('last_modified', sa.DateTime(timezone=True)),
        sa.Column('is_resource', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('resource_type', sa.String(20)),
        sa.Column('fetch_error', sa.Text),
        sa.Column('crawled_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_site_audit_pages_id', 'site_audit_pages', ['id'])
    op.create_index('ix_site_audit_pages_audit_id', 'site_audit_pages', ['audit_id'])

    # Create site_audit_checks table
    op.create_table(
        'site_audit_checks',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('audit_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('site_audits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('page_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('site_audit_pages.id', ondelete='CASCADE'), nullable=True),
        sa.Column('check_type', sa.Enum(*CHECK_TYPE, name='checktype'), nullable=False),
        sa.Column('check_name', sa.String(100), nullable=False),
        sa.Column('priority', sa.Enum(*CHECK_PRIORITY, name='checkpriority'), nullable=False),
        sa.Column('status', sa.Enum(*CHECK_STATUS, name='checkstatus'), nullable=False),
        sa.Column('details', postgresql.JSONB, server_default='{}'),
        sa.Column('display_name', sa.String(200)),
        sa.Column('display_name_passed', sa.String(200)),
        sa.Column('learn_more_url', sa.Text),
        sa.Column('is_site_wide', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('description', sa.Text),
        sa.Column('fix_guidance', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_site_audit_checks_id', 'site_audit_checks', ['id'])
    op.create_index('ix_site_audit_checks_audit_id', 'site_audit_checks', ['audit_id'])
    op.create_index('ix_site_audit_checks_page_id', 'site_audit_checks', ['page_id'])

    # Create site_audit_crawl_queue table
    op.create_table(
        'site_audit_crawl_queue',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('audit_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('site_audits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('url', sa.Text, nullable=False),
        sa.Column('depth', sa.Integer, nullable=False, server_default='0'),
        sa.Column('discovered_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('crawled_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('audit_id', 'url', name='uq_crawl_queue_audit_url'),
    )
    op.create_index('ix_site_audit_crawl_queue_id', 'site_audit_crawl_queue', ['id'])
    op.create_index('ix_site_audit_crawl_queue_audit_id', 'site_audit_crawl_queue', ['audit_id'])

    # Create dismissed_checks table
    op.create_table(
        'dismissed_checks',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('check_name', sa.String(100), nullable=False),
        sa.Column('url', sa.Text, nullable=False),
        sa.Column('dismissed_by', postgresql.UUID(as_uuid=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'check_name', 'url', name='uq_dismissed_check'),
    )
    op.create_index('ix_dismissed_checks_id', 'dismissed_checks', ['id'])
    op.create_index('ix_dismissed_checks_organization_id', 'dismissed_checks', ['organization_id'])


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('dismissed_checks')
    op.drop_table('site_audit_crawl_queue')
    op.drop_table('site_audit_checks')
    op.drop_table('site_audit_pages')
    op.drop_table('site_audits')

    # Drop enum types
    op.execute('DROP TYPE IF EXISTS checkstatus')
    op.execute('DROP TYPE IF EXISTS checkpriority')
    op.execute('DROP TYPE IF EXISTS checktype')
    op.execute('DROP TYPE IF EXISTS auditstatus')
