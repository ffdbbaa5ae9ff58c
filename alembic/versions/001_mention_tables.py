"""Create mention pipeline tables

Revision ID: 001_mention_tables
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates tenants, users, locations, source_accounts, mentions and replies.
(platform, external_id) is unique on mentions; it is the only dedup key.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_mention_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('tenants',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_name', sa.String(), nullable=False),
        sa.Column('country', sa.String(), nullable=False, server_default='US'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='AGENT'),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'])
    op.create_index('idx_user_tenant_role', 'users', ['tenant_id', 'role'])

    op.create_table('locations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('city', sa.String(), nullable=True),
        sa.Column('country', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_locations_tenant_id', 'locations', ['tenant_id'])

    op.create_table('source_accounts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('location_id', sa.String(length=36), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('account_url', sa.String(), nullable=False),
        sa.Column('polling_frequency_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_scraped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_scrape_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consecutive_failures', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_source_accounts_tenant_id', 'source_accounts', ['tenant_id'])
    op.create_index('ix_source_accounts_location_id', 'source_accounts', ['location_id'])
    op.create_index('ix_source_accounts_platform', 'source_accounts', ['platform'])
    op.create_index('idx_source_account_active_next', 'source_accounts', ['is_active', 'next_scrape_at'])

    op.create_table('mentions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('location_id', sa.String(length=36), nullable=False),
        sa.Column('source_account_id', sa.String(length=36), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('external_id', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('author_name', sa.String(), nullable=True),
        sa.Column('text', sa.Text(), nullable=False, server_default=''),
        sa.Column('stars', sa.Integer(), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='NEW'),
        sa.Column('sentiment', sa.String(), nullable=True),
        sa.Column('intent', sa.String(), nullable=True),
        sa.Column('topics', sa.JSON(), nullable=True),
        sa.Column('risk_score', sa.Integer(), nullable=True),
        sa.Column('virality_probability', sa.Float(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('language', sa.String(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('analysis_failed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('analysis_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.ForeignKeyConstraint(['source_account_id'], ['source_accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('platform', 'external_id', name='uq_mention_platform_external_id')
    )
    op.create_index('ix_mentions_tenant_id', 'mentions', ['tenant_id'])
    op.create_index('ix_mentions_source_account_id', 'mentions', ['source_account_id'])
    op.create_index('ix_mentions_status', 'mentions', ['status'])
    op.create_index('ix_mentions_created_at', 'mentions', ['created_at'])
    op.create_index('idx_mention_tenant_status', 'mentions', ['tenant_id', 'status'])
    op.create_index('idx_mention_unprocessed', 'mentions', ['processed_at', 'analysis_failed'])

    op.create_table('replies',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('mention_id', sa.String(length=36), nullable=False),
        sa.Column('suggested_text', sa.Text(), nullable=False),
        sa.Column('tone', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='DRAFT'),
        sa.Column('assigned_user_id', sa.String(length=36), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['mention_id'], ['mentions.id'], ),
        sa.ForeignKeyConstraint(['assigned_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_replies_mention_id', 'replies', ['mention_id'])


def downgrade():
    op.drop_index('ix_replies_mention_id', table_name='replies')
    op.drop_table('replies')

    op.drop_index('idx_mention_unprocessed', table_name='mentions')
    op.drop_index('idx_mention_tenant_status', table_name='mentions')
    op.drop_index('ix_mentions_created_at', table_name='mentions')
    op.drop_index('ix_mentions_status', table_name='mentions')
    op.drop_index('ix_mentions_source_account_id', table_name='mentions')
    op.drop_index('ix_mentions_tenant_id', table_name='mentions')
    op.drop_table('mentions')

    op.drop_index('idx_source_account_active_next', table_name='source_accounts')
    op.drop_index('ix_source_accounts_platform', table_name='source_accounts')
    op.drop_index('ix_source_accounts_location_id', table_name='source_accounts')
    op.drop_index('ix_source_accounts_tenant_id', table_name='source_accounts')
    op.drop_table('source_accounts')

    op.drop_index('ix_locations_tenant_id', table_name='locations')
    op.drop_table('locations')

    op.drop_index('idx_user_tenant_role', table_name='users')
    op.drop_index('ix_users_tenant_id', table_name='users')
    op.drop_table('users')

    op.drop_table('tenants')
