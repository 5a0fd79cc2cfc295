"""Compliance engine schema

Revision ID: 20261019_0900_compliance_engine
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration creates the compliance engine tables:
- tenants, users, tenant_users: tenancy and notification roles
- clients, document_types, documents, document_versions
- filing_types, filings
- compliance_rule_sets, compliance_rules: weighted rule catalog
- requirement_bundles, requirement_bundle_items: authority checklists
- compliance_scores: one row per (tenant, client)
- notifications: dedup key on (kind, source_id, threshold_days, recipient_user_id)
- audit_logs
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '20261019_0900_compliance_engine'
down_revision = None
branch_labels = None
depends_on = None


RULE_KINDS = ('document_required', 'filing_required', 'document_expiry_check')
AUDIT_ACTIONS = ('compliance_refresh', 'notifications_created')


def _uuid_pk():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _tenant_fk(nullable=False):
    return sa.Column(
        'tenant_id',
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey('tenants.id', ondelete='CASCADE'),
        nullable=nullable,
        index=True,
    )


def upgrade() -> None:
    """Create compliance engine tables."""

    rule_kind = postgresql.ENUM(*RULE_KINDS, name='compliance_rule_kind', create_type=False)
    audit_action = postgresql.ENUM(*AUDIT_ACTIONS, name='audit_action', create_type=False)

    connection = op.get_bind()
    rule_kind.create(connection, checkfirst=True)
    audit_action.create(connection, checkfirst=True)

    # ===========================================
    # TENANCY
    # ===========================================

    op.create_table(
        'tenants',
        _uuid_pk(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'users',
        _uuid_pk(),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'tenant_users',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('role', sa.String(50), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'user_id', name='uq_tenant_users_tenant_user'),
    )

    # ===========================================
    # CLIENTS, DOCUMENTS, FILINGS
    # ===========================================

    op.create_table(
        'clients',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('client_type', sa.String(50), nullable=False),
        sa.Column('sector', sa.String(100), nullable=True),
        sa.Column('risk_level', sa.String(20), nullable=False, server_default='low'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('authorities', postgresql.JSONB(), nullable=False, server_default='[]'),
        *_timestamps(),
    )

    op.create_table(
        'document_types',
        _uuid_pk(),
        _tenant_fk(nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('code', sa.String(50), nullable=True),
        sa.Column('authority', sa.String(50), nullable=True),
        sa.Column('has_expiry', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        'documents',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('clients.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('document_type_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('document_types.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending_review', index=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'document_versions',
        _uuid_pk(),
        sa.Column('document_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('documents.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('version_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_current', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('issue_date', sa.Date(), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True, index=True),
        sa.Column('file_name', sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('document_id', 'version_number', name='uq_document_versions_number'),
    )

    op.create_table(
        'filing_types',
        _uuid_pk(),
        _tenant_fk(nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('code', sa.String(50), nullable=True),
        sa.Column('authority', sa.String(50), nullable=True),
        sa.Column('frequency', sa.String(20), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'filings',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('clients.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('filing_type_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('filing_types.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='draft', index=True),
        sa.Column('period_start', sa.Date(), nullable=True),
        sa.Column('period_end', sa.Date(), nullable=True, index=True),
        sa.Column('reference_number', sa.String(100), nullable=True),
        *_timestamps(),
    )

    # ===========================================
    # RULE CATALOG AND BUNDLES
    # ===========================================

    op.create_table(
        'compliance_rule_sets',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('client_types', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('sectors', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        *_timestamps(),
    )

    op.create_table(
        'compliance_rules',
        _uuid_pk(),
        sa.Column('rule_set_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('compliance_rule_sets.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('kind', rule_kind, nullable=False),
        sa.Column('target_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('weight', sa.Float(), nullable=False, server_default='1.0'),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('weight >= 0 AND weight <= 1', name='ck_compliance_rules_weight_range'),
    )

    op.create_table(
        'requirement_bundles',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('authority', sa.String(50), nullable=False, index=True),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'requirement_bundle_items',
        _uuid_pk(),
        sa.Column('bundle_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('requirement_bundles.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('document_type_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('filing_type_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
    )

    # ===========================================
    # SCORES, NOTIFICATIONS, AUDIT
    # ===========================================

    op.create_table(
        'compliance_scores',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('clients.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('level', sa.String(10), nullable=False, index=True),
        sa.Column('score_value', sa.Numeric(5, 2), nullable=False),
        sa.Column('missing_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expiring_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('overdue_filings_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('breakdown', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('last_calculated_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'client_id', name='uq_compliance_scores_tenant_client'),
    )

    op.create_table(
        'notifications',
        _uuid_pk(),
        _tenant_fk(),
        sa.Column('recipient_user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False, server_default='email'),
        sa.Column('priority', sa.String(20), nullable=False, server_default='normal'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('kind', sa.String(50), nullable=False, index=True),
        sa.Column('source_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('threshold_days', sa.Integer(), nullable=True),
        sa.Column('extra_data', postgresql.JSONB(), nullable=True, comment='Source ids, urgency, delivery metadata'),
        sa.Column('queued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            'kind', 'source_id', 'threshold_days', 'recipient_user_id',
            name='uq_notifications_dedup_key',
        ),
    )

    op.create_table(
        'audit_logs',
        _uuid_pk(),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=True, index=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True, index=True),
        sa.Column('actor', sa.String(100), nullable=False, server_default='system'),
        sa.Column('action', audit_action, nullable=False, index=True),
        sa.Column('target_entity_type', sa.String(100), nullable=False, index=True),
        sa.Column('target_entity_id', sa.String(100), nullable=False, index=True),
        sa.Column('new_values', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=True),
    )


def downgrade() -> None:
    """Drop compliance engine tables."""
    for table in (
        'audit_logs',
        'notifications',
        'compliance_scores',
        'requirement_bundle_items',
        'requirement_bundles',
        'compliance_rules',
        'compliance_rule_sets',
        'filings',
        'filing_types',
        'document_versions',
        'documents',
        'document_types',
        'clients',
        'tenant_users',
        'users',
        'tenants',
    ):
        op.drop_table(table)

    connection = op.get_bind()
    postgresql.ENUM(name='audit_action').drop(connection, checkfirst=True)
    postgresql.ENUM(name='compliance_rule_kind').drop(connection, checkfirst=True)
