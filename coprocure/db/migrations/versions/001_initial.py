"""Initial schema: ingestion jobs, column mappings, committee decisions, purchase orders, evidence, audit

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

DATASET_TYPES = ('shutdowns', 'needs', 'suppliers')
INGESTION_STATUSES = ('running', 'awaiting_mapping', 'completed', 'error', 'failed')


def upgrade() -> None:
    op.create_table(
        'ingestion_jobs',
        sa.Column('job_id', sa.String(36), primary_key=True),
        sa.Column('correlation_id', sa.String(36), nullable=False),
        sa.Column('upload_id', sa.String(255), nullable=True),
        sa.Column('status', sa.Enum(*INGESTION_STATUSES, name='ingestionstatus', native_enum=False),
                  nullable=False, server_default='running'),
        sa.Column('dataset_type', sa.Enum(*DATASET_TYPES, name='datasettype', native_enum=False), nullable=False),
        sa.Column('company_id', sa.String(64), nullable=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('file_name', sa.String(500), nullable=False),
        sa.Column('content_type', sa.String(255), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('detected_columns', sa.JSON(), nullable=True),
        sa.Column('rows_total', sa.Integer(), nullable=True),
        sa.Column('rows_ok', sa.Integer(), nullable=True),
        sa.Column('rows_error', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_ingestion_jobs_correlation_id', 'ingestion_jobs', ['correlation_id'])
    op.create_index('ix_ingestion_jobs_status', 'ingestion_jobs', ['status'])
    op.create_index('ix_ingestion_jobs_company_id', 'ingestion_jobs', ['company_id'])
    op.create_index('ix_ingestion_jobs_started_at', 'ingestion_jobs', ['started_at'])

    op.create_table(
        'column_mappings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('job_id', sa.String(36), sa.ForeignKey('ingestion_jobs.job_id'), nullable=False, unique=True),
        sa.Column('dataset_type', sa.Enum(*DATASET_TYPES, name='datasettype', native_enum=False), nullable=False),
        sa.Column('mapping', sa.JSON(), nullable=False),
        sa.Column('applied_by', sa.String(64), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'committee_decisions',
        sa.Column('decision_id', sa.String(36), primary_key=True),
        sa.Column('rfp_id', sa.String(64), nullable=False),
        sa.Column('offer_id', sa.String(64), nullable=True),
        sa.Column('decision', sa.Enum('approve', 'reject', name='decisiontype', native_enum=False), nullable=False),
        sa.Column('justification', sa.Text(), nullable=True),
        sa.Column('decided_by_user_id', sa.String(64), nullable=True),
        sa.Column('correlation_id', sa.String(36), nullable=False),
        sa.Column('decided_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_committee_decisions_rfp_id', 'committee_decisions', ['rfp_id'])
    op.create_index('ix_committee_decisions_correlation_id', 'committee_decisions', ['correlation_id'])

    op.create_table(
        'evidence_records',
        sa.Column('evidence_id', sa.String(36), primary_key=True),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        sa.Column('payload_hash_sha256', sa.String(64), nullable=False),
        sa.Column('tx_hash', sa.String(128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_evidence_records_entity', 'evidence_records', ['entity_type', 'entity_id'])

    op.create_table(
        'purchase_orders',
        sa.Column('po_id', sa.String(36), primary_key=True),
        sa.Column('rfp_id', sa.String(64), nullable=False),
        sa.Column('offer_id', sa.String(64), nullable=False),
        sa.Column('decision_id', sa.String(36), sa.ForeignKey('committee_decisions.decision_id'), nullable=False),
        sa.Column('status', sa.Enum('created', name='purchaseorderstatus', native_enum=False),
                  nullable=False, server_default='created'),
        sa.Column('po_document_path', sa.String(1000), nullable=True),
        sa.Column('evidence_id', sa.String(36), sa.ForeignKey('evidence_records.evidence_id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_purchase_orders_rfp_id', 'purchase_orders', ['rfp_id'])

    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('event_id', sa.String(36), nullable=False, unique=True),
        sa.Column('correlation_id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=True),
        sa.Column('entity_id', sa.String(64), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('payload_hash_sha256', sa.String(64), nullable=True),
        sa.Column('actor_user_id', sa.String(64), nullable=True),
        sa.Column('actor_role', sa.String(50), nullable=True),
        sa.Column('company_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_events_correlation_id', 'audit_events', ['correlation_id'])
    op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'])
    op.create_index('ix_audit_events_entity_id', 'audit_events', ['entity_id'])
    op.create_index('ix_audit_events_company_id', 'audit_events', ['company_id'])
    op.create_index('ix_audit_events_correlation_created', 'audit_events', ['correlation_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('audit_events')
    op.drop_table('purchase_orders')
    op.drop_table('evidence_records')
    op.drop_table('committee_decisions')
    op.drop_table('column_mappings')
    op.drop_table('ingestion_jobs')
