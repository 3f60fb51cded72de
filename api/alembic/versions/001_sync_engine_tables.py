"""Crear tablas del motor de sincronizacion

Revision ID: 001_sync_engine
Revises: 
Create Date: 2026-10-18

Cambios:
- sync_jobs: estado, contadores y lease de cada job
- execution_logs: una fila por invocacion
- store_documents / store_document_keys: store de documentos e indice de claves
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '001_sync_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        # Los enums se guardan por nombre (native_enum=False)
        sa.Column('job_type', sa.String(32), nullable=False),
        sa.Column('account_id', sa.String(255), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('total_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_pages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('page_size', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('batch_size', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('current_page', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_pages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_pages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('new_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('query_params', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lock_owner', sa.String(36), nullable=True),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_sync_jobs_job_type', 'sync_jobs', ['job_type'])
    op.create_index('ix_sync_jobs_account_id', 'sync_jobs', ['account_id'])
    op.create_index('ix_sync_jobs_status', 'sync_jobs', ['status'])

    op.create_table(
        'execution_logs',
        sa.Column('execution_id', sa.String(36), primary_key=True),
        sa.Column('job_ref', sa.String(36), nullable=True),
        sa.Column('job_name', sa.String(255), nullable=False),
        sa.Column('account_id', sa.String(255), nullable=True),
        sa.Column('trigger_type', sa.String(16), nullable=False),
        sa.Column('trigger_source', sa.String(255), nullable=True),
        sa.Column('api_source', sa.String(100), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('total_pages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('items_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_reads', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_writes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('error_details', sa.JSON(), nullable=True),
        sa.Column('environment', sa.String(50), nullable=True),
        sa.Column('version', sa.String(50), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_execution_logs_job_ref', 'execution_logs', ['job_ref'])
    op.create_index('ix_execution_logs_account_id', 'execution_logs', ['account_id'])
    op.create_index('ix_execution_logs_status', 'execution_logs', ['status'])
    op.create_index('ix_execution_logs_start_time', 'execution_logs', ['start_time'])
    op.create_index('ix_execution_logs_account_start', 'execution_logs', ['account_id', 'start_time'])

    op.create_table(
        'store_documents',
        sa.Column('collection', sa.String(100), primary_key=True),
        sa.Column('document_id', sa.String(255), primary_key=True),
        sa.Column('account_id', sa.String(255), nullable=True),
        sa.Column('data', sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_store_documents_account_id', 'store_documents', ['account_id'])

    op.create_table(
        'store_document_keys',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('collection', sa.String(100), nullable=False),
        sa.Column('document_id', sa.String(255), nullable=False),
        sa.Column('field', sa.String(100), nullable=False),
        sa.Column('value', sa.String(512), nullable=False),
        sa.UniqueConstraint('collection', 'document_id', 'field', name='uq_document_key_field'),
    )
    op.create_index('ix_document_keys_lookup', 'store_document_keys', ['collection', 'field', 'value'])


def downgrade() -> None:
    op.drop_index('ix_document_keys_lookup', table_name='store_document_keys')
    op.drop_table('store_document_keys')
    op.drop_index('ix_store_documents_account_id', table_name='store_documents')
    op.drop_table('store_documents')
    for name in (
        'ix_execution_logs_account_start',
        'ix_execution_logs_start_time',
        'ix_execution_logs_status',
        'ix_execution_logs_account_id',
        'ix_execution_logs_job_ref',
    ):
        op.drop_index(name, table_name='execution_logs')
    op.drop_table('execution_logs')
    op.drop_index('ix_sync_jobs_status', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_account_id', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_job_type', table_name='sync_jobs')
    op.drop_table('sync_jobs')
