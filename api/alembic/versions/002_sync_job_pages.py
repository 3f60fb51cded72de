"""Resultado por pagina y filtro de fecha de los jobs

Revision ID: 002_sync_job_pages
Revises: 001_sync_engine
Create Date: 2026-10-18

Cambios:
- sync_job_pages: ultimo resultado de cada pagina de un job
- sync_jobs.date_filter: ventana de fechas pedida al inicializar
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '002_sync_job_pages'
down_revision: Union[str, None] = '001_sync_engine'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('sync_jobs', sa.Column('date_filter', sa.String(16), nullable=True))

    op.create_table(
        'sync_job_pages',
        sa.Column(
            'job_id',
            sa.String(36),
            sa.ForeignKey('sync_jobs.id', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column('page', sa.Integer(), primary_key=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('sync_job_pages')
    op.drop_column('sync_jobs', 'date_filter')
