"""add bulk upload audit table

Revision ID: 002_bulk_upload_runs
Revises: 001_crm_schema
Create Date: 2025-10-15 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '002_bulk_upload_runs'
down_revision = '001_crm_schema'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Create the audit table for bulk upload commits.

    One row per confirmed upload, holding the full UploadResult.
    """
    op.create_table(
        'bulk_upload_runs',
        sa.Column('run_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='success, partial or failed'),
        sa.Column('source_filename', sa.String(length=255), nullable=True,
                  comment='Original spreadsheet filename, when known'),
        sa.Column('created_by', sa.Integer(), nullable=True, comment='Acting user that confirmed the upload'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('result', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Full UploadResult'),
        sa.Column('error', postgresql.JSONB(astext_type=sa.Text()), nullable=True,
                  comment='Error details if the commit could not run'),
        sa.CheckConstraint("status IN ('success', 'partial', 'failed')", name='bulk_upload_runs_status_check'),
        sa.ForeignKeyConstraint(['created_by'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('run_id'),
        comment='Audit trail of bulk upload commits'
    )

    op.create_index('idx_bulk_upload_runs_created_at', 'bulk_upload_runs', ['created_at'])
    op.create_index('idx_bulk_upload_runs_created_by', 'bulk_upload_runs', ['created_by'])


def downgrade() -> None:
    op.drop_index('idx_bulk_upload_runs_created_by', table_name='bulk_upload_runs')
    op.drop_index('idx_bulk_upload_runs_created_at', table_name='bulk_upload_runs')
    op.drop_table('bulk_upload_runs')
