"""
Audit models for bulk upload commits.

Every confirmed upload stores one UploadRun row holding the complete
UploadResult, so operators can later see exactly what was created,
reused, skipped and rejected.
"""

from enum import Enum
from sqlalchemy import (
    JSON, Column, Integer, String, TIMESTAMP, ForeignKey,
    CheckConstraint, Index, text
)
from sqlalchemy.dialects.postgresql import JSONB

from backend.models.schema import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite test databases)
JSONType = JSON().with_variant(JSONB(), 'postgresql')


class UploadStatus(str, Enum):
    """Outcome of a bulk upload commit."""
    SUCCESS = 'success'
    PARTIAL = 'partial'
    FAILED = 'failed'


class UploadRun(Base):
    """
    Represents one committed bulk upload.

    The stored result is append-only: a run is written once when the
    commit finishes and never updated afterwards.
    """

    __tablename__ = 'bulk_upload_runs'
    __table_args__ = (
        CheckConstraint(
            "status IN ('success', 'partial', 'failed')",
            name='bulk_upload_runs_status_check'
        ),
        Index('idx_bulk_upload_runs_created_at', 'created_at'),
        Index('idx_bulk_upload_runs_created_by', 'created_by'),
        {'comment': 'Audit trail of bulk upload commits'}
    )

    run_id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    status = Column(
        String(20),
        nullable=False,
        comment='success, partial or failed'
    )
    source_filename = Column(
        String(255),
        nullable=True,
        comment='Original spreadsheet filename, when known'
    )
    created_by = Column(
        Integer,
        ForeignKey('users.user_id', ondelete='SET NULL'),
        nullable=True,
        comment='Acting user that confirmed the upload'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    completed_at = Column(
        TIMESTAMP,
        nullable=True
    )
    result = Column(
        JSONType,
        nullable=True,
        comment='Full UploadResult'
    )
    error = Column(
        JSONType,
        nullable=True,
        comment='Error details if the commit could not run'
    )

    def __repr__(self):
        return f"<UploadRun(run_id={self.run_id}, status='{self.status}')>"

    def to_dict(self) -> dict:
        """Convert run to dictionary representation."""
        return {
            'run_id': self.run_id,
            'status': self.status,
            'source_filename': self.source_filename,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'result': self.result,
            'error': self.error
        }

    def is_clean(self) -> bool:
        """Check if the run finished without any errors."""
        return self.status == UploadStatus.SUCCESS
