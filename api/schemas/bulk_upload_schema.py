"""
Bulk upload Pydantic schemas.

Request bodies reuse the pipeline records from services.bulk_upload_models
so the preview an operator edits is exactly what the committer consumes.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from services.bulk_upload_models import PreviewData, UploadResult


class PreviewResponse(BaseModel):
    """Result of parsing and validating an uploaded spreadsheet."""

    success: bool = Field(True, description="Operation success flag")
    message: str = Field(..., description="Human-readable summary")
    data: PreviewData = Field(..., description="Candidate groups, clients, contacts, errors and warnings")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Preview generated: 1 groups, 1 clients, 2 contacts",
                "data": {
                    "groups": [{"name": "Acme", "description": None, "exists": False, "existing_id": None}],
                    "clients": [{"name": "Acme Corp", "group_name": "Acme", "code": "AC1",
                                 "reference_token": "18", "exists": False}],
                    "contacts": [{"name": "Jane", "email": "jane@acme.com", "is_primary": True,
                                  "client_name": "Acme Corp", "group_name": "Acme",
                                  "source_row_number": 2}],
                    "errors": [],
                    "warnings": []
                }
            }
        }


class ConfirmResponse(BaseModel):
    """Result of committing an approved preview."""

    success: bool = Field(True, description="True when the commit produced no errors")
    message: str = Field(..., description="Human-readable summary")
    data: UploadResult = Field(..., description="What was created, reused, skipped and rejected")
    results_file: str = Field(..., description="Base64-encoded results workbook (.xlsx)")
    run_id: Optional[int] = Field(None, description="Audit record id of this commit")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Bulk upload completed: 1 groups, 1 clients, 2 contacts created",
                "data": {"groups_created": 1, "clients_created": 1, "contacts_created": 2},
                "results_file": "UEsDBBQABgAIAAAAIQ...",
                "run_id": 42
            }
        }


class UploadRunResponse(BaseModel):
    """Stored audit record of one commit."""

    run_id: int
    status: str = Field(..., description="success, partial or failed")
    source_filename: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True
