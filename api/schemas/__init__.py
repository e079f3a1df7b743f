"""
Pydantic schemas for request/response validation.

This package contains all Pydantic models used for API request validation
and response serialization.
"""

from api.schemas.common import ErrorResponse, HealthCheckResponse
from api.schemas.bulk_upload_schema import ConfirmResponse, PreviewResponse, UploadRunResponse

__all__ = [
    # Common
    'ErrorResponse',
    'HealthCheckResponse',

    # Bulk upload
    'PreviewResponse',
    'ConfirmResponse',
    'UploadRunResponse',
]
