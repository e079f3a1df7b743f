"""
Bulk upload router - Spreadsheet import of client groups, clients and contacts.

Workflow:
1. GET  /template          - download the blank template
2. POST /preview           - upload a filled template, get PreviewData back
3. POST /download-preview  - (optional) turn an edited preview back into a workbook
4. POST /confirm           - commit an error-free preview
5. GET  /runs/{run_id}     - fetch the audit record of a commit
"""

import base64
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import (
    get_api_key, get_current_user_id, get_db, verify_file_extension, verify_file_size
)
from api.schemas.bulk_upload_schema import ConfirmResponse, PreviewResponse, UploadRunResponse
from backend.models.upload_run import UploadStatus
from services.bulk_upload_models import PreviewData
from services.committer import Committer, outcome_status
from services.preview_builder import PreviewBuilder
from services.report_service import (
    CORRECTED_PREVIEW_FILENAME, TEMPLATE_FILENAME, ReportService
)
from services.repository import BulkUploadRepository
from services.row_parser import RowParser, WorkbookParseError

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/clients/bulk-upload', tags=['bulk-upload'])

XLSX_MEDIA_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _xlsx_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={'Content-Disposition': f'attachment; filename="{filename}"'}
    )


@router.get('/template')
async def download_template(api_key: str = Depends(get_api_key)):
    """
    Download the bulk upload template.

    Contains the recognised header row and three example rows showing
    merged client cells, multi-user TSP Contact tokens and primary flags.
    """
    return _xlsx_response(ReportService().build_template(), TEMPLATE_FILENAME)


@router.post('/preview', response_model=PreviewResponse)
async def preview_upload(
    file: UploadFile = File(..., description="Filled-in template (.xlsx or .xlsm)"),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Parse and validate an uploaded spreadsheet without writing anything.

    **Returns:**
    - Candidate groups, clients and contacts, each marked existing or new
    - Validation errors (must be fixed before confirming)
    - Warnings (commit proceeds with the stated resolution)

    **Errors:**
    - 400 for a wrong extension or an unreadable / malformed workbook
    - 413 when the file exceeds MAX_FILE_SIZE_MB
    """
    logger.info(f"Preview request from user {user_id}: {file.filename}")

    verify_file_extension(file.filename)
    content = await file.read()
    verify_file_size(len(content))

    parser = RowParser(max_data_rows=settings.BULK_UPLOAD_MAX_DATA_ROWS)
    try:
        rows = parser.parse_workbook(content)
    except WorkbookParseError as e:
        logger.warning(f"Rejected upload {file.filename}: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    preview = PreviewBuilder(BulkUploadRepository(db)).build(rows, user_id)

    return PreviewResponse(
        success=True,
        message=f"Preview generated: {len(preview.groups)} groups, {len(preview.clients)} clients, "
                f"{len(preview.contacts)} contacts, {len(preview.errors)} errors, "
                f"{len(preview.warnings)} warnings",
        data=preview
    )


@router.post('/download-preview')
async def download_preview(
    preview: PreviewData,
    user_id: int = Depends(get_current_user_id)
):
    """Render a (possibly edited) preview as a workbook that can be re-uploaded."""
    logger.info(f"Corrected preview download by user {user_id}: {len(preview.clients)} clients")
    return _xlsx_response(ReportService().build_corrected_preview(preview), CORRECTED_PREVIEW_FILENAME)


@router.post('/confirm', response_model=ConfirmResponse)
async def confirm_upload(
    preview: PreviewData,
    filename: Optional[str] = Query(None, max_length=255, description="Original spreadsheet filename"),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Commit an approved preview.

    Groups, then clients, then contacts are written in bounded batches.
    Failures are isolated per record and per batch and reported in the
    result rather than aborting the upload.

    **Returns:**
    - UploadResult counts and created-entity lists
    - Base64-encoded results workbook
    - run_id of the stored audit record
    """
    if preview.has_errors():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot confirm upload: preview has {len(preview.errors)} validation errors. "
                   f"Fix them and preview again."
        )

    logger.info(f"Confirm request from user {user_id}: {filename or 'unnamed upload'}")

    repository = BulkUploadRepository(db)
    committer = Committer(
        repository,
        batch_size=settings.BULK_UPLOAD_BATCH_SIZE,
        batch_timeout_seconds=settings.BULK_UPLOAD_BATCH_TIMEOUT_SECONDS
    )

    try:
        result = committer.commit(preview, user_id, preview.reference_user_ids())
    except Exception as e:
        logger.error(f"Bulk upload failed before completion: {e}", exc_info=True)
        db.rollback()
        repository.record_upload_run(
            UploadStatus.FAILED, None, created_by=user_id, source_filename=filename,
            error={'message': str(e), 'type': e.__class__.__name__}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Bulk upload failed: {str(e)}"
        )

    run = repository.record_upload_run(
        outcome_status(result), result.model_dump(mode='json'),
        created_by=user_id, source_filename=filename
    )
    results_file = base64.b64encode(ReportService().build_results(result)).decode('ascii')

    return ConfirmResponse(
        success=not result.errors,
        message=f"Bulk upload completed: {result.groups_created} groups, "
                f"{result.clients_created} clients, {result.contacts_created} contacts created",
        data=result,
        results_file=results_file,
        run_id=run.run_id
    )


@router.get('/runs/{run_id}', response_model=UploadRunResponse)
async def get_upload_run(
    run_id: int,
    db: Session = Depends(get_db),
    api_key: str = Depends(get_api_key)
):
    """Get the stored audit record of one commit."""
    run = BulkUploadRepository(db).get_upload_run(run_id)

    if not run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Upload run {run_id} not found"
        )

    return UploadRunResponse.model_validate(run)
