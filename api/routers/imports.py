"""
Imports API Router.

Handles bulk spreadsheet uploads for policies, claims and policy company
corrections, bulk PDF attachment, and template downloads.
"""

import logging
from typing import List, Optional, Callable

from fastapi import APIRouter, HTTPException, Query, UploadFile, File, Form, Request, Depends
from fastapi.responses import Response
from slowapi import Limiter
from slowapi.util import get_remote_address

from agency_import import ImportService, ImportContext, ImportOutcome, ImportRunError, BatchWriteError
from agency_import.supabase_client import get_recent_activity
from agency_import.templates import TEMPLATE_KINDS, XLSX_MEDIA_TYPE, build_template, template_filename
from api.auth import get_current_user, CurrentUser
from api.schemas import ImportOutcomeResponse, BatchWriteErrorResponse, BatchWriteErrorDetail, ActivityEntry

router = APIRouter()
logger = logging.getLogger(__name__)

IMPORT_RESPONSES = {502: {"model": BatchWriteErrorResponse, "description": "Grouped insert failed"}}

# Uploads are limited per IP (prevent DoS)
limiter = Limiter(key_func=get_remote_address)


def get_import_service() -> ImportService:
    return ImportService()


def _context(user: CurrentUser, client_id: Optional[str]) -> ImportContext:
    return ImportContext(operator_id=user.id, client_id=(client_id or "").strip() or None)


def _respond(run: Callable[[], ImportOutcome]) -> ImportOutcomeResponse:
    try:
        outcome = run()
    except ImportRunError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except BatchWriteError as e:
        detail = BatchWriteErrorDetail(
            message=str(e),
            table=e.table,
            outcome=ImportOutcomeResponse(**e.outcome.to_dict()),
        )
        raise HTTPException(status_code=502, detail=detail.model_dump())
    except Exception as e:
        logger.exception("Import failed")
        raise HTTPException(status_code=500, detail=str(e))

    return ImportOutcomeResponse(**outcome.to_dict())


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail=f"{file.filename or 'upload'} is empty")
    return content


# =============================================================================
# SPREADSHEET IMPORTS
# =============================================================================

@router.post("/policies", response_model=ImportOutcomeResponse, responses=IMPORT_RESPONSES)
@limiter.limit("10/minute")
async def import_policies(
    request: Request,
    file: UploadFile = File(...),
    client_id: Optional[str] = Form(None),
    user: CurrentUser = Depends(get_current_user),
    service: ImportService = Depends(get_import_service),
):
    """
    Import policies from an .xlsx, .xls or .csv file.

    With client_id every row belongs to that client; without it each row
    must carry the customer's TC Kimlik No or Vergi No.
    """
    content = await _read_upload(file)
    return _respond(lambda: service.import_file(
        content, file.filename or "upload", "policies", _context(user, client_id)
    ))


@router.post("/claims", response_model=ImportOutcomeResponse, responses=IMPORT_RESPONSES)
@limiter.limit("10/minute")
async def import_claims(
    request: Request,
    file: UploadFile = File(...),
    client_id: Optional[str] = Form(None),
    user: CurrentUser = Depends(get_current_user),
    service: ImportService = Depends(get_import_service),
):
    """Import claims; rows with a known claim number update the stored claim."""
    content = await _read_upload(file)
    return _respond(lambda: service.import_file(
        content, file.filename or "upload", "claims", _context(user, client_id)
    ))


@router.post("/policy-companies", response_model=ImportOutcomeResponse, responses=IMPORT_RESPONSES)
@limiter.limit("10/minute")
async def update_policy_companies(
    request: Request,
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    service: ImportService = Depends(get_import_service),
):
    """Correct the insurance company of existing policies (Poliçe No, Sigorta Şirketi)."""
    content = await _read_upload(file)
    return _respond(lambda: service.import_file(
        content, file.filename or "upload", "policy-companies", _context(user, None)
    ))


@router.post("/pdfs", response_model=ImportOutcomeResponse, responses=IMPORT_RESPONSES)
@limiter.limit("10/minute")
async def attach_policy_pdfs(
    request: Request,
    files: List[UploadFile] = File(...),
    user: CurrentUser = Depends(get_current_user),
    service: ImportService = Depends(get_import_service),
):
    """Attach PDF documents to policies named by the file names."""
    uploads = [(f.filename or "upload.pdf", await f.read()) for f in files]
    return _respond(lambda: service.attach_policy_pdfs(uploads, _context(user, None)))


# =============================================================================
# TEMPLATES & HISTORY
# =============================================================================

@router.get("/templates/{kind}")
async def download_template(kind: str, user: CurrentUser = Depends(get_current_user)):
    """Download an example workbook for an import flow."""
    if kind not in TEMPLATE_KINDS:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown template: {kind}. Available: {', '.join(TEMPLATE_KINDS)}",
        )

    return Response(
        content=build_template(kind),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{template_filename(kind)}"'},
    )


@router.get("/activity", response_model=List[ActivityEntry])
async def list_activity(
    limit: int = Query(50, ge=1, le=500),
    user: CurrentUser = Depends(get_current_user),
):
    """Recent activity of the current user, newest first."""
    try:
        entries = get_recent_activity(limit=limit, user_id=user.id, action_prefix="bulk_import_")
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return entries or []
