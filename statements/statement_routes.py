from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile, status

from pipeline.errors import InvalidTransition, StatementBusy, StatementNotFound, StorageError
from schemas.statement import Statement, Transaction
from settings.config import settings
from statements.statement_service import StatementService, get_statement_service, is_supported_mime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/statements", tags=["statements"])


@router.post("/upload", status_code=status.HTTP_202_ACCEPTED, response_model=Statement)
async def upload_statement(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    account_name: str = Form(...),
    month: int = Form(..., ge=1, le=12),
    year: int = Form(..., ge=1900, le=2999),
    bank_name: Optional[str] = Form(None),
    currency: Optional[str] = Form(None),
    account_id: Optional[str] = Form(None),
    service: StatementService = Depends(get_statement_service),
):
    if file is None or file.filename is None or file.filename.strip() == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")
    mime_type = file.content_type or "application/octet-stream"
    if not is_supported_mime(mime_type):
        raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=f"Unsupported file type: {mime_type}")
    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")

    try:
        statement = await service.create_statement(
            content=content,
            filename=file.filename,
            mime_type=mime_type,
            account_name=account_name,
            month=month,
            year=year,
            bank_name=bank_name,
            currency=currency,
            account_id=account_id,
        )
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    if settings.PROCESS_IN_WORKER:
        await service.enqueue_processing(statement.id)
    else:
        background_tasks.add_task(service.process, statement.id, content, statement.source_file.mime_type)
    return statement


@router.post("/{statement_id}/retry", response_model=Statement)
async def retry_statement(statement_id: str, service: StatementService = Depends(get_statement_service)):
    try:
        return await service.retry(statement_id)
    except StatementNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (InvalidTransition, StatementBusy) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.get("/{statement_id}", response_model=Statement)
async def get_statement(statement_id: str, service: StatementService = Depends(get_statement_service)):
    try:
        return await service.get_statement(statement_id)
    except StatementNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/{statement_id}/transactions", response_model=List[Transaction])
async def list_statement_transactions(statement_id: str, service: StatementService = Depends(get_statement_service)):
    try:
        return await service.list_transactions(statement_id)
    except StatementNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
