"""Evidence file API endpoints.

- POST /api/upload - Pin a file and create its FileRecord
- POST /api/migrate/{file_record_id} - Run one durable migration attempt
- POST /api/retry-failed - Explicit retry batch for failed migrations
- GET /api/files - Paginated FileRecord listing
- GET /api/files/{file_record_id} - One FileRecord with summary flags
- DELETE /api/files/{file_record_id} - Owner-scoped delete (unpins first)
"""

import json
from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, Field

from evidvault.api.dependencies import (
    get_services,
    get_settings,
    get_uow_factory,
    owner_address_or_400,
)
from evidvault.core.config import Settings
from evidvault.core.dependencies import Services
from evidvault.models.file_record import DurableStatus, FileRecord, PinStatus
from evidvault.services.evidence_intake import accept_upload, delete_record
from evidvault.services.exceptions import FileRecordNotFoundError, ServiceError, TransientError
from evidvault.workers.migration_worker import MigrationOutcome

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["files"])


# Request/Response Models


class FileRecordDTO(BaseModel):
    """FileRecord as returned by the API."""

    id: UUID
    owner_address: str
    content_digest: str = Field(..., description="SHA-256 hex digest of the raw bytes")
    pin_cid: str | None = None
    pin_status: PinStatus
    pinned_at: datetime | None = None
    gateway_url: str | None = Field(default=None, description="Pin store read URL")
    piece_id: str | None = None
    deal_id: str | None = None
    storage_provider: str | None = None
    storage_path: str | None = Field(default=None, description="primary or direct")
    durable_status: DurableStatus
    migration_status: str = Field(..., description="pending, in-progress, completed or failed")
    attempt_count: int
    last_attempt_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: str | None = None
    original_filename: str
    size_bytes: int
    mime_type: str
    tags: dict | None = None
    created_at: datetime
    updated_at: datetime

    # Summary flags
    is_pinned: bool
    is_durable: bool
    is_migrating: bool
    has_failed: bool
    is_available: bool

    @classmethod
    def from_record(cls, record: FileRecord, services: Services | None = None) -> "FileRecordDTO":
        is_pinned = record.pin_status == PinStatus.PINNED
        is_durable = record.durable_status == DurableStatus.COMPLETED
        return cls(
            id=record.id,
            owner_address=record.owner_address,
            content_digest=record.content_digest,
            pin_cid=record.pin_cid,
            pin_status=record.pin_status,
            pinned_at=record.pinned_at,
            gateway_url=(
                services.pin_client.get_gateway_url(record.pin_cid)
                if services and record.pin_cid and is_pinned
                else None
            ),
            piece_id=record.piece_id,
            deal_id=record.deal_id,
            storage_provider=record.storage_provider,
            storage_path=record.storage_path.value if record.storage_path else None,
            durable_status=record.durable_status,
            migration_status=record.migration_status,
            attempt_count=record.attempt_count,
            last_attempt_at=record.last_attempt_at,
            completed_at=record.completed_at,
            last_error=record.last_error,
            original_filename=record.original_filename,
            size_bytes=record.size_bytes,
            mime_type=record.mime_type,
            tags=record.tags,
            created_at=record.created_at,
            updated_at=record.updated_at,
            is_pinned=is_pinned,
            is_durable=is_durable,
            is_migrating=record.durable_status == DurableStatus.UPLOADING,
            has_failed=(
                record.durable_status == DurableStatus.FAILED
                or record.pin_status == PinStatus.FAILED
            ),
            is_available=is_pinned or is_durable,
        )


class UploadResponse(BaseModel):
    cid: str | None
    file_record_id: UUID
    is_duplicate: bool
    file_record: FileRecordDTO


class OutcomeDTO(BaseModel):
    """Result of one migration attempt."""

    file_record_id: UUID
    result: str = Field(..., description="completed, failed, blocked or skipped")
    durable_status: DurableStatus
    attempt_count: int
    piece_id: str | None = None
    deal_id: str | None = None
    storage_path: str | None = None
    error: str | None = None

    @classmethod
    def from_outcome(cls, outcome: MigrationOutcome) -> "OutcomeDTO":
        return cls(
            file_record_id=outcome.file_record_id,
            result=outcome.result,
            durable_status=outcome.durable_status,
            attempt_count=outcome.attempt_count,
            piece_id=outcome.piece_id,
            deal_id=outcome.deal_id,
            storage_path=outcome.storage_path,
            error=outcome.error,
        )


class MigrateResponse(BaseModel):
    success: bool
    outcome: OutcomeDTO
    file_record: FileRecordDTO


class RetryFailedResponse(BaseModel):
    """Batch retry summary. success is true even when some records failed."""

    success: bool
    processed: int
    completed: int
    failed: int
    blocked: int
    reclaimed: int
    results: list[OutcomeDTO]


class FilesResponse(BaseModel):
    """Response model for paginated file listing."""

    files: list[FileRecordDTO]
    total: int = Field(..., description="Total number of records matching query")
    offset: int
    limit: int
    counts: dict[str, int] = Field(..., description="Record count per durable status")


class DeleteResponse(BaseModel):
    success: bool
    file_record_id: UUID


# API Endpoints


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    wallet_address: str = Form(...),
    metadata: str | None = Form(default=None),
    uow_factory=Depends(get_uow_factory),
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_settings),
) -> UploadResponse:
    """Pin an uploaded evidence file and record it for durable migration.

    Identical content already uploaded by the same wallet returns the
    existing record with is_duplicate=true.

    Raises:
        HTTPException 400: Empty/oversized file, bad wallet address or metadata
        HTTPException 502: Pin store rejected the upload
        HTTPException 503: Pin store unavailable
    """
    owner = owner_address_or_400(wallet_address)

    tags = None
    if metadata:
        try:
            tags = json.loads(metadata)
        except json.JSONDecodeError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="metadata must be a JSON object"
            )
        if not isinstance(tags, dict):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="metadata must be a JSON object"
            )

    data = await file.read()
    try:
        result = await accept_upload(
            uow_factory,
            services.pin_client,
            owner_address=owner,
            data=data,
            filename=file.filename or "upload",
            mime_type=file.content_type,
            tags=tags,
            max_bytes=settings.max_upload_bytes,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TransientError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Pin store unavailable: {e}",
        )
    except ServiceError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Pin store error: {e}"
        )

    return UploadResponse(
        cid=result.record.pin_cid,
        file_record_id=result.record.id,
        is_duplicate=result.is_duplicate,
        file_record=FileRecordDTO.from_record(result.record, services),
    )


@router.post("/migrate/{file_record_id}", response_model=MigrateResponse)
async def migrate_file(
    file_record_id: UUID,
    uow_factory=Depends(get_uow_factory),
    services: Services = Depends(get_services),
) -> MigrateResponse:
    """Run one durable migration attempt for a record.

    Remote failures are reported in the outcome, not as an HTTP error.
    """
    try:
        outcome = await services.orchestrator.migrate_record(file_record_id)
    except FileRecordNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    async with await uow_factory() as uow:
        record = await uow.file_records.get_by_id(file_record_id)

    return MigrateResponse(
        success=outcome.result == "completed",
        outcome=OutcomeDTO.from_outcome(outcome),
        file_record=FileRecordDTO.from_record(record, services),
    )


@router.post("/retry-failed", response_model=RetryFailedResponse)
async def retry_failed(
    wallet_address: str | None = Query(default=None),
    services: Services = Depends(get_services),
) -> RetryFailedResponse:
    """Replay every failed migration (optionally for one wallet), sequentially."""
    owner = owner_address_or_400(wallet_address) if wallet_address else None
    batch = await services.orchestrator.retry_failed(owner)
    return RetryFailedResponse(
        success=True,
        processed=batch.processed,
        completed=batch.completed,
        failed=batch.failed,
        blocked=batch.blocked,
        reclaimed=batch.reclaimed,
        results=[OutcomeDTO.from_outcome(outcome) for outcome in batch.outcomes],
    )


@router.get("/files", response_model=FilesResponse)
async def list_files(
    status_filter: DurableStatus | None = Query(default=None, alias="status"),
    wallet_address: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    uow_factory=Depends(get_uow_factory),
    services: Services = Depends(get_services),
) -> FilesResponse:
    """Paginated FileRecord listing, newest first."""
    owner = owner_address_or_400(wallet_address) if wallet_address else None
    async with await uow_factory() as uow:
        records, total = await uow.file_records.list_paginated(
            owner_address=owner, durable_status=status_filter, offset=offset, limit=limit
        )
        counts = await uow.file_records.count_by_status(owner)

    return FilesResponse(
        files=[FileRecordDTO.from_record(record, services) for record in records],
        total=total,
        offset=offset,
        limit=limit,
        counts=counts,
    )


@router.get("/files/{file_record_id}", response_model=FileRecordDTO)
async def get_file(
    file_record_id: UUID,
    uow_factory=Depends(get_uow_factory),
    services: Services = Depends(get_services),
) -> FileRecordDTO:
    async with await uow_factory() as uow:
        record = await uow.file_records.get_by_id(file_record_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File record {file_record_id} not found",
        )
    return FileRecordDTO.from_record(record, services)


@router.delete("/files/{file_record_id}", response_model=DeleteResponse)
async def delete_file(
    file_record_id: UUID,
    wallet_address: str = Query(...),
    uow_factory=Depends(get_uow_factory),
    services: Services = Depends(get_services),
) -> DeleteResponse:
    """Delete a record owned by wallet_address, unpinning its content first."""
    owner = owner_address_or_400(wallet_address)
    deleted = await delete_record(uow_factory, services.pin_client, owner, file_record_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File record {file_record_id} not found for this wallet",
        )
    logger.info("file_deleted", file_record_id=str(file_record_id), owner=owner)
    return DeleteResponse(success=True, file_record_id=file_record_id)
