"""Durable storage API endpoints.

- GET /api/filecoin/download/{piece_id} - Retrieve a stored piece from the provider
- GET /api/filecoin/deal/{piece_id} - Deal recorded for a piece id
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel

from evidvault.api.dependencies import get_services, get_uow_factory
from evidvault.core.dependencies import Services
from evidvault.services.exceptions import ContentNotFoundError, ServiceError
from evidvault.services.filecoin.piece import is_piece_id

logger = structlog.get_logger()
router = APIRouter(prefix="/api/filecoin", tags=["storage"])


class DealStatusResponse(BaseModel):
    piece_id: str
    deal_id: str | None
    storage_provider: str | None
    storage_path: str | None
    completed_at: datetime | None
    file_record_id: UUID


def _piece_id_or_400(piece_id: str) -> str:
    if not is_piece_id(piece_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Not a piece identifier: {piece_id!r}",
        )
    return piece_id


@router.get("/download/{piece_id}")
async def download_piece(
    piece_id: str,
    services: Services = Depends(get_services),
) -> Response:
    """Stream a durably stored piece back as an attachment."""
    piece_id = _piece_id_or_400(piece_id)
    try:
        blob = await services.storage_client.download(piece_id)
    except ContentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ServiceError as e:
        logger.error("storage.download_failed", piece_id=piece_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Durable download failed: {e}"
        )

    return Response(
        content=blob,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="filecoin-{piece_id}"'},
    )


@router.get("/deal/{piece_id}", response_model=DealStatusResponse)
async def get_deal(
    piece_id: str,
    uow_factory=Depends(get_uow_factory),
) -> DealStatusResponse:
    """Deal identifiers of the completed migration stored under piece_id."""
    piece_id = _piece_id_or_400(piece_id)
    async with await uow_factory() as uow:
        record = await uow.file_records.get_by_piece_id(piece_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"No deal recorded for {piece_id}"
        )
    return DealStatusResponse(
        piece_id=piece_id,
        deal_id=record.deal_id,
        storage_provider=record.storage_provider,
        storage_path=record.storage_path.value if record.storage_path else None,
        completed_at=record.completed_at,
        file_record_id=record.id,
    )
