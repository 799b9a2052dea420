"""Evidence upload intake and owner-initiated deletion.

Uploads are deduplicated per owner by content digest. The FileRecord is
committed in pin status 'queued' before the pin store is called, so a crash
mid-upload leaves an inspectable row rather than an orphaned pin.
"""

from dataclasses import dataclass
from uuid import UUID

import structlog
from web3 import Web3

from evidvault.models.file_record import FileRecord, PinStatus
from evidvault.services.exceptions import PermanentError, ServiceError
from evidvault.services.hashing import digest_bytes
from evidvault.services.ipfs.metadata import sanitize_metadata
from evidvault.services.ipfs.pinata_client import PinataClient

logger = structlog.get_logger(__name__)


def normalize_owner_address(value: str) -> str:
    """Validate a wallet address and return its lower-case form.

    Raises:
        ValueError: Not a 0x-prefixed 20-byte hex address
    """
    if not isinstance(value, str) or not value.startswith("0x") or len(value) != 42:
        raise ValueError("Wallet address must be 0x followed by 40 hex characters")
    if not Web3.is_address(value):
        raise ValueError(f"Invalid Ethereum address: {value}")
    return value.lower()


@dataclass
class IntakeResult:
    record: FileRecord
    is_duplicate: bool


async def accept_upload(
    uow_factory,
    pin_client: PinataClient,
    owner_address: str,
    data: bytes,
    filename: str,
    mime_type: str | None = None,
    tags: dict | None = None,
    max_bytes: int | None = None,
) -> IntakeResult:
    """Pin an uploaded file and record it.

    Args:
        uow_factory: UnitOfWork factory
        pin_client: Pin store client
        owner_address: Uploading wallet (validated, stored lower-case)
        data: Raw file bytes
        filename: Original filename
        mime_type: Client-reported content type
        tags: Free-form tags stored on the record and sent as pin metadata
        max_bytes: Upload size limit (None = unlimited)

    Returns:
        IntakeResult with the new record, or the owner's existing record for
        identical content

    Raises:
        ValueError: Empty or oversized file, bad address, missing filename
        ServiceError: Pin store failure (the record is kept with pin status failed;
            any other exception from the pin store is handled the same way)
    """
    owner = normalize_owner_address(owner_address)
    if not data:
        raise ValueError("File is empty")
    if max_bytes is not None and len(data) > max_bytes:
        raise ValueError(f"File exceeds maximum size of {max_bytes} bytes")
    if not filename:
        raise ValueError("Filename is required")

    digest = digest_bytes(data)
    clean_tags = sanitize_metadata(tags) if tags else None

    async with await uow_factory() as uow:
        existing = await uow.file_records.get_by_owner_and_digest(owner, digest)
        if existing is not None and existing.pin_cid:
            logger.info(
                "upload.duplicate",
                owner=owner,
                digest=digest,
                file_record_id=str(existing.id),
            )
            return IntakeResult(record=existing, is_duplicate=True)

        if existing is not None:
            # Queued without a CID: an earlier upload never finished pinning
            record = existing
            logger.info("upload.resuming", owner=owner, file_record_id=str(record.id))
        else:
            record = await uow.file_records.add(
                FileRecord(
                    owner_address=owner,
                    content_digest=digest,
                    original_filename=filename[:255],
                    size_bytes=len(data),
                    mime_type=mime_type or "application/octet-stream",
                    tags=clean_tags,
                )
            )
    record_id = record.id

    pin_metadata = {
        **(clean_tags or {}),
        "fileRecordId": str(record_id),
        "owner": owner,
        "originalName": filename,
    }
    try:
        pinned = await pin_client.upload(data, filename, pin_metadata)
    except Exception as e:
        # Never leave the record queued without a CID
        async with await uow_factory() as uow:
            failed = await uow.file_records.get_by_id(record_id)
            if failed is not None and failed.pin_status == PinStatus.QUEUED:
                failed.mark_pin_failed(f"{type(e).__name__}: {e}")
                await uow.file_records.save(failed)
        logger.error(
            "upload.pin_failed",
            file_record_id=str(record_id),
            error_type=type(e).__name__,
            error=str(e),
        )
        raise

    async with await uow_factory() as uow:
        record = await uow.file_records.get_by_id(record_id)
        if record is None:
            raise PermanentError(f"File record {record_id} disappeared during upload")
        if record.pin_status == PinStatus.PINNED:
            # A concurrent upload of the same content finished first
            return IntakeResult(record=record, is_duplicate=True)
        record.mark_pinned(pinned.cid)
        await uow.file_records.save(record)

    logger.info(
        "upload.pinned",
        file_record_id=str(record_id),
        owner=owner,
        cid=pinned.cid,
        size=len(data),
    )
    return IntakeResult(record=record, is_duplicate=False)


async def delete_record(
    uow_factory,
    pin_client: PinataClient,
    owner_address: str,
    record_id: UUID,
) -> bool:
    """Owner-scoped hard delete; unpins first when the content is pinned.

    An unpin failure is logged and the delete still proceeds.

    Returns:
        True if deleted, False if no such record for this owner
    """
    owner = normalize_owner_address(owner_address)
    async with await uow_factory() as uow:
        record = await uow.file_records.get_for_owner(record_id, owner)
        if record is None:
            return False

        if record.pin_status == PinStatus.PINNED and record.pin_cid:
            try:
                await pin_client.unpin(record.pin_cid)
            except ServiceError as e:
                logger.warning(
                    "delete.unpin_failed",
                    file_record_id=str(record_id),
                    cid=record.pin_cid,
                    error=str(e),
                )

        await uow.file_records.delete(record)

    logger.info("delete.completed", file_record_id=str(record_id), owner=owner)
    return True
