"""FileRecord repository.

Provides data access methods for FileRecord entities with worker coordination
via FOR UPDATE SKIP LOCKED (ignored by SQLite).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from evidvault.models.file_record import DurableStatus, FileRecord, PinStatus

_TRANSITION_FIELDS = (
    "durable_status",
    "attempt_count",
    "last_attempt_at",
    "last_error",
    "updated_at",
)


class FileRecordRepository:
    """Repository for FileRecord entities.

    Batch queries return records oldest first; callers process them in that order.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, record: FileRecord) -> FileRecord:
        """Persist new file record.

        Args:
            record: FileRecord entity to persist

        Returns:
            Persisted record with generated ID
        """
        self.session.add(record)
        await self.session.flush()
        return record

    async def save(self, record: FileRecord) -> FileRecord:
        """Flush pending changes on an attached or detached record."""
        self.session.add(record)
        await self.session.flush()
        return record

    async def compare_and_set(
        self,
        record: FileRecord,
        expected_status: DurableStatus,
        expected_attempts: int,
    ) -> bool:
        """Write record's durable-status fields only if the row is still as expected.

        Single conditional UPDATE, so of two callers racing on the same
        transition exactly one wins. record must be detached; its in-memory
        values are written as-is.

        Returns:
            True if the row matched expected_status and expected_attempts
        """
        result = await self.session.execute(
            update(FileRecord)
            .where(
                FileRecord.id == record.id,  # type: ignore[arg-type]
                FileRecord.durable_status == expected_status,  # type: ignore[arg-type]
                FileRecord.attempt_count == expected_attempts,  # type: ignore[arg-type]
            )
            .values({name: getattr(record, name) for name in _TRANSITION_FIELDS})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def get_by_id(self, record_id: UUID) -> FileRecord | None:
        """Retrieve file record by UUID."""
        result = await self.session.execute(
            select(FileRecord).where(FileRecord.id == record_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_for_owner(self, record_id: UUID, owner_address: str) -> FileRecord | None:
        """Retrieve file record by UUID, only if it belongs to owner_address."""
        result = await self.session.execute(
            select(FileRecord).where(
                FileRecord.id == record_id,  # type: ignore[arg-type]
                FileRecord.owner_address == owner_address.lower(),  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def get_by_owner_and_digest(self, owner_address: str, digest: str) -> FileRecord | None:
        """Find an owner's existing upload of the same content.

        Records whose pinning failed are ignored so the owner can upload again.

        Args:
            owner_address: Owner wallet address (any case)
            digest: SHA-256 hex digest of the raw bytes

        Returns:
            Oldest matching record, or None
        """
        result = await self.session.execute(
            select(FileRecord)
            .where(
                FileRecord.owner_address == owner_address.lower(),  # type: ignore[arg-type]
                FileRecord.content_digest == digest,  # type: ignore[arg-type]
                FileRecord.pin_status != PinStatus.FAILED,  # type: ignore[arg-type]
            )
            .order_by(FileRecord.created_at.asc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_piece_id(self, piece_id: str) -> FileRecord | None:
        """Retrieve the completed record stored under a durable piece id."""
        result = await self.session.execute(
            select(FileRecord)
            .where(
                FileRecord.piece_id == piece_id,  # type: ignore[arg-type]
                FileRecord.durable_status == DurableStatus.COMPLETED,  # type: ignore[arg-type]
            )
            .order_by(FileRecord.completed_at.asc())  # type: ignore[union-attr]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_pending_migration(self, limit: int = 10) -> list[FileRecord]:
        """Retrieve pinned records still queued for durable migration.

        Query explanation:
        - WHERE durable_status = 'queued' AND pin_status = 'pinned'
        - ORDER BY created_at ASC: Process oldest first
        - FOR UPDATE SKIP LOCKED: Lock rows, skip already locked ones

        Args:
            limit: Maximum number of records to retrieve (default: 10)
        """
        result = await self.session.execute(
            select(FileRecord)
            .where(
                FileRecord.durable_status == DurableStatus.QUEUED,  # type: ignore[arg-type]
                FileRecord.pin_status == PinStatus.PINNED,  # type: ignore[arg-type]
            )
            .order_by(FileRecord.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def get_failed(self, owner_address: str | None = None) -> list[FileRecord]:
        """Retrieve every record whose durable migration failed.

        Args:
            owner_address: Restrict to one owner (None = all owners)

        Returns:
            Failed records, oldest first
        """
        query = select(FileRecord).where(
            FileRecord.durable_status == DurableStatus.FAILED  # type: ignore[arg-type]
        )
        if owner_address is not None:
            query = query.where(FileRecord.owner_address == owner_address.lower())  # type: ignore[arg-type]
        result = await self.session.execute(query.order_by(FileRecord.created_at.asc()))  # type: ignore[attr-defined]
        return list(result.scalars().all())

    async def get_stale_uploading(
        self, cutoff: datetime, owner_address: str | None = None
    ) -> list[FileRecord]:
        """Retrieve records stuck in uploading since before cutoff.

        Args:
            cutoff: Records with last_attempt_at older than this are stale
            owner_address: Restrict to one owner (None = all owners)
        """
        query = select(FileRecord).where(
            FileRecord.durable_status == DurableStatus.UPLOADING,  # type: ignore[arg-type]
            FileRecord.last_attempt_at < cutoff,  # type: ignore[arg-type,operator]
        )
        if owner_address is not None:
            query = query.where(FileRecord.owner_address == owner_address.lower())  # type: ignore[arg-type]
        result = await self.session.execute(query.order_by(FileRecord.created_at.asc()))  # type: ignore[attr-defined]
        return list(result.scalars().all())

    async def list_paginated(
        self,
        owner_address: str | None = None,
        durable_status: DurableStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[FileRecord], int]:
        """Retrieve records with pagination and total count.

        Returns:
            Tuple of (records for current page newest first, total matching)
        """
        filters = []
        if owner_address is not None:
            filters.append(FileRecord.owner_address == owner_address.lower())
        if durable_status is not None:
            filters.append(FileRecord.durable_status == durable_status)

        count_stmt = select(func.count(FileRecord.id)).where(*filters)  # type: ignore[arg-type]
        total = (await self.session.execute(count_stmt)).scalar() or 0

        data_stmt = (
            select(FileRecord)
            .where(*filters)
            .order_by(FileRecord.created_at.desc())  # type: ignore[attr-defined]
            .offset(offset)
            .limit(limit)
        )
        data_result = await self.session.execute(data_stmt)
        return list(data_result.scalars().all()), total

    async def count_by_status(self, owner_address: str | None = None) -> dict[str, int]:
        """Count records per durable status."""
        query = select(FileRecord.durable_status, func.count(FileRecord.id)).group_by(  # type: ignore[arg-type]
            FileRecord.durable_status
        )
        if owner_address is not None:
            query = query.where(FileRecord.owner_address == owner_address.lower())  # type: ignore[arg-type]
        result = await self.session.execute(query)
        counts = {status.value: 0 for status in DurableStatus}
        for status, count in result.all():
            counts[DurableStatus(status).value] = count
        return counts

    async def delete(self, record: FileRecord) -> None:
        """Hard-delete a record (owner-initiated only)."""
        await self.session.delete(record)
        await self.session.flush()
