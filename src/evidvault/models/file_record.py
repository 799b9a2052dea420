"""FileRecord entity - uploaded evidence with pin and durable storage tracking."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from evidvault.core.timezone import utcnow

MAX_ERROR_LENGTH = 1000


class PinStatus(str, Enum):
    """Pinning layer status."""

    QUEUED = "queued"
    PINNED = "pinned"
    FAILED = "failed"


class DurableStatus(str, Enum):
    """Durable storage migration status."""

    QUEUED = "queued"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class StoragePath(str, Enum):
    """Which storage strategy produced the deal."""

    PRIMARY = "primary"
    DIRECT = "direct"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid file record state transition."""

    pass


class FileRecord(SQLModel, table=True):
    """FileRecord tracks one uploaded file through pinning and durable migration."""

    __tablename__ = "file_records"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_address: str = Field(max_length=42, index=True)
    content_digest: str = Field(max_length=64, index=True)

    # Pin layer
    pin_cid: Optional[str] = Field(default=None, max_length=255, index=True)
    pin_status: PinStatus = Field(default=PinStatus.QUEUED, index=True)
    pinned_at: Optional[datetime] = Field(default=None)

    # Durable layer
    piece_id: Optional[str] = Field(default=None, max_length=255, index=True)
    deal_id: Optional[str] = Field(default=None, max_length=255)
    storage_provider: Optional[str] = Field(default=None, max_length=255)
    storage_path: Optional[StoragePath] = Field(default=None)
    durable_status: DurableStatus = Field(default=DurableStatus.QUEUED, index=True)
    attempt_count: int = Field(default=0, ge=0)
    last_attempt_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    last_error: Optional[str] = Field(default=None, max_length=MAX_ERROR_LENGTH)

    # Metadata
    original_filename: str = Field(max_length=255)
    size_bytes: int = Field(ge=0)
    mime_type: str = Field(default="application/octet-stream", max_length=255)
    tags: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    def mark_pinned(self, cid: str, now: datetime | None = None) -> None:
        """Transition pin status from queued to pinned.

        Raises:
            InvalidStateTransition: If pin status is not queued
            ValueError: If cid is empty
        """
        if self.pin_status != PinStatus.QUEUED:
            raise InvalidStateTransition(
                f"Cannot mark pinned from {self.pin_status.value}. Pin must be in queued state."
            )
        if not cid:
            raise ValueError("cid is required")
        self.pin_cid = cid
        self.pin_status = PinStatus.PINNED
        self.pinned_at = now or utcnow()
        self.updated_at = self.pinned_at

    def mark_pin_failed(self, error: str) -> None:
        """Transition pin status from queued to failed."""
        if self.pin_status != PinStatus.QUEUED:
            raise InvalidStateTransition(
                f"Cannot mark pin failed from {self.pin_status.value}. "
                "Pin must be in queued state."
            )
        self.pin_status = PinStatus.FAILED
        self.last_error = error[:MAX_ERROR_LENGTH]
        self.updated_at = utcnow()

    def start_migration(self, now: datetime | None = None) -> None:
        """Transition from queued or failed to uploading.

        Increments attempt_count by exactly one and stamps last_attempt_at.

        Raises:
            InvalidStateTransition: If content is not pinned, or the durable
                status is not queued/failed
        """
        if self.pin_status != PinStatus.PINNED:
            raise InvalidStateTransition(
                f"Cannot start migration while pin status is {self.pin_status.value}. "
                "Content must be pinned first."
            )
        if self.durable_status not in (DurableStatus.QUEUED, DurableStatus.FAILED):
            raise InvalidStateTransition(
                f"Cannot start migration from {self.durable_status.value}. "
                "Record must be in queued or failed state."
            )
        now = now or utcnow()
        self.durable_status = DurableStatus.UPLOADING
        self.attempt_count += 1
        self.last_attempt_at = now
        self.updated_at = now

    def complete_migration(
        self,
        piece_id: str,
        deal_id: str,
        provider: str | None = None,
        storage_path: StoragePath = StoragePath.PRIMARY,
        now: datetime | None = None,
    ) -> None:
        """Transition from uploading to completed.

        Raises:
            InvalidStateTransition: If current status is not uploading
            ValueError: If piece_id or deal_id is empty
        """
        if self.durable_status != DurableStatus.UPLOADING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.durable_status.value}. "
                "Record must be in uploading state."
            )
        if not piece_id or not deal_id:
            raise ValueError("Both piece_id and deal_id are required")
        now = now or utcnow()
        self.piece_id = piece_id
        self.deal_id = deal_id
        self.storage_provider = provider
        self.storage_path = storage_path
        self.durable_status = DurableStatus.COMPLETED
        self.completed_at = now
        self.last_error = None
        self.updated_at = now

    def fail_migration(self, error: str) -> None:
        """Transition from uploading to failed.

        Raises:
            InvalidStateTransition: If current status is not uploading
        """
        if self.durable_status != DurableStatus.UPLOADING:
            raise InvalidStateTransition(
                f"Cannot mark failed from {self.durable_status.value}. "
                "Record must be in uploading state."
            )
        self.durable_status = DurableStatus.FAILED
        self.last_error = error[:MAX_ERROR_LENGTH]
        self.updated_at = utcnow()

    def record_blocked(self, reason: str) -> None:
        """Note why a migration could not start without changing any status."""
        if self.durable_status == DurableStatus.COMPLETED:
            raise InvalidStateTransition("Cannot annotate a completed record.")
        self.last_error = reason[:MAX_ERROR_LENGTH]
        self.updated_at = utcnow()

    def is_stale(self, now: datetime, threshold: timedelta) -> bool:
        """True when stuck in uploading for longer than threshold."""
        return (
            self.durable_status == DurableStatus.UPLOADING
            and self.last_attempt_at is not None
            and now - self.last_attempt_at > threshold
        )

    @property
    def migration_status(self) -> str:
        """Summary status for listings (pending, in-progress, completed, failed)."""
        if self.durable_status == DurableStatus.COMPLETED:
            return "completed"
        if self.durable_status == DurableStatus.FAILED:
            return "failed"
        if self.durable_status == DurableStatus.UPLOADING:
            return "in-progress"
        return "pending"
