"""Durable migration orchestrator and its polling worker.

Each FileRecord is driven to completion (completed or failed) before the
next one starts, so migrations for one owner never race on the shared
payment balance. The polling worker only picks up *queued* records; failed
records are replayed by the explicit retry_failed() batch.

Session handling: every state change runs in its own UnitOfWork, and the
remote migration runs in a UnitOfWork of its own together with the
deal_payment entry and the completion, so the record is committed as
'uploading' before any network call starts.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

import structlog

from evidvault.core.config import Settings
from evidvault.core.timezone import utcnow
from evidvault.models.file_record import DurableStatus, FileRecord, PinStatus
from evidvault.services.exceptions import (
    FileRecordNotFoundError,
    MigrationTimeoutError,
    ServiceError,
)
from evidvault.services.filecoin.migrator import DurableStorageMigrator
from evidvault.services.filecoin.payment_gate import PaymentGate
from evidvault.uow import UowFactory

logger = structlog.get_logger(__name__)


@dataclass
class MigrationOutcome:
    """What happened to one record in one orchestrator pass.

    result is one of: completed, failed, blocked, skipped.
    """

    file_record_id: UUID
    result: str
    durable_status: DurableStatus
    attempt_count: int
    piece_id: str | None = None
    deal_id: str | None = None
    storage_path: str | None = None
    error: str | None = None

    @classmethod
    def from_record(cls, record: FileRecord, result: str, error: str | None = None):
        return cls(
            file_record_id=record.id,
            result=result,
            durable_status=record.durable_status,
            attempt_count=record.attempt_count,
            piece_id=record.piece_id,
            deal_id=record.deal_id,
            storage_path=record.storage_path.value if record.storage_path else None,
            error=error if error is not None else record.last_error,
        )


@dataclass
class BatchResult:
    """Summary of a batch run (queued poll or explicit retry)."""

    outcomes: list[MigrationOutcome] = field(default_factory=list)
    reclaimed: int = 0

    def _count(self, result: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.result == result)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def completed(self) -> int:
        return self._count("completed")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def blocked(self) -> int:
        return self._count("blocked")

    @property
    def skipped(self) -> int:
        return self._count("skipped")


class MigrationOrchestrator:
    """Drives FileRecords from pinned to durably stored."""

    def __init__(
        self,
        uow_factory: UowFactory,
        migrator: DurableStorageMigrator,
        gate: PaymentGate,
        migration_timeout: float = 600.0,
        stale_after: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize orchestrator.

        Args:
            uow_factory: UnitOfWork factory
            migrator: Durable storage migrator
            gate: Payment gate used for the pre-flight balance check
            migration_timeout: Deadline in seconds for one migrator call
            stale_after: Age after which an 'uploading' record is reclaimed
            clock: Source of naive UTC timestamps (injected in tests)
        """
        self.uow_factory = uow_factory
        self.migrator = migrator
        self.gate = gate
        self.migration_timeout = migration_timeout
        self.stale_after = stale_after
        self.clock = clock

    async def migrate_record(self, record_id: UUID) -> MigrationOutcome:
        """Run one migration attempt for a record.

        Records that are not pinned, already completed, or currently
        uploading are skipped untouched. A gate refusal leaves the durable
        status and attempt count unchanged and records the reason.

        Raises:
            FileRecordNotFoundError: No such record
        """
        async with await self.uow_factory() as uow:
            record = await uow.file_records.get_by_id(record_id)
        if record is None:
            raise FileRecordNotFoundError(f"File record {record_id} not found")

        if record.pin_status != PinStatus.PINNED or record.durable_status in (
            DurableStatus.COMPLETED,
            DurableStatus.UPLOADING,
        ):
            logger.debug(
                "migration.skipped",
                file_record_id=str(record_id),
                pin_status=record.pin_status.value,
                durable_status=record.durable_status.value,
            )
            return MigrationOutcome.from_record(record, "skipped")

        blocked_reason = await self._gate_refusal(record.owner_address)
        if blocked_reason is not None:
            async with await self.uow_factory() as uow:
                record = await uow.file_records.get_by_id(record_id)
                if record.durable_status in (DurableStatus.QUEUED, DurableStatus.FAILED):
                    record.record_blocked(blocked_reason)
                    await uow.file_records.save(record)
            logger.warning(
                "migration.blocked",
                file_record_id=str(record_id),
                owner=record.owner_address,
                reason=blocked_reason,
            )
            return MigrationOutcome.from_record(record, "blocked", blocked_reason)

        # record is detached here; start_migration only validates and stages the change
        expected_status, expected_attempts = record.durable_status, record.attempt_count
        record.start_migration(now=self.clock())
        async with await self.uow_factory() as uow:
            claimed = await uow.file_records.compare_and_set(
                record, expected_status, expected_attempts
            )
        if not claimed:
            async with await self.uow_factory() as uow:
                record = await uow.file_records.get_by_id(record_id)
            if record is None:
                raise FileRecordNotFoundError(f"File record {record_id} not found")
            logger.info(
                "migration.already_claimed",
                file_record_id=str(record_id),
                durable_status=record.durable_status.value,
            )
            return MigrationOutcome.from_record(record, "skipped")

        logger.info(
            "migration.started",
            file_record_id=str(record_id),
            cid=record.pin_cid,
            attempt=record.attempt_count,
        )
        started = time.monotonic()
        metadata = {
            **(record.tags or {}),
            "fileRecordId": str(record.id),
            "owner": record.owner_address,
            "originalName": record.original_filename,
            "contentDigest": record.content_digest,
        }

        try:
            async with await self.uow_factory() as uow:
                result = await asyncio.wait_for(
                    self.migrator.migrate(
                        record.pin_cid, record.owner_address, metadata, uow.payments
                    ),
                    timeout=self.migration_timeout,
                )
                record = await uow.file_records.get_by_id(record_id)
                record.complete_migration(
                    piece_id=result.piece_id,
                    deal_id=result.deal_id,
                    provider=result.provider,
                    storage_path=result.storage_path,
                    now=self.clock(),
                )
                await uow.file_records.save(record)
        except asyncio.TimeoutError:
            error = MigrationTimeoutError(
                f"Migration exceeded deadline of {self.migration_timeout}s"
            )
            return await self._mark_failed(record_id, error)
        except ServiceError as e:
            return await self._mark_failed(record_id, e)
        except Exception as e:
            # Record must not stay in uploading
            logger.error("migration.unexpected_error", file_record_id=str(record_id), exc_info=True)
            return await self._mark_failed(record_id, e)

        if result.digest != record.content_digest:
            logger.warning(
                "migration.digest_mismatch",
                file_record_id=str(record_id),
                expected=record.content_digest,
                downloaded=result.digest,
            )
        logger.info(
            "migration.completed",
            file_record_id=str(record_id),
            piece_id=result.piece_id,
            deal_id=result.deal_id,
            storage_path=result.storage_path.value,
            duration_seconds=round(time.monotonic() - started, 3),
        )
        return MigrationOutcome.from_record(record, "completed")

    async def _gate_refusal(self, owner_address: str) -> str | None:
        """Live gate check; returns the blocking reason or None when ready."""
        try:
            status = await self.gate.check_status(owner_address)
        except ServiceError as e:
            return f"Payment gate unavailable: {e}"
        if status.is_ready:
            return None
        return (
            f"Insufficient {status.token} balance: {status.balance} < "
            f"{status.minimum_required}. Top up the payments account."
        )

    async def _mark_failed(self, record_id: UUID, error: Exception) -> MigrationOutcome:
        """Fail the record if it is still uploading; otherwise leave it as found."""
        message = f"{type(error).__name__}: {error}"
        async with await self.uow_factory() as uow:
            record = await uow.file_records.get_by_id(record_id)
            if record is None:
                raise FileRecordNotFoundError(f"File record {record_id} not found")
            if record.durable_status != DurableStatus.UPLOADING:
                logger.warning(
                    "migration.failure_not_recorded",
                    file_record_id=str(record_id),
                    durable_status=record.durable_status.value,
                    error=message,
                )
                return MigrationOutcome.from_record(record, "skipped", message)
            record.fail_migration(message)
            await uow.file_records.save(record)
        logger.error(
            "migration.failed",
            file_record_id=str(record_id),
            error_type=type(error).__name__,
            error_message=str(error),
            attempt=record.attempt_count,
        )
        return MigrationOutcome.from_record(record, "failed")

    async def reclaim_stale(self, owner_address: str | None = None) -> int:
        """Fail records stuck in 'uploading' beyond the stale threshold."""
        now = self.clock()
        async with await self.uow_factory() as uow:
            stale = await uow.file_records.get_stale_uploading(
                now - self.stale_after, owner_address
            )

        reclaimed = 0
        for record in stale:
            record.fail_migration(
                f"Reclaimed: stuck in uploading since {record.last_attempt_at.isoformat()}"
            )
            async with await self.uow_factory() as uow:
                # A migration that finished meanwhile keeps its result
                if await uow.file_records.compare_and_set(
                    record, DurableStatus.UPLOADING, record.attempt_count
                ):
                    reclaimed += 1
        if reclaimed:
            logger.warning("migration.reclaimed_stale", count=reclaimed)
        return reclaimed

    async def process_queued(self, limit: int = 10) -> BatchResult:
        """Migrate up to limit queued records, one at a time."""
        async with await self.uow_factory() as uow:
            records = await uow.file_records.get_pending_migration(limit=limit)
            record_ids = [record.id for record in records]

        batch = BatchResult()
        for record_id in record_ids:
            batch.outcomes.append(await self.migrate_record(record_id))
        return batch

    async def retry_failed(self, owner_address: str | None = None) -> BatchResult:
        """Explicit retry batch: reclaim stale uploads, then replay every failed record.

        Records are processed strictly sequentially in query order.
        """
        reclaimed = await self.reclaim_stale(owner_address)
        async with await self.uow_factory() as uow:
            records = await uow.file_records.get_failed(owner_address)
            record_ids = [record.id for record in records]

        logger.info(
            "retry.started", owner=owner_address, count=len(record_ids), reclaimed=reclaimed
        )
        batch = BatchResult(reclaimed=reclaimed)
        for record_id in record_ids:
            batch.outcomes.append(await self.migrate_record(record_id))

        logger.info(
            "retry.finished",
            owner=owner_address,
            processed=batch.processed,
            completed=batch.completed,
            failed=batch.failed,
            blocked=batch.blocked,
        )
        return batch


async def run_migration_worker(orchestrator: MigrationOrchestrator, settings: Settings) -> None:
    """Main worker loop for queued durable migrations.

    Polls at POLL_INTERVAL_SECONDS and handles graceful shutdown. Failed
    records are never retried here.

    Args:
        orchestrator: Migration orchestrator
        settings: Application settings (poll interval, batch size)
    """
    # Startup recovery: uploads interrupted by a previous shutdown
    await orchestrator.reclaim_stale()

    logger.info(
        "worker.started",
        worker_type="migration",
        poll_interval=settings.poll_interval_seconds,
        batch_size=settings.worker_batch_size,
    )

    try:
        while True:
            try:
                await orchestrator.process_queued(limit=settings.worker_batch_size)

                await asyncio.sleep(settings.poll_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker_type="migration",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                # Back off 5 seconds before retrying
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker_type="migration")
        raise
