"""Durable storage migrator: pinned CID -> Filecoin storage deal.

Flow for one attempt:
1. Download the blob from the pin store (fails fast, nothing to fall back with)
2. Live payment gate check (raises InsufficientFundsError, no fallback)
3. Storage strategies in order until one yields a deal id
4. Append a deal_payment ledger entry
"""

from dataclasses import dataclass
from typing import Protocol

import structlog

from evidvault.models.file_record import StoragePath
from evidvault.models.payment_ledger import PaymentEntryStatus, PaymentEntryType
from evidvault.repositories.payment_ledger import PaymentLedgerRepository
from evidvault.services.exceptions import StorageFallbackExhausted
from evidvault.services.filecoin.direct_deal import DirectDealClient
from evidvault.services.filecoin.payment_gate import PaymentGate
from evidvault.services.filecoin.piece import compute_piece_id
from evidvault.services.filecoin.storage_client import StorageProviderClient
from evidvault.services.hashing import digest_bytes
from evidvault.services.ipfs.pinata_client import PinataClient

logger = structlog.get_logger(__name__)


@dataclass
class DealResult:
    """Identifiers of a successful durable storage deal."""

    piece_id: str
    deal_id: str
    provider: str
    deal_duration_seconds: int
    file_size: int
    storage_path: StoragePath
    digest: str


class StorageStrategy(Protocol):
    """One way of turning a blob into a storage deal."""

    path: StoragePath

    async def store(self, blob: bytes, metadata: dict) -> DealResult: ...


class PrimaryStorageStrategy:
    """Upload through the storage provider, which creates the deal."""

    path = StoragePath.PRIMARY

    def __init__(self, client: StorageProviderClient):
        self.client = client

    async def store(self, blob: bytes, metadata: dict) -> DealResult:
        result = await self.client.upload(blob, metadata)
        return DealResult(
            piece_id=result.piece_id,
            deal_id=result.deal_id,
            provider=result.provider,
            deal_duration_seconds=result.deal_duration_seconds,
            file_size=result.file_size,
            storage_path=self.path,
            digest=digest_bytes(blob),
        )


class DirectDealStrategy:
    """Derive the piece id locally and propose the deal straight to the network."""

    path = StoragePath.DIRECT

    def __init__(self, client: DirectDealClient, deal_duration_seconds: int):
        self.client = client
        self.deal_duration_seconds = deal_duration_seconds

    async def store(self, blob: bytes, metadata: dict) -> DealResult:
        piece_id = compute_piece_id(blob)
        receipt = await self.client.propose(
            piece_id=piece_id,
            piece_size=len(blob),
            duration_seconds=self.deal_duration_seconds,
            metadata=metadata,
        )
        return DealResult(
            piece_id=piece_id,
            deal_id=receipt.deal_id,
            provider=receipt.provider,
            deal_duration_seconds=self.deal_duration_seconds,
            file_size=len(blob),
            storage_path=self.path,
            digest=digest_bytes(blob),
        )


class DurableStorageMigrator:
    """Moves one pinned blob into durable storage."""

    def __init__(
        self,
        pin_client: PinataClient,
        gate: PaymentGate,
        strategies: list[StorageStrategy],
        token_symbol: str = "USDFC",
    ):
        if not strategies:
            raise ValueError("At least one storage strategy is required")
        self.pin_client = pin_client
        self.gate = gate
        self.strategies = strategies
        self.token_symbol = token_symbol

    async def migrate(
        self,
        cid: str,
        owner_address: str,
        metadata: dict | None,
        payments: PaymentLedgerRepository,
    ) -> DealResult:
        """Run one migration attempt for a pinned CID.

        Args:
            cid: Pin store content identifier
            owner_address: Wallet paying for the deal
            metadata: Tags forwarded to the storage layer (fileRecordId etc.)
            payments: Ledger repository for the deal_payment entry

        Raises:
            ContentNotFoundError / PinNetworkError: Blob could not be downloaded
            InsufficientFundsError: Payment gate refused
            StorageFallbackExhausted: Every strategy failed
        """
        metadata = dict(metadata or {})
        blob = await self.pin_client.download(cid)
        logger.info("migration.downloaded", cid=cid, size=len(blob))

        await self.gate.ensure_ready(owner_address)

        errors: list[tuple[str, Exception]] = []
        result: DealResult | None = None
        for strategy in self.strategies:
            try:
                result = await strategy.store(blob, metadata)
                break
            except Exception as e:
                # Any failure moves on to the next strategy; cancellation still propagates
                errors.append((strategy.path.value, e))
                logger.warning(
                    "migration.strategy_failed",
                    cid=cid,
                    strategy=strategy.path.value,
                    error_type=type(e).__name__,
                    error=str(e),
                )

        if result is None:
            raise StorageFallbackExhausted(errors)

        await payments.append(
            owner_address=owner_address,
            entry_type=PaymentEntryType.DEAL_PAYMENT,
            token=self.token_symbol,
            status=PaymentEntryStatus.CONFIRMED,
            transaction_ref=result.deal_id,
            metadata={
                "file_record_id": metadata.get("fileRecordId"),
                "cid": cid,
                "piece_id": result.piece_id,
                "deal_id": result.deal_id,
                "provider": result.provider,
                "storage_path": result.storage_path.value,
            },
        )
        logger.info(
            "migration.deal_created",
            cid=cid,
            piece_id=result.piece_id,
            deal_id=result.deal_id,
            storage_path=result.storage_path.value,
        )
        return result
