"""Storage provider client for the primary durable storage path."""

import json
from dataclasses import dataclass

import httpx
import structlog

from evidvault.services.exceptions import ContentNotFoundError, StorageProviderError
from evidvault.services.ipfs.metadata import sanitize_metadata

logger = structlog.get_logger(__name__)


@dataclass
class ProviderUploadResult:
    """What the storage provider reports after accepting a blob."""

    piece_id: str
    deal_id: str
    provider: str
    deal_duration_seconds: int
    file_size: int


class StorageProviderClient:
    """Uploads blobs to a storage provider which creates the storage deal."""

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        deal_duration_seconds: int = 180 * 24 * 3600,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize storage provider client.

        Args:
            base_url: Provider API root (STORAGE_PROVIDER_URL)
            api_token: Bearer token for the provider API
            deal_duration_seconds: Requested deal duration
            timeout: Seconds allowed for the upload (large blobs)
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.deal_duration_seconds = deal_duration_seconds
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}

    async def upload(self, blob: bytes, metadata: dict | None = None) -> ProviderUploadResult:
        """Submit a blob for storage and deal creation.

        Raises:
            StorageProviderError: Timeout, transport failure, non-2xx answer or
                a response missing piece/deal identifiers
        """
        if not self.base_url:
            raise StorageProviderError("Storage provider URL is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/storage/upload",
                    headers=self.headers,
                    files={"file": ("blob", blob, "application/octet-stream")},
                    data={
                        "dealDuration": str(self.deal_duration_seconds),
                        "metadata": json.dumps(sanitize_metadata(metadata)),
                    },
                )
        except httpx.TimeoutException as e:
            raise StorageProviderError(f"Upload timeout after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            raise StorageProviderError(f"Network error: {e}")

        if response.status_code >= 300:
            raise StorageProviderError(
                f"Provider rejected upload ({response.status_code}): {response.text[:500]}"
            )

        try:
            body = response.json()
            piece_id = body.get("pieceCid")
            deal_id = body.get("dealId")
            if not piece_id or not deal_id:
                raise StorageProviderError(f"Provider response missing piece/deal ids: {body}")
            result = ProviderUploadResult(
                piece_id=str(piece_id),
                deal_id=str(deal_id),
                provider=str(body.get("provider", "unknown")),
                deal_duration_seconds=int(body.get("dealDuration", self.deal_duration_seconds)),
                file_size=int(body.get("size", len(blob))),
            )
        except (ValueError, TypeError, AttributeError) as e:
            raise StorageProviderError(
                f"Unreadable provider response: {response.text[:200]!r} ({e})"
            ) from e

        logger.info(
            "storage.provider.accepted",
            piece_id=result.piece_id,
            deal_id=result.deal_id,
            provider=result.provider,
        )
        return result

    async def download(self, piece_id: str) -> bytes:
        """Retrieve a stored piece from the provider.

        Raises:
            ContentNotFoundError: Provider does not hold the piece
            StorageProviderError: Timeout, transport failure or other non-2xx answer
        """
        if not self.base_url:
            raise StorageProviderError("Storage provider URL is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    f"{self.base_url}/storage/download/{piece_id}", headers=self.headers
                )
        except httpx.TimeoutException as e:
            raise StorageProviderError(f"Download timeout after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            raise StorageProviderError(f"Network error: {e}")

        if response.status_code == 404:
            raise ContentNotFoundError(f"Piece {piece_id} not held by the storage provider")
        if response.status_code >= 300:
            raise StorageProviderError(
                f"Provider download failed ({response.status_code}): {response.text[:500]}"
            )

        logger.info("storage.provider.downloaded", piece_id=piece_id, size=len(response.content))
        return response.content
