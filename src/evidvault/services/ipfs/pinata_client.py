"""Pinata IPFS client for pinning evidence files and reading them back."""

import json
import re
from dataclasses import dataclass

import httpx
import structlog

from evidvault.services.exceptions import (
    ContentNotFoundError,
    PinAuthError,
    PinNetworkError,
    PinRateLimitError,
    PinValidationError,
    TransientError,
)
from evidvault.services.hashing import digest_bytes
from evidvault.services.ipfs.metadata import sanitize_metadata

logger = structlog.get_logger(__name__)

_CID_V0 = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CID_V1 = re.compile(r"^b[a-z2-7]{20,}$")


def is_valid_cid(value: str) -> bool:
    """Format check for CIDv0 (base58 Qm...) and CIDv1 (base32 b...)."""
    return bool(value) and bool(_CID_V0.match(value) or _CID_V1.match(value))


@dataclass
class PinUploadResult:
    """Outcome of a pin upload."""

    cid: str
    size: int
    digest: str
    is_duplicate: bool = False
    timestamp: str | None = None


@dataclass
class GatewayStrategy:
    """One retrieval path for pinned content."""

    name: str
    domain: str
    timeout: float

    def url_for(self, cid: str) -> str:
        return f"https://{self.domain}/ipfs/{cid}"


class PinataClient:
    """IPFS client using the Pinata pinning service.

    Downloads walk an ordered chain of gateways (Pinata first, then public
    mirrors). Nothing is retried beyond that chain; callers decide whether to
    retry the whole operation.
    """

    def __init__(
        self,
        jwt_token: str,
        gateway_domain: str = "gateway.pinata.cloud",
        fallback_gateways: list[str] | None = None,
        upload_timeout: float = 60.0,
        download_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Pinata client.

        Args:
            jwt_token: Pinata API JWT token (from PINATA_JWT env var)
            gateway_domain: Primary gateway domain for downloads and URLs
            fallback_gateways: Mirror gateway domains tried in order after the primary
            upload_timeout: Seconds allowed for a pin upload
            download_timeout: Seconds allowed per gateway on download
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.jwt_token = jwt_token
        self.gateway_domain = gateway_domain
        self.base_url = "https://api.pinata.cloud"
        self.upload_timeout = upload_timeout
        self.transport = transport
        self.headers = {"Authorization": f"Bearer {jwt_token}"}
        self.gateways = [GatewayStrategy("pinata", gateway_domain, download_timeout)] + [
            GatewayStrategy(f"mirror:{domain}", domain, download_timeout)
            for domain in (fallback_gateways or [])
        ]

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        """Classify Pinata API errors into transient and permanent ones."""
        if response.status_code == 429:
            raise PinRateLimitError(f"Rate limit exceeded: {response.text}")
        elif response.status_code >= 500:
            raise TransientError(
                f"Service unavailable ({response.status_code}): {response.text}"
            )
        elif response.status_code == 401:
            raise PinAuthError(
                "Unauthorized: Invalid API key. "
                "Check PINATA_JWT configuration in .env file. "
                "Verify JWT token is active at https://app.pinata.cloud/developers/api-keys"
            )
        elif response.status_code == 403:
            raise PinAuthError(
                "Forbidden: Access denied. "
                f"Check PINATA_JWT permissions (requires {operation} access). "
                "Verify account status and quota limits at https://app.pinata.cloud/billing"
            )
        elif response.status_code == 404:
            raise ContentNotFoundError(f"Not found: {response.text}")
        elif response.status_code == 400:
            raise PinValidationError(f"Bad request: {response.text}")
        response.raise_for_status()

    async def upload(
        self,
        data: bytes,
        filename: str,
        metadata: dict | None = None,
    ) -> PinUploadResult:
        """Pin raw bytes to IPFS via Pinata.

        The content digest is computed locally before the request is sent.

        Args:
            data: File contents
            filename: Original filename (Pinata dashboard name)
            metadata: Free-form tags; coerced with sanitize_metadata()

        Returns:
            PinUploadResult with CIDv1, size, local digest and duplicate flag

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Invalid API key (401), forbidden (403), bad request (400),
                or a 2xx answer without a usable CID
        """
        digest = digest_bytes(data)
        keyvalues = sanitize_metadata(metadata)
        keyvalues["fileHash"] = digest
        pinata_metadata = {"name": filename, "keyvalues": keyvalues}

        try:
            async with self._client(self.upload_timeout) as client:
                response = await client.post(
                    f"{self.base_url}/pinning/pinFileToIPFS",
                    headers=self.headers,
                    files={"file": (filename, data, "application/octet-stream")},
                    data={
                        "pinataOptions": json.dumps({"cidVersion": 1}),
                        "pinataMetadata": json.dumps(pinata_metadata),
                    },
                )
                self._raise_for_status(response, "pinFileToIPFS")
        except httpx.TimeoutException as e:
            raise PinNetworkError(f"Request timeout after {self.upload_timeout}s: {str(e)}")
        except httpx.HTTPError as e:
            if isinstance(e, httpx.HTTPStatusError):
                raise PinNetworkError(f"Unexpected status: {str(e)}")
            raise PinNetworkError(f"Network error: {str(e)}")

        try:
            result = response.json()
            pin_result = PinUploadResult(
                cid=str(result["IpfsHash"]),
                size=int(result.get("PinSize", len(data))),
                digest=digest,
                is_duplicate=bool(result.get("isDuplicate", False)),
                timestamp=result.get("Timestamp"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise PinValidationError(
                f"Malformed pinFileToIPFS response: {response.text[:200]!r}"
            ) from e
        if not is_valid_cid(pin_result.cid):
            raise PinValidationError(f"Pin store returned an invalid CID: {pin_result.cid!r}")

        logger.info(
            "pin.upload.succeeded",
            cid=pin_result.cid,
            size=pin_result.size,
            digest=digest,
            is_duplicate=pin_result.is_duplicate,
        )
        return pin_result

    async def download(self, cid: str) -> bytes:
        """Fetch pinned content, walking the gateway chain in order.

        Each gateway gets its own timeout. A 404 from one gateway does not stop
        the chain, since mirrors may still have the content.

        Raises:
            ContentNotFoundError: Every gateway answered 404
            PinNetworkError: All gateways failed and at least one failure was not a 404
            ValueError: cid is empty
        """
        if not cid:
            raise ValueError("cid is required")

        errors: list[tuple[str, str]] = []
        not_found = 0
        for gateway in self.gateways:
            try:
                async with self._client(gateway.timeout) as client:
                    response = await client.get(gateway.url_for(cid))
                if response.status_code == 404:
                    not_found += 1
                    errors.append((gateway.name, "404 not found"))
                    continue
                if response.status_code != 200:
                    errors.append((gateway.name, f"HTTP {response.status_code}"))
                    continue
                logger.info(
                    "pin.download.succeeded",
                    cid=cid,
                    gateway=gateway.name,
                    size=len(response.content),
                )
                return response.content
            except httpx.TimeoutException:
                errors.append((gateway.name, f"timeout after {gateway.timeout}s"))
            except httpx.HTTPError as e:
                errors.append((gateway.name, f"network error: {e}"))

            logger.warning("pin.download.gateway_failed", cid=cid, gateway=gateway.name)

        detail = "; ".join(f"{name}: {reason}" for name, reason in errors)
        logger.error("pin.download.failed", cid=cid, errors=detail)
        if not_found == len(self.gateways):
            raise ContentNotFoundError(f"CID {cid} not found on any gateway ({detail})")
        raise PinNetworkError(f"All gateways failed for {cid} ({detail})")

    async def unpin(self, cid: str) -> None:
        """Remove a pin from Pinata.

        Raises:
            ContentNotFoundError: CID is not pinned on this account
            TransientError / PermanentError: As classified for uploads
        """
        try:
            async with self._client(self.upload_timeout) as client:
                response = await client.delete(
                    f"{self.base_url}/pinning/unpin/{cid}", headers=self.headers
                )
                self._raise_for_status(response, "unpin")
        except httpx.TimeoutException as e:
            raise PinNetworkError(f"Request timeout after {self.upload_timeout}s: {str(e)}")
        except httpx.HTTPStatusError as e:
            raise PinNetworkError(f"Unexpected status: {str(e)}")
        except httpx.HTTPError as e:
            raise PinNetworkError(f"Network error: {str(e)}")
        logger.info("pin.unpinned", cid=cid)

    async def test_authentication(self) -> bool:
        """Check that the configured JWT is accepted."""
        try:
            async with self._client(15.0) as client:
                response = await client.get(
                    f"{self.base_url}/data/testAuthentication", headers=self.headers
                )
        except httpx.HTTPError as e:
            raise PinNetworkError(f"Network error: {str(e)}")
        if response.status_code in (401, 403):
            return False
        self._raise_for_status(response, "testAuthentication")
        return True

    def get_gateway_url(self, cid: str) -> str:
        """Convert CID to gateway URL for browser access.

        Returns:
            Gateway URL (e.g., "https://gateway.pinata.cloud/ipfs/<CID>")
        """
        return f"https://{self.gateway_domain}/ipfs/{cid}"
