"""Direct deal proposals over the Filecoin node JSON-RPC API.

Used when the storage provider path fails: the piece identifier is computed
locally and a simplified proposal is sent straight to the network. The deal
identifier always comes from the node's answer.
"""

import itertools
from dataclasses import dataclass

import httpx
import structlog

from evidvault.services.exceptions import DirectDealError

logger = structlog.get_logger(__name__)

# Filecoin epochs are 30 seconds
EPOCH_SECONDS = 30


@dataclass
class DirectDealReceipt:
    """Node acknowledgement of a direct deal proposal."""

    deal_id: str
    provider: str


class DirectDealClient:
    """Submits simplified deal proposals through a Filecoin JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        client_address: str,
        method: str = "Filecoin.ClientStatelessDeal",
        provider: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rpc_url = rpc_url
        self.client_address = client_address
        self.method = method
        self.provider = provider
        self.timeout = timeout
        self.transport = transport
        self._ids = itertools.count(1)

    async def propose(
        self,
        piece_id: str,
        piece_size: int,
        duration_seconds: int,
        metadata: dict | None = None,
    ) -> DirectDealReceipt:
        """Send a deal proposal for an already-derived piece identifier.

        Raises:
            DirectDealError: Transport failure, RPC error or missing deal id
        """
        proposal = {
            "Data": {
                "TransferType": "manual",
                "PieceCid": {"/": piece_id},
                "PieceSize": piece_size,
            },
            "Wallet": self.client_address,
            "Miner": self.provider,
            "MinBlocksDuration": max(1, duration_seconds // EPOCH_SECONDS),
            "Label": (metadata or {}).get("fileRecordId", ""),
        }
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": self.method,
            "params": [proposal],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.TimeoutException as e:
            raise DirectDealError(f"Deal proposal timeout after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            raise DirectDealError(f"Network error: {e}")

        if response.status_code != 200:
            raise DirectDealError(f"RPC HTTP {response.status_code}: {response.text[:500]}")

        body = response.json()
        if body.get("error"):
            raise DirectDealError(f"RPC error: {body['error']}")

        result = body.get("result")
        deal_id = result.get("/") if isinstance(result, dict) else result
        if not deal_id:
            raise DirectDealError(f"RPC response missing deal id: {body}")

        logger.info("storage.direct_deal.accepted", piece_id=piece_id, deal_id=deal_id)
        return DirectDealReceipt(deal_id=str(deal_id), provider=self.provider or "direct")
