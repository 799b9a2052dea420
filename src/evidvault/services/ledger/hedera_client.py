"""Consensus ledger write path.

Talks to the operator's Hedera consensus gateway, which holds the ledger
account key and turns these calls into TopicCreate / TopicMessageSubmit
transactions.
"""

import base64
from dataclasses import dataclass

import httpx
import structlog

from evidvault.services.exceptions import (
    LedgerNetworkError,
    PermanentError,
    TopicNotFoundError,
)

logger = structlog.get_logger(__name__)


@dataclass
class TopicCreated:
    topic_id: str
    transaction_id: str


@dataclass
class MessageReceipt:
    transaction_id: str
    sequence_number: int | None = None


class HederaClient:
    """Topic creation and message submission over the consensus gateway."""

    def __init__(
        self,
        gateway_url: str,
        api_token: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize ledger client.

        Args:
            gateway_url: Gateway root (LEDGER_GATEWAY_URL)
            api_token: Bearer token for the gateway
            timeout: Seconds allowed per call
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}

    async def _post(self, path: str, payload: dict) -> dict:
        if not self.gateway_url:
            raise LedgerNetworkError("Ledger gateway URL is not configured")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.gateway_url}{path}", headers=self.headers, json=payload
                )
        except httpx.TimeoutException as e:
            raise LedgerNetworkError(f"Ledger gateway timeout after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            raise LedgerNetworkError(f"Ledger gateway network error: {e}")

        if response.status_code == 404:
            raise TopicNotFoundError(f"Not found: {path}")
        if response.status_code == 429 or response.status_code >= 500:
            raise LedgerNetworkError(
                f"Ledger gateway unavailable ({response.status_code}): {response.text[:500]}"
            )
        if response.status_code >= 400:
            raise PermanentError(
                f"Ledger gateway rejected request ({response.status_code}): {response.text[:500]}"
            )
        try:
            body = response.json()
        except ValueError as e:
            raise LedgerNetworkError(
                f"Ledger gateway returned non-JSON body: {response.text[:200]!r}"
            ) from e
        if not isinstance(body, dict):
            raise LedgerNetworkError(f"Ledger gateway returned unexpected body: {body!r:.200}")
        return body

    async def create_topic(self, memo: str) -> TopicCreated:
        """Create a new consensus topic.

        Raises:
            LedgerNetworkError: Gateway unreachable, failing or answering without ids
            PermanentError: Gateway rejected the request
        """
        body = await self._post("/topics", {"memo": memo})
        if not body.get("topicId"):
            raise LedgerNetworkError(f"Topic create response has no topicId: {body!r:.200}")
        topic = TopicCreated(
            topic_id=str(body["topicId"]), transaction_id=str(body.get("transactionId", ""))
        )
        logger.info("ledger.topic_created", topic_id=topic.topic_id, memo=memo)
        return topic

    async def submit_message(self, topic_id: str, payload: bytes) -> MessageReceipt:
        """Submit an opaque message to a topic.

        Raises:
            TopicNotFoundError: Topic does not exist
            LedgerNetworkError: Gateway unreachable, failing or answering without ids
        """
        body = await self._post(
            f"/topics/{topic_id}/messages",
            {"message": base64.b64encode(payload).decode("ascii")},
        )
        if not body.get("transactionId"):
            raise LedgerNetworkError(f"Submit response has no transactionId: {body!r:.200}")
        sequence_number = body.get("sequenceNumber")
        try:
            receipt = MessageReceipt(
                transaction_id=str(body["transactionId"]),
                sequence_number=int(sequence_number) if sequence_number is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise LedgerNetworkError(f"Unreadable sequenceNumber {sequence_number!r}") from e
        logger.info(
            "ledger.message_submitted",
            topic_id=topic_id,
            transaction_id=receipt.transaction_id,
            sequence_number=receipt.sequence_number,
        )
        return receipt
