"""Session audit logging: only the SHA-256 digest of a transcript reaches the ledger."""

import json
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from evidvault.services.hashing import digest_text
from evidvault.services.ledger.hedera_client import HederaClient
from evidvault.services.ledger.topic_registry import TopicRegistry

logger = structlog.get_logger(__name__)

ENVELOPE_TYPE = "session_audit"
ENVELOPE_VERSION = "1.0"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_audit_envelope(digest: str, length: int, timestamp: str) -> bytes:
    """Serialize the fixed-schema audit envelope as compact UTF-8 JSON."""
    envelope = {
        "type": ENVELOPE_TYPE,
        "hash": digest,
        "timestamp": timestamp,
        "length": length,
        "version": ENVELOPE_VERSION,
    }
    return json.dumps(envelope, separators=(",", ":")).encode("utf-8")


@dataclass
class AuditSubmission:
    digest: str
    topic_id: str
    submission_ref: str
    timestamp: str
    sequence_number: int | None = None


class AuditHashLogger:
    """Hashes session text and submits the digest envelope to the ledger topic.

    No dedup: identical text yields the same digest and a new submission.
    """

    def __init__(self, client: HederaClient, registry: TopicRegistry, clock=_iso_now):
        self.client = client
        self.registry = registry
        self.clock = clock

    async def log_text(self, text: str) -> AuditSubmission:
        """Anchor the digest of text.

        Raises:
            ValueError: text is not a non-empty string
            LedgerNetworkError / TopicNotFoundError: Ledger write failed
        """
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Session text must be a non-empty string")

        digest = digest_text(text)
        length = len(text)
        del text

        timestamp = self.clock()
        payload = build_audit_envelope(digest, length, timestamp)

        topic_id = await self.registry.get_or_create_topic()
        receipt = await self.client.submit_message(topic_id, payload)

        logger.info(
            "audit.submitted",
            digest=digest,
            length=length,
            topic_id=topic_id,
            submission_ref=receipt.transaction_id,
        )
        return AuditSubmission(
            digest=digest,
            topic_id=topic_id,
            submission_ref=receipt.transaction_id,
            timestamp=timestamp,
            sequence_number=receipt.sequence_number,
        )
