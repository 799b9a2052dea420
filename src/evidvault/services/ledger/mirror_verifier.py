"""Ledger read verifier.

The consensus write path and the mirror node read replica are eventually
consistent, so a just-submitted digest is polled for over a bounded number
of interval slots. The outcome is informational only.
"""

import asyncio
import base64
import binascii
import json
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import httpx
import structlog

from evidvault.services.exceptions import MirrorNodeError, ServiceError, TopicNotFoundError
from evidvault.services.ledger.topic_registry import TopicRegistry

logger = structlog.get_logger(__name__)


@dataclass
class VerificationResult:
    verified: bool
    attempts_made: int
    sequence_number: int | None = None
    consensus_timestamp: str | None = None
    attempt: int | None = None
    reason: str | None = None
    errors: list[str] = field(default_factory=list)


class MirrorNodeVerifier:
    """Polls the mirror node for a digest previously submitted to the topic."""

    def __init__(
        self,
        base_url: str,
        topic_registry: TopicRegistry,
        message_limit: int = 50,
        default_max_attempts: int = 6,
        default_interval_ms: int = 5000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize verifier.

        Args:
            base_url: Mirror node root (MIRROR_NODE_URL)
            topic_registry: Source of the topic id being verified
            message_limit: How many recent messages to scan per attempt
            default_max_attempts: VERIFY_MAX_ATTEMPTS
            default_interval_ms: VERIFY_INTERVAL_MS
            sleep: Awaitable sleep (injected in tests)
            clock: Monotonic clock in seconds (injected in tests)
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.topic_registry = topic_registry
        self.message_limit = message_limit
        self.default_max_attempts = default_max_attempts
        self.default_interval_ms = default_interval_ms
        self.sleep = sleep
        self.clock = clock
        self.transport = transport

    def topic_messages_url(self, topic_id: str) -> str:
        return f"{self.base_url}/api/v1/topics/{topic_id}/messages"

    @staticmethod
    def decode_message(raw: str | None) -> dict | None:
        """base64 -> UTF-8 -> JSON object; None when any step fails."""
        if not raw:
            return None
        try:
            decoded = json.loads(base64.b64decode(raw, validate=True).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None
        return decoded if isinstance(decoded, dict) else None

    async def fetch_recent_messages(self, topic_id: str, timeout: float = 15.0) -> list[dict]:
        """Most recent messages of a topic, newest first.

        Raises:
            TopicNotFoundError: Mirror node does not know the topic
            MirrorNodeError: Transport failure, unexpected status or malformed body
        """
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                response = await client.get(
                    self.topic_messages_url(topic_id),
                    params={"limit": self.message_limit, "order": "desc"},
                )
        except httpx.HTTPError as e:
            raise MirrorNodeError(f"Mirror node request failed: {e}")

        if response.status_code == 404:
            raise TopicNotFoundError(f"Topic {topic_id} not found on mirror node")
        if response.status_code != 200:
            raise MirrorNodeError(f"Mirror node HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise MirrorNodeError(
                f"Mirror node returned non-JSON body: {response.text[:200]!r}"
            ) from e
        messages = body.get("messages") if isinstance(body, dict) else None
        if not isinstance(messages, list):
            raise MirrorNodeError("Mirror node response has no messages list")
        return [message for message in messages if isinstance(message, dict)]

    async def verify(
        self,
        digest: str,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
        topic_id: str | None = None,
    ) -> VerificationResult:
        """Poll until the digest is visible or attempts run out.

        Every attempt occupies one interval slot (fetch bounded by the
        interval, then sleep for the rest), so the call takes about
        max_attempts * interval. Never raises for remote failures.

        Raises:
            ValueError: max_attempts below 1 or a negative interval
        """
        if max_attempts is None:
            max_attempts = self.default_max_attempts
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        if interval_ms is not None and interval_ms < 0:
            raise ValueError(f"interval_ms must not be negative, got {interval_ms}")
        interval = (interval_ms if interval_ms is not None else self.default_interval_ms) / 1000
        topic_id = topic_id or self.topic_registry.cached_topic_id
        if not topic_id:
            return VerificationResult(
                verified=False, attempts_made=0, reason="No ledger topic has been created yet"
            )

        errors: list[str] = []
        for attempt in range(1, max_attempts + 1):
            started = self.clock()
            try:
                messages = await asyncio.wait_for(
                    self.fetch_recent_messages(topic_id, timeout=interval or 15.0),
                    timeout=interval or None,
                )
                for message in messages:
                    decoded = self.decode_message(message.get("message"))
                    if decoded and decoded.get("hash") == digest:
                        logger.info(
                            "verify.found",
                            digest=digest,
                            topic_id=topic_id,
                            attempt=attempt,
                            sequence_number=message.get("sequence_number"),
                        )
                        return VerificationResult(
                            verified=True,
                            attempts_made=attempt,
                            sequence_number=message.get("sequence_number"),
                            consensus_timestamp=message.get("consensus_timestamp"),
                            attempt=attempt,
                            errors=errors,
                        )
                logger.debug(
                    "verify.attempt", digest=digest, attempt=attempt, scanned=len(messages)
                )
            except asyncio.TimeoutError:
                errors.append(f"attempt {attempt}: mirror node timeout")
                logger.warning("verify.attempt_timeout", digest=digest, attempt=attempt)
            except ServiceError as e:
                errors.append(f"attempt {attempt}: {e}")
                logger.warning(
                    "verify.attempt_failed", digest=digest, attempt=attempt, error=str(e)
                )

            remaining = interval - (self.clock() - started)
            if remaining > 0:
                await self.sleep(remaining)

        reason = f"Digest not visible on mirror node after {max_attempts} attempts"
        if errors:
            reason += f" (last error: {errors[-1]})"
        logger.info("verify.not_found", digest=digest, topic_id=topic_id, attempts=max_attempts)
        return VerificationResult(
            verified=False, attempts_made=max_attempts, reason=reason, errors=errors
        )
