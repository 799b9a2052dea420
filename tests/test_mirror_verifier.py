"""Mirror node verifier tests.

Tests focus on:
- Digest found on a later attempt
- Failed attempts are recorded and polling continues
- Each attempt occupies one interval slot
- Message decoding tolerates garbage
- Malformed mirror bodies count as failed attempts
- Hanging requests never stretch the call past its attempt budget
"""

import asyncio
import base64
import json
import time

import httpx
import pytest

from evidvault.services.ledger.mirror_verifier import MirrorNodeVerifier
from evidvault.services.ledger.topic_registry import TopicRegistry

DIGEST = "d" * 64
TOPIC = "0.0.4321"


def encode(envelope: dict) -> str:
    return base64.b64encode(json.dumps(envelope).encode()).decode()


class FakeClock:
    """Monotonic clock that only advances when sleep is awaited."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class MirrorNode:
    """Serves scripted responses, one per request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        scripted = self.responses.pop(0) if self.responses else (200, [])
        if isinstance(scripted, httpx.Response):
            return scripted
        status, messages = scripted
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json={"messages": messages})


def make_verifier(node: MirrorNode, clock: FakeClock, topic_id: str | None = TOPIC):
    registry = TopicRegistry(None, explicit_topic_id=topic_id)
    return MirrorNodeVerifier(
        "https://mirror.test/",
        registry,
        sleep=clock.sleep,
        clock=clock,
        transport=httpx.MockTransport(node),
    )


@pytest.mark.asyncio
async def test_found_on_second_attempt():
    found = {
        "message": encode({"type": "session_audit", "hash": DIGEST}),
        "sequence_number": 7,
        "consensus_timestamp": "1717243200.000000001",
    }
    other = {"message": encode({"type": "session_audit", "hash": "e" * 64}), "sequence_number": 6}
    node = MirrorNode((200, [other]), (200, [found, other]))
    clock = FakeClock()

    result = await make_verifier(node, clock).verify(DIGEST, max_attempts=5, interval_ms=1000)

    assert result.verified is True
    assert result.attempts_made == 2
    assert result.attempt == 2
    assert result.sequence_number == 7
    assert result.consensus_timestamp == "1717243200.000000001"
    assert clock.sleeps == [1.0]

    request = node.requests[0]
    assert request.url.path == f"/api/v1/topics/{TOPIC}/messages"
    assert request.url.params["order"] == "desc"
    assert request.url.params["limit"] == "50"


@pytest.mark.asyncio
async def test_errors_are_recorded_and_polling_continues():
    node = MirrorNode((404, None), (502, None), (200, []))
    clock = FakeClock()

    result = await make_verifier(node, clock).verify(DIGEST, max_attempts=3, interval_ms=200)

    assert result.verified is False
    assert result.attempts_made == 3
    assert len(result.errors) == 2
    assert "not found" in result.errors[0]
    assert "502" in result.errors[1]
    assert "after 3 attempts" in result.reason
    assert clock.sleeps == [0.2, 0.2, 0.2]
    assert clock.now == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_no_topic_yet():
    node = MirrorNode()
    clock = FakeClock()

    result = await make_verifier(node, clock, topic_id=None).verify(DIGEST)

    assert result.verified is False
    assert result.attempts_made == 0
    assert node.requests == []


@pytest.mark.asyncio
async def test_explicit_topic_overrides_registry():
    node = MirrorNode((200, [{"message": encode({"hash": DIGEST}), "sequence_number": 1}]))
    clock = FakeClock()

    result = await make_verifier(node, clock, topic_id=None).verify(
        DIGEST, max_attempts=1, interval_ms=100, topic_id="0.0.99"
    )

    assert result.verified is True
    assert node.requests[0].url.path == "/api/v1/topics/0.0.99/messages"


def test_decode_message():
    assert MirrorNodeVerifier.decode_message(encode({"hash": DIGEST})) == {"hash": DIGEST}
    assert MirrorNodeVerifier.decode_message("not base64!!") is None
    assert MirrorNodeVerifier.decode_message(base64.b64encode(b"\xff\xfe").decode()) is None
    assert MirrorNodeVerifier.decode_message(base64.b64encode(b"[1, 2]").decode()) is None
    assert MirrorNodeVerifier.decode_message(None) is None


@pytest.mark.asyncio
async def test_malformed_bodies_are_failed_attempts():
    found = {"message": encode({"hash": DIGEST}), "sequence_number": 3}
    node = MirrorNode(
        httpx.Response(200, text="<html>maintenance</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"messages": "nope"}),
        (200, ["garbage", 42, found]),
    )
    clock = FakeClock()

    result = await make_verifier(node, clock).verify(DIGEST, max_attempts=4, interval_ms=100)

    assert result.verified is True
    assert result.attempts_made == 4
    assert result.sequence_number == 3
    assert len(result.errors) == 3
    assert "non-JSON" in result.errors[0]


@pytest.mark.asyncio
async def test_malformed_bodies_exhaust_attempts_without_raising():
    node = MirrorNode(httpx.Response(200, text="<html>maintenance</html>"))
    clock = FakeClock()

    result = await make_verifier(node, clock).verify(DIGEST, max_attempts=2, interval_ms=10)

    assert result.verified is False
    assert result.attempts_made == 2


@pytest.mark.asyncio
async def test_hanging_mirror_stays_within_attempt_budget():
    async def hang(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(10)
        return httpx.Response(200, json={"messages": []})

    verifier = MirrorNodeVerifier(
        "https://mirror.test",
        TopicRegistry(None, explicit_topic_id=TOPIC),
        transport=httpx.MockTransport(hang),
    )

    started = time.monotonic()
    result = await verifier.verify(DIGEST, max_attempts=3, interval_ms=50)
    elapsed = time.monotonic() - started

    assert result.verified is False
    assert result.attempts_made == 3
    assert all("timeout" in error for error in result.errors)
    assert 0.14 <= elapsed < 0.15 + 0.5


@pytest.mark.asyncio
@pytest.mark.parametrize("max_attempts", [0, -1])
async def test_rejects_attempt_count_below_one(max_attempts):
    node = MirrorNode()

    with pytest.raises(ValueError, match="max_attempts"):
        await make_verifier(node, FakeClock()).verify(DIGEST, max_attempts=max_attempts)

    assert node.requests == []
