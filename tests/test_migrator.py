"""Durable storage migrator tests.

Tests focus on:
- Provider failure falls back to a direct deal with a locally derived piece id
- Download failures and gate refusals never reach the storage strategies
- StorageFallbackExhausted when every strategy fails
- Unreadable provider answers and non-transient strategy errors still fall back
- Downloading a stored piece back from the provider
"""

import json

import httpx
import pytest
from conftest import CID, OWNER

from evidvault.models.file_record import StoragePath
from evidvault.models.payment_ledger import PaymentEntryType
from evidvault.repositories.payment_ledger import PaymentLedgerRepository
from evidvault.services.exceptions import (
    ContentNotFoundError,
    InsufficientFundsError,
    StorageFallbackExhausted,
    StorageProviderError,
)
from evidvault.services.filecoin.direct_deal import DirectDealClient
from evidvault.services.filecoin.migrator import (
    DealResult,
    DirectDealStrategy,
    DurableStorageMigrator,
    PrimaryStorageStrategy,
)
from evidvault.services.filecoin.piece import PIECE_ID_PREFIX, compute_piece_id
from evidvault.services.filecoin.storage_client import StorageProviderClient
from evidvault.services.hashing import digest_bytes
from evidvault.services.ipfs.pinata_client import PinataClient

BLOB = b"evidence bytes for durable storage"


class Network:
    """Routes requests by host and records which hosts were hit."""

    def __init__(
        self, provider_status=500, deal_result=None, blob_status=200, provider_body=None
    ):
        self.provider_status = provider_status
        self.provider_body = provider_body
        self.deal_result = deal_result if deal_result is not None else {"/": "bafyreidealone"}
        self.blob_status = blob_status
        self.hosts: list[str] = []
        self.proposals: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.hosts.append(request.url.host)
        if request.url.host == "gateway.pinata.cloud":
            if self.blob_status != 200:
                return httpx.Response(self.blob_status)
            return httpx.Response(200, content=BLOB)
        if request.url.host == "provider.test":
            if request.url.path.startswith("/storage/download/"):
                if self.provider_status != 200:
                    return httpx.Response(self.provider_status, text="no such piece")
                return httpx.Response(200, content=BLOB)
            if self.provider_status != 200:
                return httpx.Response(self.provider_status, text="provider down")
            if self.provider_body is not None:
                return self.provider_body
            return httpx.Response(
                200,
                json={"pieceCid": "baga6ea4seaqprovider", "dealId": "4242", "provider": "f01000"},
            )
        if request.url.host == "node.test":
            self.proposals.append(json.loads(request.content))
            if self.deal_result == "error":
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": "rejected"})
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": self.deal_result})
        return httpx.Response(404)


def make_migrator(network: Network, gate) -> DurableStorageMigrator:
    transport = httpx.MockTransport(network)
    pin_client = PinataClient(jwt_token="jwt", transport=transport)
    strategies = [
        PrimaryStorageStrategy(
            StorageProviderClient("https://provider.test", transport=transport)
        ),
        DirectDealStrategy(
            DirectDealClient(
                "https://node.test/rpc/v0",
                client_address="0x" + "1" * 40,
                provider="f01234",
                transport=transport,
            ),
            deal_duration_seconds=3600,
        ),
    ]
    return DurableStorageMigrator(pin_client, gate, strategies)


@pytest.mark.asyncio
async def test_primary_path_success(session, fake_gate):
    network = Network(provider_status=200)
    migrator = make_migrator(network, fake_gate)
    payments = PaymentLedgerRepository(session)

    result = await migrator.migrate(CID, OWNER, {"fileRecordId": "r-1"}, payments)

    assert result.storage_path == StoragePath.PRIMARY
    assert result.deal_id == "4242"
    assert result.provider == "f01000"
    assert "node.test" not in network.hosts


@pytest.mark.asyncio
async def test_provider_failure_falls_back_to_direct_deal(session, fake_gate):
    network = Network(provider_status=500)
    migrator = make_migrator(network, fake_gate)
    payments = PaymentLedgerRepository(session)

    result = await migrator.migrate(CID, OWNER, {"fileRecordId": "r-1"}, payments)

    assert result.storage_path == StoragePath.DIRECT
    assert result.piece_id.startswith(PIECE_ID_PREFIX)
    assert result.piece_id == compute_piece_id(BLOB)
    assert result.deal_id == "bafyreidealone"
    assert result.digest == digest_bytes(BLOB)
    assert network.hosts == ["gateway.pinata.cloud", "provider.test", "node.test"]

    proposal = network.proposals[0]["params"][0]
    assert proposal["Data"]["PieceCid"] == {"/": result.piece_id}
    assert proposal["MinBlocksDuration"] == 120
    assert proposal["Label"] == "r-1"

    entries = await payments.list_for_owner(OWNER, entry_type=PaymentEntryType.DEAL_PAYMENT)
    assert len(entries) == 1
    assert entries[0].transaction_ref == "bafyreidealone"
    assert entries[0].entry_metadata["storage_path"] == "direct"
    assert entries[0].entry_metadata["file_record_id"] == "r-1"


@pytest.mark.asyncio
async def test_download_failure_is_not_retried_through_strategies(session, fake_gate):
    network = Network(blob_status=404)
    migrator = make_migrator(network, fake_gate)

    with pytest.raises(ContentNotFoundError):
        await migrator.migrate(CID, OWNER, {}, PaymentLedgerRepository(session))

    assert "provider.test" not in network.hosts
    assert fake_gate.checks == 0


@pytest.mark.asyncio
async def test_gate_refusal_skips_strategies(session, fake_gate):
    fake_gate.balances[OWNER] = 1
    network = Network()
    migrator = make_migrator(network, fake_gate)

    with pytest.raises(InsufficientFundsError):
        await migrator.migrate(CID, OWNER, {}, PaymentLedgerRepository(session))

    assert network.hosts == ["gateway.pinata.cloud"]


@pytest.mark.asyncio
async def test_all_strategies_failing(session, fake_gate):
    network = Network(provider_status=503, deal_result="error")
    migrator = make_migrator(network, fake_gate)
    payments = PaymentLedgerRepository(session)

    with pytest.raises(StorageFallbackExhausted) as exc_info:
        await migrator.migrate(CID, OWNER, {}, payments)

    assert [name for name, _ in exc_info.value.errors] == ["primary", "direct"]
    assert await payments.list_for_owner(OWNER) == []


@pytest.mark.asyncio
async def test_direct_deal_without_deal_id_fails(session, fake_gate):
    network = Network(provider_status=500, deal_result={})
    migrator = make_migrator(network, fake_gate)

    with pytest.raises(StorageFallbackExhausted, match="missing deal id"):
        await migrator.migrate(CID, OWNER, {}, PaymentLedgerRepository(session))


def test_migrator_requires_a_strategy(fake_gate):
    with pytest.raises(ValueError):
        DurableStorageMigrator(PinataClient(jwt_token="jwt"), fake_gate, [])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "provider_body",
    [
        httpx.Response(200, text="<html>gateway ok</html>"),
        httpx.Response(200, json=["baga6ea4seaqprovider"]),
        httpx.Response(
            200,
            json={"pieceCid": "baga6ea4seaq", "dealId": "1", "dealDuration": "forever"},
        ),
        httpx.Response(200, json={"pieceCid": "baga6ea4seaq", "dealId": "1", "size": None}),
    ],
)
async def test_unreadable_provider_answer_falls_back(session, fake_gate, provider_body):
    network = Network(provider_status=200, provider_body=provider_body)
    migrator = make_migrator(network, fake_gate)

    result = await migrator.migrate(CID, OWNER, {}, PaymentLedgerRepository(session))

    assert result.storage_path == StoragePath.DIRECT
    assert "node.test" in network.hosts


class BrokenStrategy:
    path = StoragePath.PRIMARY

    async def store(self, blob: bytes, metadata: dict) -> DealResult:
        raise KeyError("pieceCid")


@pytest.mark.asyncio
async def test_non_transient_strategy_error_falls_back(session, fake_gate):
    network = Network()
    transport = httpx.MockTransport(network)
    migrator = DurableStorageMigrator(
        PinataClient(jwt_token="jwt", transport=transport),
        fake_gate,
        [
            BrokenStrategy(),
            DirectDealStrategy(
                DirectDealClient(
                    "https://node.test/rpc/v0",
                    client_address="0x" + "1" * 40,
                    provider="f01234",
                    transport=transport,
                ),
                deal_duration_seconds=3600,
            ),
        ],
    )

    result = await migrator.migrate(CID, OWNER, {}, PaymentLedgerRepository(session))

    assert result.storage_path == StoragePath.DIRECT
    assert result.deal_id == "bafyreidealone"


@pytest.mark.asyncio
async def test_non_transient_errors_are_collected_when_exhausted(session, fake_gate):
    migrator = DurableStorageMigrator(
        PinataClient(jwt_token="jwt", transport=httpx.MockTransport(Network())),
        fake_gate,
        [BrokenStrategy()],
    )

    with pytest.raises(StorageFallbackExhausted) as exc_info:
        await migrator.migrate(CID, OWNER, {}, PaymentLedgerRepository(session))

    assert [name for name, _ in exc_info.value.errors] == ["primary"]


@pytest.mark.asyncio
async def test_provider_download_returns_stored_bytes():
    network = Network(provider_status=200)
    client = StorageProviderClient("https://provider.test", transport=httpx.MockTransport(network))

    assert await client.download(compute_piece_id(BLOB)) == BLOB


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error", [(404, ContentNotFoundError), (502, StorageProviderError)]
)
async def test_provider_download_failures(status, error):
    network = Network(provider_status=status)
    client = StorageProviderClient("https://provider.test", transport=httpx.MockTransport(network))

    with pytest.raises(error):
        await client.download(compute_piece_id(BLOB))
