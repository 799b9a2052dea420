"""Evidence intake tests.

Tests focus on:
- Upload records the file queued, then pinned with a CIDv1
- Per-owner dedup by content digest
- Pin failures are recorded on the row and re-raised
- An upload that never finished pinning is resumed, not reported as a duplicate
- Owner-scoped delete that tolerates unpin failures
"""

import httpx
import pytest
from conftest import CID, OTHER_OWNER, OWNER

from evidvault.models.file_record import DurableStatus, PinStatus
from evidvault.services.evidence_intake import (
    accept_upload,
    delete_record,
    normalize_owner_address,
)
from evidvault.services.exceptions import PinValidationError, TransientError
from evidvault.services.hashing import digest_bytes
from evidvault.services.ipfs.pinata_client import PinataClient, is_valid_cid

MIXED_CASE_OWNER = "0x" + OWNER[2:].upper()


class PinService:
    """Pinata API double counting pin and unpin calls."""

    def __init__(self, upload_status=200, unpin_status=200, upload_body=None):
        self.upload_status = upload_status
        self.upload_body = upload_body
        self.unpin_status = unpin_status
        self.uploads = 0
        self.unpins: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/pinning/pinFileToIPFS":
            self.uploads += 1
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, text="unavailable")
            if self.upload_body is not None:
                return httpx.Response(200, json=self.upload_body)
            return httpx.Response(200, json={"IpfsHash": CID, "PinSize": 10})
        if request.url.path.startswith("/pinning/unpin/"):
            self.unpins.append(request.url.path.rsplit("/", 1)[-1])
            return httpx.Response(self.unpin_status, text="OK")
        return httpx.Response(404)


def pin_client(service: PinService) -> PinataClient:
    return PinataClient(jwt_token="jwt", transport=httpx.MockTransport(service))


@pytest.mark.asyncio
async def test_upload_pins_and_queues_for_migration(uow_factory):
    service = PinService()
    data = b"0123456789"

    result = await accept_upload(
        uow_factory,
        pin_client(service),
        MIXED_CASE_OWNER,
        data,
        "note.txt",
        mime_type="text/plain",
        tags={"caseId": "c-1"},
    )

    record = result.record
    assert result.is_duplicate is False
    assert record.owner_address == OWNER
    assert record.size_bytes == 10
    assert record.content_digest == digest_bytes(data)
    assert record.pin_status == PinStatus.PINNED
    assert record.durable_status == DurableStatus.QUEUED
    assert is_valid_cid(record.pin_cid)
    assert record.tags == {"caseId": "c-1"}

    async with await uow_factory() as uow:
        stored = await uow.file_records.get_by_id(record.id)
    assert stored.pin_status == PinStatus.PINNED
    assert stored.mime_type == "text/plain"


@pytest.mark.asyncio
async def test_duplicate_content_returns_existing_record(uow_factory):
    service = PinService()
    client = pin_client(service)

    first = await accept_upload(uow_factory, client, OWNER, b"same bytes", "a.txt")
    second = await accept_upload(uow_factory, client, OWNER, b"same bytes", "b.txt")
    other = await accept_upload(uow_factory, client, OTHER_OWNER, b"same bytes", "c.txt")

    assert second.is_duplicate is True
    assert second.record.id == first.record.id
    assert other.is_duplicate is False
    assert service.uploads == 2


@pytest.mark.asyncio
async def test_pin_failure_is_recorded(uow_factory):
    service = PinService(upload_status=503)

    with pytest.raises(TransientError):
        await accept_upload(uow_factory, pin_client(service), OWNER, b"data", "f.bin")

    async with await uow_factory() as uow:
        records, total = await uow.file_records.list_paginated(owner_address=OWNER)
    assert total == 1
    assert records[0].pin_status == PinStatus.FAILED
    assert "503" in records[0].last_error

    # A pin-failed record does not block a fresh upload of the same bytes
    service.upload_status = 200
    retry = await accept_upload(uow_factory, pin_client(service), OWNER, b"data", "f.bin")
    assert retry.is_duplicate is False
    assert retry.record.pin_status == PinStatus.PINNED


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"PinSize": 10}, {"IpfsHash": "not-a-cid"}, ["IpfsHash"]])
async def test_malformed_pin_response_marks_record_failed(uow_factory, body):
    service = PinService(upload_body=body)

    with pytest.raises(PinValidationError):
        await accept_upload(uow_factory, pin_client(service), OWNER, b"data", "f.bin")

    async with await uow_factory() as uow:
        records, _ = await uow.file_records.list_paginated(owner_address=OWNER)
    assert records[0].pin_status == PinStatus.FAILED
    assert records[0].pin_cid is None

    service.upload_body = None
    retry = await accept_upload(uow_factory, pin_client(service), OWNER, b"data", "f.bin")
    assert retry.is_duplicate is False
    assert retry.record.pin_cid == CID
    assert service.uploads == 2


@pytest.mark.asyncio
async def test_unfinished_upload_is_resumed(uow_factory, make_record):
    data = b"interrupted upload"
    stuck = await make_record(pin_status=PinStatus.QUEUED, content_digest=digest_bytes(data))
    service = PinService()

    result = await accept_upload(uow_factory, pin_client(service), OWNER, data, "f.bin")

    assert result.is_duplicate is False
    assert result.record.id == stuck.id
    assert result.record.pin_status == PinStatus.PINNED
    assert result.record.pin_cid == CID
    assert service.uploads == 1

    async with await uow_factory() as uow:
        _, total = await uow.file_records.list_paginated(owner_address=OWNER)
    assert total == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "owner,data,filename,max_bytes,message",
    [
        (OWNER, b"", "f.bin", None, "empty"),
        (OWNER, b"x" * 11, "f.bin", 10, "maximum size"),
        (OWNER, b"x", "", None, "Filename"),
        ("742d35cc6634c0532925a3b844bc9e7595f0beb0", b"x", "f.bin", None, "0x"),
        ("0x" + "z" * 40, b"x", "f.bin", None, "Invalid"),
    ],
)
async def test_upload_validation(uow_factory, owner, data, filename, max_bytes, message):
    service = PinService()

    with pytest.raises(ValueError, match=message):
        await accept_upload(
            uow_factory, pin_client(service), owner, data, filename, max_bytes=max_bytes
        )

    assert service.uploads == 0


def test_normalize_owner_address():
    assert normalize_owner_address(MIXED_CASE_OWNER) == OWNER


@pytest.mark.asyncio
async def test_delete_unpins_then_removes(uow_factory, make_record):
    record = await make_record()
    service = PinService()

    assert await delete_record(uow_factory, pin_client(service), OWNER, record.id) is True

    assert service.unpins == [CID]
    async with await uow_factory() as uow:
        assert await uow.file_records.get_by_id(record.id) is None


@pytest.mark.asyncio
async def test_delete_tolerates_unpin_failure(uow_factory, make_record):
    record = await make_record()
    service = PinService(unpin_status=500)

    assert await delete_record(uow_factory, pin_client(service), OWNER, record.id) is True

    async with await uow_factory() as uow:
        assert await uow.file_records.get_by_id(record.id) is None


@pytest.mark.asyncio
async def test_delete_is_owner_scoped(uow_factory, make_record):
    record = await make_record()
    service = PinService()

    assert await delete_record(uow_factory, pin_client(service), OTHER_OWNER, record.id) is False

    assert service.unpins == []
    async with await uow_factory() as uow:
        assert await uow.file_records.get_by_id(record.id) is not None
