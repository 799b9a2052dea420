"""Repository layer tests.

Tests focus on query logic:
- Owner-level dedup ignores pin-failed records
- Pending/failed/stale selection and ordering
- Pagination and per-status counts
- Conditional durable-status writes and piece id lookup
- Payment ledger append and owner filtering
- System state UPSERT behavior

Note: FOR UPDATE SKIP LOCKED is a no-op on SQLite; worker coordination is
exercised against PostgreSQL in deployment.
"""

from datetime import datetime, timedelta

import pytest
from conftest import OTHER_OWNER, OWNER

from evidvault.models.file_record import DurableStatus, FileRecord, PinStatus
from evidvault.models.payment_ledger import PaymentEntryStatus, PaymentEntryType
from evidvault.repositories.file_record import FileRecordRepository
from evidvault.repositories.payment_ledger import PaymentLedgerRepository
from evidvault.repositories.system_state import SystemStateRepository


def record(owner=OWNER, digest="a" * 64, created_at=None, **fields) -> FileRecord:
    return FileRecord(
        owner_address=owner,
        content_digest=digest,
        original_filename="evidence.pdf",
        size_bytes=10,
        created_at=created_at or datetime(2024, 1, 1),
        **fields,
    )


@pytest.mark.asyncio
async def test_dedup_lookup_is_per_owner_and_skips_pin_failures(session):
    repo = FileRecordRepository(session)
    failed = await repo.add(record(pin_status=PinStatus.FAILED, created_at=datetime(2024, 1, 1)))
    pinned = await repo.add(record(pin_status=PinStatus.PINNED, created_at=datetime(2024, 1, 2)))
    await repo.add(record(owner=OTHER_OWNER, pin_status=PinStatus.PINNED))
    await session.commit()

    found = await repo.get_by_owner_and_digest(OWNER.upper().replace("0X", "0x"), "a" * 64)

    assert found is not None
    assert found.id == pinned.id
    assert found.id != failed.id
    assert await repo.get_by_owner_and_digest(OWNER, "b" * 64) is None


@pytest.mark.asyncio
async def test_get_for_owner_scopes_by_owner(session):
    repo = FileRecordRepository(session)
    mine = await repo.add(record())
    await session.commit()

    assert (await repo.get_for_owner(mine.id, OWNER)).id == mine.id
    assert await repo.get_for_owner(mine.id, OTHER_OWNER) is None


@pytest.mark.asyncio
async def test_pending_migration_selects_pinned_queued_oldest_first(session):
    repo = FileRecordRepository(session)
    newer = await repo.add(record(pin_status=PinStatus.PINNED, created_at=datetime(2024, 1, 3)))
    older = await repo.add(record(pin_status=PinStatus.PINNED, created_at=datetime(2024, 1, 1)))
    await repo.add(record(pin_status=PinStatus.QUEUED))
    await repo.add(
        record(pin_status=PinStatus.PINNED, durable_status=DurableStatus.FAILED)
    )
    await repo.add(
        record(pin_status=PinStatus.PINNED, durable_status=DurableStatus.COMPLETED)
    )
    await session.commit()

    pending = await repo.get_pending_migration(limit=10)

    assert [r.id for r in pending] == [older.id, newer.id]
    assert len(await repo.get_pending_migration(limit=1)) == 1


@pytest.mark.asyncio
async def test_get_failed_filters_by_owner(session):
    repo = FileRecordRepository(session)
    mine = await repo.add(record(durable_status=DurableStatus.FAILED))
    theirs = await repo.add(record(owner=OTHER_OWNER, durable_status=DurableStatus.FAILED))
    await repo.add(record(durable_status=DurableStatus.QUEUED))
    await session.commit()

    assert {r.id for r in await repo.get_failed()} == {mine.id, theirs.id}
    assert [r.id for r in await repo.get_failed(OWNER)] == [mine.id]


@pytest.mark.asyncio
async def test_get_stale_uploading(session):
    repo = FileRecordRepository(session)
    now = datetime(2024, 6, 1, 12, 0)
    stale = await repo.add(
        record(durable_status=DurableStatus.UPLOADING, last_attempt_at=now - timedelta(hours=2))
    )
    await repo.add(
        record(durable_status=DurableStatus.UPLOADING, last_attempt_at=now - timedelta(minutes=5))
    )
    await session.commit()

    found = await repo.get_stale_uploading(now - timedelta(minutes=30))

    assert [r.id for r in found] == [stale.id]


@pytest.mark.asyncio
async def test_list_paginated_and_counts(session):
    repo = FileRecordRepository(session)
    for day in range(1, 6):
        await repo.add(record(created_at=datetime(2024, 1, day)))
    await repo.add(record(durable_status=DurableStatus.COMPLETED, created_at=datetime(2024, 2, 1)))
    await repo.add(record(owner=OTHER_OWNER))
    await session.commit()

    page, total = await repo.list_paginated(owner_address=OWNER, offset=0, limit=2)
    assert total == 6
    assert [r.created_at for r in page] == [datetime(2024, 2, 1), datetime(2024, 1, 5)]

    queued, queued_total = await repo.list_paginated(
        owner_address=OWNER, durable_status=DurableStatus.QUEUED, offset=4, limit=10
    )
    assert queued_total == 5
    assert len(queued) == 1

    counts = await repo.count_by_status(OWNER)
    assert counts == {"queued": 5, "uploading": 0, "completed": 1, "failed": 0}


@pytest.mark.asyncio
async def test_delete_removes_record(session):
    repo = FileRecordRepository(session)
    doomed = await repo.add(record())
    await session.commit()

    await repo.delete(doomed)
    await session.commit()

    assert await repo.get_by_id(doomed.id) is None


@pytest.mark.asyncio
async def test_payment_ledger_append_and_list(session):
    repo = PaymentLedgerRepository(session)
    await repo.append(
        owner_address=OWNER.upper().replace("0X", "0x"),
        entry_type=PaymentEntryType.DEPOSIT,
        amount=10**19,
        status=PaymentEntryStatus.CONFIRMED,
        transaction_ref="0xabc",
    )
    await repo.append(owner_address=OWNER, entry_type=PaymentEntryType.BALANCE_CHECK, amount=5)
    await repo.append(owner_address=OTHER_OWNER, entry_type=PaymentEntryType.DEPOSIT)
    await session.commit()

    entries = await repo.list_for_owner(OWNER)
    deposits = await repo.list_for_owner(OWNER, entry_type=PaymentEntryType.DEPOSIT)

    assert len(entries) == 2
    assert all(e.owner_address == OWNER for e in entries)
    assert [d.amount for d in deposits] == [str(10**19)]
    assert deposits[0].transaction_ref == "0xabc"


@pytest.mark.asyncio
async def test_system_state_upsert(session):
    repo = SystemStateRepository(session)

    await repo.set_state("ledger_topic", {"topic_id": "0.0.1001"})
    await session.commit()
    await repo.set_state("ledger_topic", {"topic_id": "0.0.2002"})
    await session.commit()

    assert await repo.get_state("ledger_topic") == {"topic_id": "0.0.2002"}
    assert await repo.delete_state("ledger_topic") is True
    assert await repo.delete_state("ledger_topic") is False
    assert await repo.get_state("ledger_topic") is None


@pytest.mark.asyncio
async def test_compare_and_set_writes_only_when_row_matches(uow_factory, make_record):
    stored = await make_record(durable_status=DurableStatus.FAILED, attempt_count=2)
    stored.start_migration(now=datetime(2024, 6, 1))

    async with await uow_factory() as uow:
        assert await uow.file_records.compare_and_set(stored, DurableStatus.FAILED, 2) is True
    async with await uow_factory() as uow:
        assert await uow.file_records.compare_and_set(stored, DurableStatus.FAILED, 2) is False
        reloaded = await uow.file_records.get_by_id(stored.id)

    assert reloaded.durable_status == DurableStatus.UPLOADING
    assert reloaded.attempt_count == 3
    assert reloaded.last_attempt_at == datetime(2024, 6, 1)


@pytest.mark.asyncio
async def test_get_by_piece_id_returns_completed_record(session):
    repo = FileRecordRepository(session)
    done = await repo.add(
        record(
            pin_status=PinStatus.PINNED,
            durable_status=DurableStatus.COMPLETED,
            piece_id="baga6ea4seaqdone",
            deal_id="deal-1",
            completed_at=datetime(2024, 1, 3),
        )
    )
    await repo.add(record(pin_status=PinStatus.PINNED))
    await session.commit()

    assert (await repo.get_by_piece_id("baga6ea4seaqdone")).id == done.id
    assert await repo.get_by_piece_id("baga6ea4seaqother") is None
