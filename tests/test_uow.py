"""Unit of Work tests.

Tests focus on transaction boundaries:
- Successful exit commits
- Exceptions roll back and propagate
"""

import pytest
from conftest import OWNER

from evidvault.models.file_record import FileRecord
from evidvault.models.payment_ledger import PaymentEntryType


def new_record() -> FileRecord:
    return FileRecord(
        owner_address=OWNER,
        content_digest="c" * 64,
        original_filename="evidence.pdf",
        size_bytes=3,
    )


@pytest.mark.asyncio
async def test_commit_on_success(uow_factory):
    record = new_record()

    async with await uow_factory() as uow:
        await uow.file_records.add(record)
        await uow.payments.append(owner_address=OWNER, entry_type=PaymentEntryType.BALANCE_CHECK)

    async with await uow_factory() as uow:
        assert await uow.file_records.get_by_id(record.id) is not None
        assert len(await uow.payments.list_for_owner(OWNER)) == 1


@pytest.mark.asyncio
async def test_rollback_on_exception(uow_factory):
    record = new_record()

    with pytest.raises(RuntimeError, match="boom"):
        async with await uow_factory() as uow:
            await uow.file_records.add(record)
            await uow.system_state.set_state("ledger_topic", {"topic_id": "0.0.5"})
            raise RuntimeError("boom")

    async with await uow_factory() as uow:
        assert await uow.file_records.get_by_id(record.id) is None
        assert await uow.system_state.get_state("ledger_topic") is None
