"""Transaction boundary for the evidence store.

One UnitOfWork wraps one AsyncSession. Every repository it exposes shares that
session, so a file record transition and the payment ledger entry it produced
land in the same commit or are discarded together.
"""

from collections.abc import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evidvault.repositories.file_record import FileRecordRepository
from evidvault.repositories.payment_ledger import PaymentLedgerRepository
from evidvault.repositories.system_state import SystemStateRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Session-scoped bundle of repositories.

    Usage:
        async with await uow_factory() as uow:
            record = await uow.file_records.get_by_id(record_id)
            record.start_migration()

    Leaving the block normally commits. Leaving it with an exception rolls
    back and lets the exception propagate. The session is closed either way.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.file_records = FileRecordRepository(session)
        self.payments = PaymentLedgerRepository(session)
        self.system_state = SystemStateRepository(session)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        try:
            if exc_type is not None:
                await self.session.rollback()
                logger.info("uow.rolled_back", exc_type=exc_type.__name__)
            else:
                await self.session.commit()
                logger.debug("uow.committed")
        finally:
            await self.session.close()
        return False


UowFactory = Callable[[], Awaitable[UnitOfWork]]


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]) -> UowFactory:
    """Bind a session factory into a zero-argument UnitOfWork factory.

    Each call opens a fresh session, so callers never share transactions.
    """

    async def _open() -> UnitOfWork:
        return UnitOfWork(session_factory())

    return _open
