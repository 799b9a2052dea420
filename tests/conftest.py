"""pytest fixtures for evidvault tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped async SQLite database with all tables created
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- make_record: Inserts FileRecords in a given pin/durable state
- FakeGate: In-memory payment gate with a settable per-owner balance
"""

import os

# Settings are loaded at import time by evidvault.app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import evidvault.models  # noqa: E402,F401
from evidvault.models.file_record import DurableStatus, FileRecord, PinStatus  # noqa: E402
from evidvault.services.exceptions import InsufficientFundsError  # noqa: E402
from evidvault.services.filecoin.payment_gate import GateStatus  # noqa: E402
from evidvault.uow import create_uow_factory  # noqa: E402

OWNER = "0x742d35cc6634c0532925a3b844bc9e7595f0beb0"
OTHER_OWNER = "0x1234567890abcdef1234567890abcdef12345678"
CID = "bafkreihdwdcefgh4dqkjv67uzcmw7ojee6xedzdetojuzjevtenxquvyku"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a fresh file-backed SQLite database per test.

    A file (not :memory:) is used so every session sees the same database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def make_record(uow_factory):
    """Insert a FileRecord and return it (detached, committed)."""

    async def _make(
        owner_address: str = OWNER,
        pin_status: PinStatus = PinStatus.PINNED,
        durable_status: DurableStatus = DurableStatus.QUEUED,
        content_digest: str = "a" * 64,
        **fields,
    ) -> FileRecord:
        record = FileRecord(
            owner_address=owner_address,
            content_digest=content_digest,
            pin_cid=CID if pin_status == PinStatus.PINNED else None,
            pin_status=pin_status,
            durable_status=durable_status,
            original_filename=fields.pop("original_filename", "evidence.pdf"),
            size_bytes=fields.pop("size_bytes", 10),
            **fields,
        )
        async with await uow_factory() as uow:
            await uow.file_records.add(record)
        return record

    return _make


class FakeGate:
    """Payment gate double: balances per owner, counts live checks."""

    def __init__(self, balance: int = 10, minimum: int = 5, token: str = "USDFC"):
        self.balances: dict[str, int] = {}
        self.default_balance = balance
        self.minimum = minimum
        self.token = token
        self.checks = 0

    async def check_status(self, owner_address: str) -> GateStatus:
        self.checks += 1
        balance = self.balances.get(owner_address.lower(), self.default_balance)
        return GateStatus(
            owner_address=owner_address.lower(),
            is_ready=balance >= self.minimum,
            balance=balance,
            minimum_required=self.minimum,
            token=self.token,
        )

    async def ensure_ready(self, owner_address: str) -> GateStatus:
        status = await self.check_status(owner_address)
        if not status.is_ready:
            raise InsufficientFundsError(
                "Insufficient balance", balance=status.balance, minimum_required=self.minimum
            )
        return status


@pytest.fixture
def fake_gate() -> FakeGate:
    return FakeGate()
