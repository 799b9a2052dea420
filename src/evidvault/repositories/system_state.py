"""SystemState repository.

Small JSON key-value store for process-wide state that must survive a
restart, such as the ledger topic id.
"""

from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from evidvault.core.timezone import utcnow
from evidvault.models.system_state import SystemState, validate_state_key

_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


class SystemStateRepository:
    """Repository for SystemState rows.

    Writes are single-statement UPSERTs (INSERT ... ON CONFLICT (key) DO UPDATE)
    so concurrent writers of the same key never hit a unique violation.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_state(self, key: str) -> Any | None:
        """Return the stored JSON value for key, or None."""
        result = await self.session.execute(
            select(SystemState.state_value).where(SystemState.key == key)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def set_state(self, key: str, value: Any) -> None:
        """Insert or replace the value stored under key.

        Args:
            key: Lower-case identifier (letters, digits, underscores)
            value: JSON-serializable value

        Raises:
            ValueError: Invalid key
        """
        validate_state_key(key)
        now = utcnow()
        insert = _UPSERT_DIALECTS[self.session.get_bind().dialect.name]
        stmt = insert(SystemState).values(key=key, state_value=value, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"state_value": value, "updated_at": now},
        )
        await self.session.execute(stmt)

    async def delete_state(self, key: str) -> bool:
        """Remove key; True if a row was deleted."""
        result = await self.session.execute(delete(SystemState).where(SystemState.key == key))  # type: ignore[arg-type]
        return result.rowcount > 0  # type: ignore[attr-defined]
