"""Process-wide ledger topic registry.

One instance is built at startup and shared. Lookup order:
explicit operator id, in-process cache, persisted system_state id, then a
single remote create.
"""

import asyncio
import re
from typing import Awaitable, Callable

import structlog

from evidvault.services.exceptions import InvalidTopicIdError
from evidvault.services.ledger.hedera_client import HederaClient

logger = structlog.get_logger(__name__)

TOPIC_STATE_KEY = "ledger_topic"

_TOPIC_ID = re.compile(r"^\d+\.\d+\.\d+$")


def is_valid_topic_id(value: str | None) -> bool:
    """Format check for shard.realm.num topic ids."""
    return bool(value) and bool(_TOPIC_ID.match(value))  # type: ignore[arg-type]


class TopicRegistry:
    """Cached LedgerTopic id with create-once semantics."""

    def __init__(
        self,
        client: HederaClient,
        memo: str = "SessionAuditLogs",
        explicit_topic_id: str | None = None,
        uow_factory: Callable[[], Awaitable] | None = None,
    ):
        """Initialize registry.

        Args:
            client: Ledger write client used for the one-off topic creation
            memo: Default topic memo
            explicit_topic_id: Operator-provided topic id (LEDGER_TOPIC_ID)
            uow_factory: Optional UnitOfWork factory for persisting the id

        Raises:
            InvalidTopicIdError: explicit_topic_id is not shard.realm.num
        """
        if explicit_topic_id and not is_valid_topic_id(explicit_topic_id):
            raise InvalidTopicIdError(
                f"Invalid topic id {explicit_topic_id!r}; expected shard.realm.num (e.g. 0.0.1234)"
            )
        self.client = client
        self.memo = memo
        self.explicit_topic_id = explicit_topic_id or None
        self.uow_factory = uow_factory
        self._topic_id: str | None = self.explicit_topic_id
        self._lock = asyncio.Lock()

    @property
    def cached_topic_id(self) -> str | None:
        return self._topic_id

    async def get_or_create_topic(self, name_hint: str | None = None) -> str:
        """Return the topic id, creating the topic on first use.

        Concurrent first calls share one remote create.

        Raises:
            LedgerNetworkError: Topic creation failed (nothing is cached)
        """
        if self._topic_id:
            return self._topic_id

        async with self._lock:
            if self._topic_id:
                return self._topic_id

            persisted = await self._load_persisted()
            if persisted:
                logger.info("ledger.topic_restored", topic_id=persisted)
                self._topic_id = persisted
                return persisted

            created = await self.client.create_topic(name_hint or self.memo)
            self._topic_id = created.topic_id
            await self._persist(created.topic_id)
            return created.topic_id

    async def _load_persisted(self) -> str | None:
        if self.uow_factory is None:
            return None
        async with await self.uow_factory() as uow:
            state = await uow.system_state.get_state(TOPIC_STATE_KEY)
        topic_id = (state or {}).get("topic_id")
        return topic_id if is_valid_topic_id(topic_id) else None

    async def _persist(self, topic_id: str) -> None:
        if self.uow_factory is None:
            return
        async with await self.uow_factory() as uow:
            await uow.system_state.set_state(
                TOPIC_STATE_KEY, {"topic_id": topic_id, "memo": self.memo}
            )
