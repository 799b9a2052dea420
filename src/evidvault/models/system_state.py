"""SystemState entity: persisted process-wide settings discovered at runtime."""

import re
from datetime import datetime

from pydantic import field_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from evidvault.core.timezone import utcnow

_KEY = re.compile(r"^[a-z0-9_]+$")


def validate_state_key(key: str) -> str:
    """Keys are lower-case letters, digits and underscores."""
    if not _KEY.match(key):
        raise ValueError(f"Invalid state key {key!r}: use lower-case letters, digits, _")
    return key


class SystemState(SQLModel, table=True):
    """One JSON value per key (e.g. ledger_topic -> {"topic_id", "memo"})."""

    __tablename__ = "system_state"  # type: ignore[assignment]

    key: str = Field(primary_key=True, max_length=255)
    state_value: dict = Field(sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        return validate_state_key(v)
