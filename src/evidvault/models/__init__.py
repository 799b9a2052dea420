"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from evidvault.models.file_record import (
    DurableStatus,
    FileRecord,
    InvalidStateTransition,
    PinStatus,
    StoragePath,
)
from evidvault.models.payment_ledger import (
    PaymentEntryStatus,
    PaymentEntryType,
    PaymentLedgerEntry,
)
from evidvault.models.system_state import SystemState

__all__ = [
    "FileRecord",
    "PinStatus",
    "DurableStatus",
    "StoragePath",
    "InvalidStateTransition",
    "PaymentLedgerEntry",
    "PaymentEntryType",
    "PaymentEntryStatus",
    "SystemState",
]
