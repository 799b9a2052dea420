"""Repository layer.

Provides data access abstractions for all domain entities.
Each repository is self-contained.
"""

from evidvault.repositories.file_record import FileRecordRepository
from evidvault.repositories.payment_ledger import PaymentLedgerRepository
from evidvault.repositories.system_state import SystemStateRepository

__all__ = [
    "FileRecordRepository",
    "PaymentLedgerRepository",
    "SystemStateRepository",
]
