"""PaymentLedgerEntry entity - append-only audit of payment activity."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from evidvault.core.timezone import utcnow


class PaymentEntryType(str, Enum):
    """Kind of payment activity."""

    BALANCE_CHECK = "balance_check"
    APPROVAL = "approval"
    DEPOSIT = "deposit"
    DEAL_PAYMENT = "deal_payment"
    SERVICE_APPROVAL = "service_approval"


class PaymentEntryStatus(str, Enum):
    """Confirmation state at the time the entry was written."""

    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"


class PaymentLedgerEntry(SQLModel, table=True):
    """PaymentLedgerEntry records one balance check, approval, deposit or deal payment.

    Rows are never updated after insert.
    """

    __tablename__ = "payment_ledger_entries"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_address: str = Field(max_length=42, index=True)
    entry_type: PaymentEntryType = Field(index=True)
    transaction_ref: Optional[str] = Field(default=None, max_length=255, index=True)
    amount: str = Field(default="0", max_length=78)  # base units as string to keep precision
    token: str = Field(default="USDFC", max_length=32)
    status: PaymentEntryStatus = Field(default=PaymentEntryStatus.PENDING)
    entry_metadata: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, index=True)
