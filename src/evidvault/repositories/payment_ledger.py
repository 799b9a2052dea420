"""PaymentLedgerEntry repository.

Append-only: there is no update or delete method by design of the table.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from evidvault.models.payment_ledger import (
    PaymentEntryStatus,
    PaymentEntryType,
    PaymentLedgerEntry,
)


class PaymentLedgerRepository:
    """Repository for PaymentLedgerEntry entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        owner_address: str,
        entry_type: PaymentEntryType,
        amount: int | str = 0,
        token: str = "USDFC",
        status: PaymentEntryStatus = PaymentEntryStatus.PENDING,
        transaction_ref: str | None = None,
        metadata: dict | None = None,
    ) -> PaymentLedgerEntry:
        """Insert a new ledger entry.

        Args:
            owner_address: Wallet the entry is attributed to
            entry_type: balance_check, approval, deposit or deal_payment
            amount: Amount in token base units
            token: Token symbol
            status: confirmed, pending or failed
            transaction_ref: On-chain tx hash or deal reference
            metadata: Links to file record id, piece/deal ids

        Returns:
            Persisted entry
        """
        entry = PaymentLedgerEntry(
            owner_address=owner_address.lower(),
            entry_type=entry_type,
            amount=str(amount),
            token=token,
            status=status,
            transaction_ref=transaction_ref,
            entry_metadata=metadata,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_owner(
        self,
        owner_address: str,
        entry_type: PaymentEntryType | None = None,
        limit: int = 100,
    ) -> list[PaymentLedgerEntry]:
        """Retrieve an owner's entries, newest first."""
        query = select(PaymentLedgerEntry).where(
            PaymentLedgerEntry.owner_address == owner_address.lower()  # type: ignore[arg-type]
        )
        if entry_type is not None:
            query = query.where(PaymentLedgerEntry.entry_type == entry_type)  # type: ignore[arg-type]
        query = query.order_by(PaymentLedgerEntry.created_at.desc()).limit(limit)  # type: ignore[attr-defined]
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        """Count entries per confirmation status across all owners."""
        result = await self.session.execute(
            select(PaymentLedgerEntry.status, func.count(PaymentLedgerEntry.id)).group_by(  # type: ignore[arg-type]
                PaymentLedgerEntry.status
            )
        )
        counts = {status.value: 0 for status in PaymentEntryStatus}
        for status, count in result.all():
            counts[PaymentEntryStatus(status).value] = count
        return counts
