"""Payment gate API endpoints.

- GET /api/payments/status - Live readiness of a wallet's payments account
- POST /api/payments/setup - Idempotent approve + deposit for a wallet
- GET /api/payments/history - PaymentLedgerEntry audit trail
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from evidvault.api.dependencies import get_services, get_uow_factory, owner_address_or_400
from evidvault.core.dependencies import Services
from evidvault.models.payment_ledger import PaymentEntryType
from evidvault.services.exceptions import ServiceError, TransientError
from evidvault.services.filecoin.payment_gate import GateStatus

logger = structlog.get_logger()
router = APIRouter(prefix="/api/payments", tags=["payments"])


# Request/Response Models


class PaymentStatusResponse(BaseModel):
    wallet_address: str
    is_ready: bool
    balance: str = Field(..., description="Available funds in token base units")
    minimum_required: str = Field(..., description="MIN_BALANCE in token base units")
    token: str

    @classmethod
    def from_status(cls, gate_status: GateStatus) -> "PaymentStatusResponse":
        return cls(
            wallet_address=gate_status.owner_address,
            is_ready=gate_status.is_ready,
            balance=str(gate_status.balance),
            minimum_required=str(gate_status.minimum_required),
            token=gate_status.token,
        )


class SetupRequest(BaseModel):
    wallet_address: str = Field(
        ...,
        description="Ethereum wallet address (0x + 40 hex characters)",
        min_length=42,
        max_length=42,
    )


class SetupResponse(BaseModel):
    success: bool
    is_ready: bool
    message: str
    transactions: list[str]
    status: PaymentStatusResponse


class PaymentEntryDTO(BaseModel):
    id: UUID
    entry_type: str
    transaction_ref: str | None
    amount: str
    token: str
    status: str
    metadata: dict | None
    created_at: datetime


class PaymentHistoryResponse(BaseModel):
    wallet_address: str
    entries: list[PaymentEntryDTO]


def _gate_error(e: ServiceError) -> HTTPException:
    if isinstance(e, TransientError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Payment network unavailable: {e}",
        )
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


# API Endpoints


@router.get("/status", response_model=PaymentStatusResponse)
async def get_payment_status(
    wallet_address: str = Query(...),
    services: Services = Depends(get_services),
) -> PaymentStatusResponse:
    """Live balance check against the payments contract."""
    owner = owner_address_or_400(wallet_address)
    try:
        gate_status = await services.gate.check_status(owner)
    except ServiceError as e:
        raise _gate_error(e)
    return PaymentStatusResponse.from_status(gate_status)


@router.post("/setup", response_model=SetupResponse)
async def set_up_payments(
    request: SetupRequest,
    uow_factory=Depends(get_uow_factory),
    services: Services = Depends(get_services),
) -> SetupResponse:
    """Fund a wallet's payments account if it is below the minimum.

    Already-funded wallets get success=true and no transaction is sent.
    Ledger entries for transactions that were sent are kept even when a
    later step fails.
    """
    owner = owner_address_or_400(request.wallet_address)
    error: ServiceError | None = None
    async with await uow_factory() as uow:
        try:
            result = await services.gate.set_up(owner, uow.payments)
        except ServiceError as e:
            error = e

    if error is not None:
        logger.error("payments_setup_failed", wallet_address=owner, error=str(error))
        raise _gate_error(error)

    return SetupResponse(
        success=True,
        is_ready=result.is_ready,
        message=result.message,
        transactions=result.transactions,
        status=PaymentStatusResponse.from_status(result.status),
    )


@router.get("/history", response_model=PaymentHistoryResponse)
async def get_payment_history(
    wallet_address: str = Query(...),
    entry_type: PaymentEntryType | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    uow_factory=Depends(get_uow_factory),
) -> PaymentHistoryResponse:
    """Payment ledger entries for a wallet, newest first."""
    owner = owner_address_or_400(wallet_address)
    async with await uow_factory() as uow:
        entries = await uow.payments.list_for_owner(owner, entry_type=entry_type, limit=limit)

    return PaymentHistoryResponse(
        wallet_address=owner,
        entries=[
            PaymentEntryDTO(
                id=entry.id,
                entry_type=entry.entry_type.value,
                transaction_ref=entry.transaction_ref,
                amount=entry.amount,
                token=entry.token,
                status=entry.status.value,
                metadata=entry.entry_metadata,
                created_at=entry.created_at,
            )
            for entry in entries
        ],
    )
