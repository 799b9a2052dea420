"""Operational status API endpoints.

- GET /api/status/system - Service connectivity and pipeline statistics
- GET /api/status/mirror - Ledger topic and mirror node verification settings
"""

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from evidvault.api.dependencies import get_services, get_uow_factory
from evidvault.core.dependencies import Services
from evidvault.core.timezone import utcnow
from evidvault.services.exceptions import ServiceError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/status", tags=["status"])


class PinStoreStatus(BaseModel):
    configured: bool
    authenticated: bool | None = Field(
        default=None, description="None when no JWT is configured"
    )
    error: str | None = None


class DurableStorageStatus(BaseModel):
    provider_configured: bool
    operator_address: str | None
    service_address: str | None


class LedgerStatus(BaseModel):
    topic_id: str | None
    mirror_node_url: str


class SystemStatistics(BaseModel):
    total_files: int
    files_by_durable_status: dict[str, int]
    total_payments: int
    payments_by_status: dict[str, int]


class SystemStatusResponse(BaseModel):
    pin_store: PinStoreStatus
    durable_storage: DurableStorageStatus
    ledger: LedgerStatus
    statistics: SystemStatistics
    timestamp: str


class MirrorStatusResponse(BaseModel):
    topic_id: str | None
    mirror_node_url: str
    topic_messages_url: str | None
    default_max_attempts: int
    default_interval_ms: int
    message_limit: int


async def _pin_store_status(services: Services) -> PinStoreStatus:
    if not services.pin_client.jwt_token:
        return PinStoreStatus(configured=False)
    try:
        authenticated = await services.pin_client.test_authentication()
    except ServiceError as e:
        logger.warning("status.pin_store_unreachable", error=str(e))
        return PinStoreStatus(configured=True, authenticated=False, error=str(e))
    return PinStoreStatus(configured=True, authenticated=authenticated)


@router.get("/system", response_model=SystemStatusResponse)
async def get_system_status(
    services: Services = Depends(get_services),
    uow_factory=Depends(get_uow_factory),
) -> SystemStatusResponse:
    """Report which external services answer and how far the pipeline has got.

    Pin store failures are reported in the body; the endpoint itself stays 200.
    """
    async with await uow_factory() as uow:
        file_counts = await uow.file_records.count_by_status()
        payment_counts = await uow.payments.count_by_status()

    return SystemStatusResponse(
        pin_store=await _pin_store_status(services),
        durable_storage=DurableStorageStatus(
            provider_configured=bool(services.storage_client.base_url),
            operator_address=services.gate.operator_address,
            service_address=services.gate.service_address,
        ),
        ledger=LedgerStatus(
            topic_id=services.topic_registry.cached_topic_id,
            mirror_node_url=services.verifier.base_url,
        ),
        statistics=SystemStatistics(
            total_files=sum(file_counts.values()),
            files_by_durable_status=file_counts,
            total_payments=sum(payment_counts.values()),
            payments_by_status=payment_counts,
        ),
        timestamp=utcnow().isoformat(),
    )


@router.get("/mirror", response_model=MirrorStatusResponse)
async def get_mirror_status(services: Services = Depends(get_services)) -> MirrorStatusResponse:
    topic_id = services.topic_registry.cached_topic_id
    verifier = services.verifier
    return MirrorStatusResponse(
        topic_id=topic_id,
        mirror_node_url=verifier.base_url,
        topic_messages_url=verifier.topic_messages_url(topic_id) if topic_id else None,
        default_max_attempts=verifier.default_max_attempts,
        default_interval_ms=verifier.default_interval_ms,
        message_limit=verifier.message_limit,
    )
