"""FastAPI dependencies for request validation and common operations.

Services are built once in the application lifespan and stored on app.state;
these getters hand them to route handlers.
"""

from fastapi import HTTPException, Request, status

from evidvault.core.config import Settings
from evidvault.core.dependencies import Services
from evidvault.services.evidence_intake import normalize_owner_address
from evidvault.uow import UowFactory


def get_settings(request: Request) -> Settings:
    """Get the settings instance loaded at startup."""
    return request.app.state.settings


def get_uow_factory(request: Request) -> UowFactory:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.file_records.get_by_id(record_id)
    """
    return request.app.state.uow_factory


def get_services(request: Request) -> Services:
    """Get the pipeline services from app state."""
    return request.app.state.services


def owner_address_or_400(value: str) -> str:
    """Normalize a wallet address, mapping validation errors to HTTP 400."""
    try:
        return normalize_owner_address(value)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
