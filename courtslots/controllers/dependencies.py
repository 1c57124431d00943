"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from courtslots.domain.models import UserIdentity
from courtslots.repository.data_repository import DataRepository, StoreUnavailableError
from courtslots.services.allocation_service import CourtAllocationService
from courtslots.services.identity_service import (
    IdentityService,
    PermissionDeniedError,
    UnknownUserError,
)
from courtslots.services.roster_service import RosterService
from courtslots.utils.config import Settings, get_settings


def _state_service(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_repository(request: Request) -> DataRepository:
    return _state_service(request, "repository", "Repository")


def get_allocation_service(request: Request) -> CourtAllocationService:
    return _state_service(request, "allocation_service", "Allocation service")


def get_roster_service(request: Request) -> RosterService:
    return _state_service(request, "roster_service", "Roster service")


def _settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_identity_service(request: Request) -> IdentityService:
    service = getattr(request.app.state, "identity_service", None)
    if service is None:
        repository = get_repository(request)
        service = IdentityService(repository=repository, settings=_settings(request))
        request.app.state.identity_service = service
    return service


def get_current_user(
    request: Request,
    identity_service: IdentityService = Depends(get_identity_service),
) -> UserIdentity:
    header_name = _settings(request).user_id_header
    try:
        return identity_service.current_user(request.headers.get(header_name))
    except UnknownUserError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc


async def require_admin(user: UserIdentity = Depends(get_current_user)) -> UserIdentity:
    try:
        IdentityService.require_administrator(user)
    except PermissionDeniedError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc
    return user
