"""Controller layer for the court catalog."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from courtslots.controllers.dependencies import (
    get_allocation_service,
    get_repository,
    require_admin,
)
from courtslots.domain.constraints import CourtValidationError, validate_court_definition
from courtslots.domain.models import AdmissionPolicy, Court, CourtKind, CourtStatus, UserIdentity
from courtslots.repository.data_repository import DataRepository, StoreUnavailableError
from courtslots.services.allocation_service import (
    CapacityRaceError,
    CourtAllocationService,
    CourtNotFoundError,
)
from courtslots.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/courts", tags=["courts"])


class CourtCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    kind: CourtKind
    court_date: datetime
    capacity: Optional[int] = Field(default=None, gt=0)
    admission_policy: AdmissionPolicy = AdmissionPolicy.FCFS
    settlement_deadline: Optional[datetime] = None
    location: str = ""
    start_time: str = ""
    end_time: str = ""
    description: Optional[str] = None
    status: Optional[CourtStatus] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must be non-empty")
        return value


class CourtUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    court_date: Optional[datetime] = None
    capacity: Optional[int] = Field(default=None, gt=0)
    admission_policy: Optional[AdmissionPolicy] = None
    settlement_deadline: Optional[datetime] = None
    location: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    description: Optional[str] = None
    status: Optional[CourtStatus] = None

    @field_validator("name", "court_date", "admission_policy", "location", "start_time", "end_time")
    @classmethod
    def reject_null(cls, value: object) -> object:
        if value is None:
            raise ValueError("field cannot be cleared")
        return value


class CourtResponse(BaseModel):
    court_id: int = Field(gt=0)
    name: str
    kind: str
    court_date: datetime
    capacity: Optional[int] = None
    admission_policy: str
    settlement_deadline: Optional[datetime] = None
    location: str
    start_time: str
    end_time: str
    description: Optional[str] = None
    status: Optional[str] = None
    status_label: Optional[str] = None

    @classmethod
    def from_court(cls, court: Court) -> "CourtResponse":
        return cls(
            court_id=court.court_id,
            name=court.name,
            kind=court.kind.value,
            court_date=court.court_date,
            capacity=court.capacity,
            admission_policy=court.admission_policy.value,
            settlement_deadline=court.settlement_deadline,
            location=court.location,
            start_time=court.start_time,
            end_time=court.end_time,
            description=court.description,
            status=None if court.status is None else court.status.value,
            status_label=court.status_label,
        )


class CourtDeleteResponse(BaseModel):
    court_id: int
    bookings_removed: int = Field(ge=0)


def _court_or_404(repository: DataRepository, court_id: int) -> Court:
    with repository.unit_of_work(write=False) as store:
        court = store.get_court(court_id)
    if court is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Court {court_id} does not exist",
        )
    return court


@router.get("", response_model=list[CourtResponse])
def list_courts(
    kind: Optional[CourtKind] = Query(default=None),
    date_from: Optional[datetime] = Query(default=None),
    date_to: Optional[datetime] = Query(default=None),
    location: Optional[str] = Query(default=None),
    court_status: Optional[CourtStatus] = Query(default=None, alias="status"),
    repository: DataRepository = Depends(get_repository),
) -> list[CourtResponse]:
    try:
        with repository.unit_of_work(write=False) as store:
            courts = store.list_courts(
                kind=kind,
                date_from=date_from,
                date_to=date_to,
                location=location,
                status=court_status,
            )
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return [CourtResponse.from_court(court) for court in courts]


@router.get("/{court_id}", response_model=CourtResponse)
def get_court(
    court_id: int,
    repository: DataRepository = Depends(get_repository),
) -> CourtResponse:
    try:
        court = _court_or_404(repository, court_id)
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return CourtResponse.from_court(court)


@router.post("", response_model=CourtResponse, status_code=status.HTTP_201_CREATED)
def create_court(
    payload: CourtCreateRequest,
    admin: UserIdentity = Depends(require_admin),
    repository: DataRepository = Depends(get_repository),
) -> CourtResponse:
    try:
        validate_court_definition(
            kind=payload.kind,
            capacity=payload.capacity,
            admission_policy=payload.admission_policy,
            settlement_deadline=payload.settlement_deadline,
            court_date=payload.court_date,
            status=payload.status,
        )
        with repository.unit_of_work() as store:
            court = store.create_court(
                name=payload.name,
                kind=payload.kind,
                court_date=payload.court_date,
                capacity=payload.capacity,
                admission_policy=payload.admission_policy,
                settlement_deadline=payload.settlement_deadline,
                location=payload.location,
                start_time=payload.start_time,
                end_time=payload.end_time,
                description=payload.description,
                now=datetime.now(timezone.utc),
                status=payload.status,
            )
    except CourtValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected court creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unexpected court creation failure",
        ) from exc

    logger.info(
        "Court created | court_id=%s | kind=%s | capacity=%s | policy=%s | actor=%s",
        court.court_id,
        court.kind.value,
        court.capacity,
        court.admission_policy.value,
        admin.user_id,
    )
    return CourtResponse.from_court(court)


@router.patch("/{court_id}", response_model=CourtResponse)
def update_court(
    court_id: int,
    payload: CourtUpdateRequest,
    admin: UserIdentity = Depends(require_admin),
    service: CourtAllocationService = Depends(get_allocation_service),
) -> CourtResponse:
    """Edit a court; raising capacity promotes the waitlist in claim order."""
    changes = payload.model_dump(exclude_unset=True)
    try:
        court, promoted = service.update_court(court_id, changes)
    except CourtNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except CourtValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except CapacityRaceError as exc:
        logger.error("Capacity race during court update | court_id=%s | error=%s", court_id, exc)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc

    logger.info(
        "Court edit applied | court_id=%s | promoted=%s | actor=%s",
        court_id,
        ",".join(booking.user_id for booking in promoted) or "-",
        admin.user_id,
    )
    return CourtResponse.from_court(court)


@router.delete("/{court_id}", response_model=CourtDeleteResponse)
def delete_court(
    court_id: int,
    admin: UserIdentity = Depends(require_admin),
    repository: DataRepository = Depends(get_repository),
) -> CourtDeleteResponse:
    try:
        _court_or_404(repository, court_id)
        with repository.unit_of_work() as store:
            removed = store.delete_court(court_id)
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc

    logger.info(
        "Court deleted | court_id=%s | bookings_removed=%s | actor=%s",
        court_id,
        removed,
        admin.user_id,
    )
    return CourtDeleteResponse(court_id=court_id, bookings_removed=removed)
