"""HTTP controller layer for claims, settlement, reordering and rosters."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from courtslots.controllers.dependencies import (
    get_allocation_service,
    get_current_user,
    get_roster_service,
    require_admin,
)
from courtslots.domain.models import Booking, RosterEntry, UserIdentity
from courtslots.repository.data_repository import StoreUnavailableError
from courtslots.services.allocation_service import (
    AllocationError,
    AllocationValidationError,
    CapacityRaceError,
    CourtAllocationService,
    DuplicateClaimError,
    NotFoundError,
)
from courtslots.services.identity_service import PermissionDeniedError
from courtslots.services.roster_service import RosterService
from courtslots.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["bookings"])

_HANDLED_ERRORS = (AllocationError, PermissionDeniedError, StoreUnavailableError)


class BookingResponse(BaseModel):
    booking_id: int = Field(gt=0)
    user_id: str
    court_id: int = Field(gt=0)
    admission_state: str
    slot: Optional[int] = Field(default=None, ge=0)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            booking_id=booking.booking_id,
            user_id=booking.user_id,
            court_id=booking.court_id,
            admission_state=booking.admission_state.value,
            slot=booking.slot,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class CancelResponse(BaseModel):
    cancelled: bool = True
    promoted: Optional[BookingResponse] = None


class MoveParticipantRequest(BaseModel):
    user_id: str = Field(min_length=1)
    new_slot: int = Field(ge=0)

    @field_validator("user_id")
    @classmethod
    def strip_user_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("user_id must be non-empty")
        return value


class SlotAssignmentResponse(BaseModel):
    booking_id: int
    slot: int = Field(ge=0)


class ClaimScoreResponse(BaseModel):
    booking_id: int
    user_id: str
    score: int = Field(ge=0)


class SettlementResponse(BaseModel):
    court_id: int
    settled: bool
    confirmed: list[SlotAssignmentResponse]
    waitlisted: list[int]
    scores: list[ClaimScoreResponse]


class RosterEntryResponse(BaseModel):
    user_id: str
    display_name: str
    status: str
    status_label: str
    booking_id: int
    slot: Optional[int] = Field(default=None, ge=0)
    waitlist_position: Optional[int] = Field(default=None, ge=1)

    @classmethod
    def from_entry(cls, entry: RosterEntry) -> "RosterEntryResponse":
        return cls(
            user_id=entry.user_id,
            display_name=entry.display_name,
            status=entry.status.value,
            status_label=entry.status_label,
            booking_id=entry.booking_id,
            slot=entry.slot,
            waitlist_position=entry.waitlist_position,
        )


class RosterResponse(BaseModel):
    court_id: int
    participants: list[RosterEntryResponse]


class UserBookingResponse(BaseModel):
    booking: BookingResponse
    court_name: str
    court_kind: str
    court_date: datetime


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, DuplicateClaimError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, CapacityRaceError):
        logger.error("Capacity race surfaced to caller | error=%s", exc)
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, AllocationValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, StoreUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Unexpected allocation failure",
    )


@router.post(
    "/courts/{court_id}/claims",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
def join_court(
    court_id: int,
    user: UserIdentity = Depends(get_current_user),
    service: CourtAllocationService = Depends(get_allocation_service),
) -> BookingResponse:
    try:
        booking = service.join(court_id, user.user_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected join failure")
        raise _http_error(exc) from exc
    return BookingResponse.from_booking(booking)


@router.get(
    "/courts/{court_id}/claims/{user_id}",
    response_model=BookingResponse,
)
def get_claim_status(
    court_id: int,
    user_id: str,
    _: UserIdentity = Depends(get_current_user),
    service: CourtAllocationService = Depends(get_allocation_service),
) -> BookingResponse:
    try:
        booking = service.get_claim_status(court_id, user_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    if booking is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} has no claim on court {court_id}",
        )
    return BookingResponse.from_booking(booking)


@router.delete("/courts/{court_id}/claims/me", response_model=CancelResponse)
def cancel_own_claim(
    court_id: int,
    user: UserIdentity = Depends(get_current_user),
    service: CourtAllocationService = Depends(get_allocation_service),
) -> CancelResponse:
    try:
        promoted = service.cancel_claim(court_id, user.user_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return CancelResponse(
        promoted=None if promoted is None else BookingResponse.from_booking(promoted)
    )


@router.delete("/bookings/{booking_id}", response_model=CancelResponse)
def cancel_booking(
    booking_id: int,
    user: UserIdentity = Depends(get_current_user),
    service: CourtAllocationService = Depends(get_allocation_service),
) -> CancelResponse:
    """Owners cancel their own booking; administrators may remove anyone."""
    try:
        promoted = service.cancel(booking_id, actor=user)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected cancellation failure")
        raise _http_error(exc) from exc
    return CancelResponse(
        promoted=None if promoted is None else BookingResponse.from_booking(promoted)
    )


@router.post("/courts/{court_id}/settle", response_model=SettlementResponse)
def settle_court(
    court_id: int,
    _: UserIdentity = Depends(get_current_user),
    service: CourtAllocationService = Depends(get_allocation_service),
) -> SettlementResponse:
    try:
        result = service.settle(court_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return SettlementResponse(
        court_id=result.court_id,
        settled=result.changed,
        confirmed=[
            SlotAssignmentResponse(booking_id=booking_id, slot=slot)
            for booking_id, slot in sorted(result.confirmed.items(), key=lambda item: item[1])
        ],
        waitlisted=result.waitlisted,
        scores=[
            ClaimScoreResponse(booking_id=item.booking_id, user_id=item.user_id, score=item.score)
            for item in result.scores
        ],
    )


@router.post("/courts/{court_id}/moves", response_model=BookingResponse)
def move_participant(
    court_id: int,
    payload: MoveParticipantRequest,
    admin: UserIdentity = Depends(require_admin),
    service: CourtAllocationService = Depends(get_allocation_service),
) -> BookingResponse:
    try:
        booking = service.move_participant(
            court_id,
            payload.user_id,
            payload.new_slot,
            actor=admin,
        )
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reorder failure")
        raise _http_error(exc) from exc
    return BookingResponse.from_booking(booking)


@router.get("/courts/{court_id}/roster", response_model=RosterResponse)
def get_roster(
    court_id: int,
    service: RosterService = Depends(get_roster_service),
) -> RosterResponse:
    try:
        entries = service.build_roster(court_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return RosterResponse(
        court_id=court_id,
        participants=[RosterEntryResponse.from_entry(entry) for entry in entries],
    )


@router.get("/users/me/bookings", response_model=list[UserBookingResponse])
def list_my_bookings(
    user: UserIdentity = Depends(get_current_user),
    service: CourtAllocationService = Depends(get_allocation_service),
) -> list[UserBookingResponse]:
    try:
        rows = service.list_user_bookings(user.user_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return [
        UserBookingResponse(
            booking=BookingResponse.from_booking(row.booking),
            court_name=row.court.name,
            court_kind=row.court.kind.value,
            court_date=row.court.court_date,
        )
        for row in rows
    ]


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
