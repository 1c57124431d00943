"""Read-only participant roster for a court."""

from __future__ import annotations

from typing import Optional

from courtslots.domain.models import AdmissionState, Booking, RosterEntry
from courtslots.repository.data_repository import DataRepository
from courtslots.services.allocation_service import CourtAllocationService, CourtNotFoundError
from courtslots.services.identity_service import IdentityService
from courtslots.utils.config import Settings, get_settings
from courtslots.utils.logger import get_logger


logger = get_logger(__name__)

_STATUS_ORDER = {
    AdmissionState.CONFIRMED: 0,
    AdmissionState.GOING: 0,
    AdmissionState.PENDING: 1,
    AdmissionState.WAITLISTED: 2,
}


def _roster_key(booking: Booking) -> tuple:
    rank = _STATUS_ORDER[booking.admission_state]
    if booking.admission_state is AdmissionState.CONFIRMED:
        return (rank, booking.slot, booking.created_at, booking.booking_id)
    return (rank, -1, booking.created_at, booking.booking_id)


def order_roster(bookings: list[Booking], display_names: dict[str, str]) -> list[RosterEntry]:
    """Confirmed by slot, then pending, then the waitlist in claim order."""
    entries: list[RosterEntry] = []
    waitlist_position = 0
    for booking in sorted(bookings, key=_roster_key):
        position: Optional[int] = None
        if booking.admission_state is AdmissionState.WAITLISTED:
            waitlist_position += 1
            position = waitlist_position
        entries.append(
            RosterEntry(
                user_id=booking.user_id,
                display_name=display_names[booking.user_id],
                status=booking.admission_state,
                booking_id=booking.booking_id,
                slot=booking.slot,
                waitlist_position=position,
            )
        )
    return entries


class RosterService:
    """Builds the participant list shown for a court."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        allocation_service: Optional[CourtAllocationService] = None,
        identity_service: Optional[IdentityService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._allocation_service = allocation_service or CourtAllocationService(
            repository=self._repository,
            settings=self._settings,
        )
        self._identity_service = identity_service or IdentityService(
            repository=self._repository,
            settings=self._settings,
        )

    def build_roster(self, court_id: int) -> list[RosterEntry]:
        # Viewing the roster is one of the two triggers for lazy settlement.
        settlement = self._allocation_service.settle(court_id)
        if settlement.changed:
            logger.info("Roster request settled court | court_id=%s", court_id)

        with self._repository.unit_of_work(write=False) as store:
            if store.get_court(court_id) is None:
                raise CourtNotFoundError(f"Court {court_id} does not exist")
            bookings = store.query_bookings(court_id=court_id)

        display_names = self._identity_service.resolve_display_names(
            [booking.user_id for booking in bookings]
        )
        return order_roster(bookings, display_names)
