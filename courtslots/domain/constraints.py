"""Domain-level rules for court definitions and slot assignment."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from courtslots.domain.models import (
    AdmissionPolicy,
    AdmissionState,
    Booking,
    Court,
    CourtKind,
    CourtStatus,
)


class CourtValidationError(ValueError):
    """Raised when a court definition is inconsistent."""


class InvariantViolation(ValueError):
    """Raised when a booking set breaks a capacity or slot invariant."""


def validate_court_definition(
    *,
    kind: CourtKind,
    capacity: Optional[int],
    admission_policy: AdmissionPolicy,
    settlement_deadline: Optional[datetime],
    court_date: Optional[datetime] = None,
    status: Optional[CourtStatus] = None,
) -> None:
    if kind is CourtKind.CAPACITY_LIMITED:
        if capacity is None or capacity <= 0:
            raise CourtValidationError("capacity must be a positive integer for capacity-limited courts")
    elif capacity is not None:
        raise CourtValidationError("unbounded courts do not take a capacity")

    if kind is CourtKind.UNBOUNDED and admission_policy is AdmissionPolicy.PRIORITY:
        raise CourtValidationError("priority admission requires a capacity-limited court")
    if settlement_deadline is not None and admission_policy is not AdmissionPolicy.PRIORITY:
        raise CourtValidationError("settlement_deadline only applies to priority courts")
    if (
        settlement_deadline is not None
        and court_date is not None
        and settlement_deadline > court_date
    ):
        raise CourtValidationError("settlement_deadline must not be after the court date")
    if status is not None and kind is not CourtKind.UNBOUNDED:
        raise CourtValidationError("status only applies to unbounded courts")


@dataclass(frozen=True)
class SlotLedger:
    """Sparse set of occupied slots for one court.

    Gaps left by cancellations are kept as-is; growth always continues
    after the highest occupied slot.
    """

    occupied: frozenset[int] = frozenset()

    @classmethod
    def from_bookings(cls, bookings: Iterable[Booking]) -> "SlotLedger":
        return cls(
            frozenset(
                booking.slot
                for booking in bookings
                if booking.admission_state is AdmissionState.CONFIRMED and booking.slot is not None
            )
        )

    def __len__(self) -> int:
        return len(self.occupied)

    def __contains__(self, slot: object) -> bool:
        return slot in self.occupied

    def next_slot(self) -> int:
        if not self.occupied:
            return 0
        return max(self.occupied) + 1

    def gaps(self) -> list[int]:
        """Vacant slots below the highest occupied one."""
        if not self.occupied:
            return []
        return [slot for slot in range(max(self.occupied)) if slot not in self.occupied]

    def with_slot(self, slot: int) -> "SlotLedger":
        return SlotLedger(self.occupied | {slot})

    def without_slot(self, slot: int) -> "SlotLedger":
        return SlotLedger(self.occupied - {slot})


def verify_court_invariants(court: Court, bookings: Iterable[Booking]) -> None:
    """Check the booking set of one court against the admission invariants."""
    seen_users: set[str] = set()
    confirmed_slots: list[int] = []
    for booking in bookings:
        if booking.user_id in seen_users:
            raise InvariantViolation(f"user {booking.user_id} holds more than one claim")
        seen_users.add(booking.user_id)

        state = booking.admission_state
        if state is AdmissionState.CONFIRMED:
            if booking.slot is None or booking.slot < 0:
                raise InvariantViolation(f"confirmed booking {booking.booking_id} has no valid slot")
            confirmed_slots.append(booking.slot)
        elif booking.slot is not None:
            raise InvariantViolation(f"{state.value} booking {booking.booking_id} carries a slot")

        if court.is_capacity_limited and state is AdmissionState.GOING:
            raise InvariantViolation("GOING is only valid on unbounded courts")
        if not court.is_capacity_limited and state is not AdmissionState.GOING:
            raise InvariantViolation(f"{state.value} is not valid on unbounded courts")
        if state is AdmissionState.PENDING and not court.is_priority:
            raise InvariantViolation("PENDING is only valid on priority courts")

    if len(confirmed_slots) != len(set(confirmed_slots)):
        raise InvariantViolation(f"duplicate slot assignment on court {court.court_id}")
    if court.is_capacity_limited and len(confirmed_slots) > (court.capacity or 0):
        raise InvariantViolation(
            f"court {court.court_id} has {len(confirmed_slots)} confirmed claims "
            f"for capacity {court.capacity}"
        )
