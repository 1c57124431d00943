"""Domain models for court slot allocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class CourtKind(str, Enum):
    UNBOUNDED = "UNBOUNDED"
    CAPACITY_LIMITED = "CAPACITY_LIMITED"


class AdmissionPolicy(str, Enum):
    FCFS = "FCFS"
    PRIORITY = "PRIORITY"


class AdmissionState(str, Enum):
    GOING = "GOING"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"


class CourtStatus(str, Enum):
    """Administrator-set condition of an unbounded (outdoor) court."""

    AVAILABLE = "AVAILABLE"
    RAIN = "RAIN"
    CAT1 = "CAT1"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"

    @property
    def label(self) -> str:
        if self is CourtStatus.CAT1:
            return "Category 1"
        return self.value.capitalize()


@dataclass(frozen=True)
class Court:
    court_id: int
    name: str
    kind: CourtKind
    court_date: datetime
    capacity: Optional[int] = None
    admission_policy: AdmissionPolicy = AdmissionPolicy.FCFS
    settlement_deadline: Optional[datetime] = None
    location: str = ""
    start_time: str = ""
    end_time: str = ""
    description: Optional[str] = None
    status: Optional[CourtStatus] = None
    created_at: Optional[datetime] = None

    @property
    def is_capacity_limited(self) -> bool:
        return self.kind is CourtKind.CAPACITY_LIMITED

    @property
    def status_label(self) -> Optional[str]:
        if self.is_capacity_limited:
            return None
        return (self.status or CourtStatus.AVAILABLE).label

    @property
    def is_priority(self) -> bool:
        return self.is_capacity_limited and self.admission_policy is AdmissionPolicy.PRIORITY

    def deadline_passed(self, now: datetime) -> bool:
        """Wall-clock check; a priority court without a deadline never settles."""
        if not self.is_priority or self.settlement_deadline is None:
            return False
        return now >= self.settlement_deadline


@dataclass(frozen=True)
class Booking:
    booking_id: int
    user_id: str
    court_id: int
    admission_state: AdmissionState
    created_at: datetime
    updated_at: datetime
    slot: Optional[int] = None

    @property
    def claim_order(self) -> tuple[datetime, int]:
        return (self.created_at, self.booking_id)


@dataclass(frozen=True)
class UserIdentity:
    user_id: str
    display_name: str
    is_administrator: bool = False


@dataclass(frozen=True)
class BookingUpdate:
    booking_id: int
    admission_state: AdmissionState
    slot: Optional[int] = None


@dataclass
class RecordBatch:
    """Pending writes committed together by the store."""

    updates: list[BookingUpdate] = field(default_factory=list)
    deletes: list[int] = field(default_factory=list)

    def update(
        self,
        booking_id: int,
        admission_state: AdmissionState,
        slot: Optional[int] = None,
    ) -> None:
        self.updates.append(BookingUpdate(booking_id, admission_state, slot))

    def delete(self, booking_id: int) -> None:
        self.deletes.append(booking_id)

    def __bool__(self) -> bool:
        return bool(self.updates or self.deletes)


@dataclass(frozen=True)
class ClaimScore:
    booking_id: int
    user_id: str
    score: int


@dataclass(frozen=True)
class SettlementResult:
    court_id: int
    confirmed: dict[int, int] = field(default_factory=dict)
    waitlisted: list[int] = field(default_factory=list)
    scores: list[ClaimScore] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.confirmed or self.waitlisted)


@dataclass(frozen=True)
class RosterEntry:
    user_id: str
    display_name: str
    status: AdmissionState
    booking_id: int
    slot: Optional[int] = None
    waitlist_position: Optional[int] = None

    @property
    def status_label(self) -> str:
        if self.status is AdmissionState.GOING:
            return "Going"
        if self.status is AdmissionState.CONFIRMED:
            return f"Slot {self.slot + 1} - Confirmed"
        if self.status is AdmissionState.PENDING:
            return "Pending Assignment"
        return "Waitlisted"


@dataclass(frozen=True)
class UserBooking:
    booking: Booking
    court: Court
