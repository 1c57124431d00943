"""Court slot allocation: admission, settlement, promotion and reordering.

Every public operation runs inside one write unit of work, so the reads
that feed a decision and the writes that record it are serialized against
all other writers of the same database. Settlement is lazy: it happens
when ``join`` or the roster touches a priority court whose deadline has
passed, never on a timer.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from courtslots.domain.constraints import (
    CourtValidationError,
    InvariantViolation,
    SlotLedger,
    validate_court_definition,
    verify_court_invariants,
)
from courtslots.domain.models import (
    AdmissionPolicy,
    AdmissionState,
    Booking,
    Court,
    RecordBatch,
    SettlementResult,
    UserBooking,
    UserIdentity,
)
from courtslots.repository.data_repository import (
    BookingStore,
    ClaimConflictError,
    DataRepository,
    RecordNotFoundError,
    SlotConflictError,
)
from courtslots.services.identity_service import IdentityService, PermissionDeniedError
from courtslots.services.priority_scorer import PriorityScorer
from courtslots.utils.config import Settings, get_settings
from courtslots.utils.logger import get_logger


logger = get_logger(__name__)

Clock = Callable[[], datetime]


class AllocationError(Exception):
    """Base exception for allocation workflow failures."""


class DuplicateClaimError(AllocationError):
    """Raised when the user already holds a claim on the court."""


class NotFoundError(AllocationError):
    """Raised when a court, booking or participant is absent."""


class CourtNotFoundError(NotFoundError):
    pass


class BookingNotFoundError(NotFoundError):
    pass


class ParticipantNotFoundError(NotFoundError):
    """Raised when no confirmed booking exists for the user on the court."""


class CapacityRaceError(AllocationError):
    """Raised when a decision would break capacity or slot uniqueness.

    Serialized units of work should make this unreachable; seeing it means
    a write slipped past the store lock.
    """


class AllocationValidationError(AllocationError):
    """Raised when an operation does not apply to the court or arguments."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def apply_batch(bookings: Iterable[Booking], batch: RecordBatch) -> list[Booking]:
    """Project the booking set a batch would produce, without writing it."""
    updates = {update.booking_id: update for update in batch.updates}
    deleted = set(batch.deletes)
    projected: list[Booking] = []
    for booking in bookings:
        if booking.booking_id in deleted:
            continue
        update = updates.get(booking.booking_id)
        if update is not None:
            booking = replace(booking, admission_state=update.admission_state, slot=update.slot)
        projected.append(booking)
    return projected


def plan_move(confirmed: list[Booking], mover: Booking, new_slot: int) -> RecordBatch:
    """Plan the slot writes that put ``mover`` at ``new_slot``.

    An occupied destination with nobody strictly between origin and
    destination is a swap. Otherwise everyone in (origin, destination]
    steps one place toward the origin.
    """
    old_slot = mover.slot
    low, high = sorted((old_slot, new_slot))
    others = [booking for booking in confirmed if booking.booking_id != mover.booking_id]
    occupant = next((booking for booking in others if booking.slot == new_slot), None)
    between = [booking for booking in others if low < booking.slot < high]

    batch = RecordBatch()
    if occupant is not None and not between:
        batch.update(occupant.booking_id, AdmissionState.CONFIRMED, old_slot)
    elif new_slot > old_slot:
        for booking in others:
            if old_slot < booking.slot <= new_slot:
                batch.update(booking.booking_id, AdmissionState.CONFIRMED, booking.slot - 1)
    else:
        for booking in others:
            if new_slot <= booking.slot < old_slot:
                batch.update(booking.booking_id, AdmissionState.CONFIRMED, booking.slot + 1)
    batch.update(mover.booking_id, AdmissionState.CONFIRMED, new_slot)
    return batch


class CourtAllocationService:
    """Decides slot assignment, waitlisting, settlement and reordering."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        scorer: Optional[PriorityScorer] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._scorer = scorer or PriorityScorer(self._settings)
        self._clock = clock or _utc_now

    def now(self) -> datetime:
        return self._clock()

    # --- admission --------------------------------------------------------

    def join(self, court_id: int, user_id: str) -> Booking:
        """Create the user's claim on the court and admit it."""
        now = self.now()
        with self._repository.unit_of_work() as store:
            court = self._load_court(store, court_id)
            if store.query_bookings(court_id=court_id, user_id=user_id):
                raise DuplicateClaimError(
                    f"User {user_id} already has a claim on court {court_id}; cancel it first"
                )
            if court.deadline_passed(now):
                self._settle_in(store, court, now)

            existing = store.query_bookings(court_id=court_id)
            state, slot = self._admission_for(court, existing, now)
            candidate = Booking(
                booking_id=-1,
                user_id=user_id,
                court_id=court_id,
                admission_state=state,
                slot=slot,
                created_at=now,
                updated_at=now,
            )
            self._verify(court, [*existing, candidate])
            try:
                booking = store.create_booking(
                    user_id=user_id,
                    court_id=court_id,
                    admission_state=state,
                    slot=slot,
                    now=now,
                )
            except ClaimConflictError as exc:
                raise DuplicateClaimError(str(exc)) from exc
            except SlotConflictError as exc:
                raise CapacityRaceError(str(exc)) from exc

        logger.info(
            "Claim admitted | court_id=%s | user_id=%s | state=%s | slot=%s",
            court_id,
            user_id,
            booking.admission_state.value,
            booking.slot,
        )
        return booking

    @staticmethod
    def _admission_for(
        court: Court,
        existing: list[Booking],
        now: datetime,
    ) -> tuple[AdmissionState, Optional[int]]:
        if not court.is_capacity_limited:
            return AdmissionState.GOING, None

        if court.is_priority and not court.deadline_passed(now):
            # An existing waitlist means capacity ran out before this claim.
            if any(booking.admission_state is AdmissionState.WAITLISTED for booking in existing):
                return AdmissionState.WAITLISTED, None
            return AdmissionState.PENDING, None

        ledger = SlotLedger.from_bookings(existing)
        if len(ledger) < court.capacity:
            return AdmissionState.CONFIRMED, ledger.next_slot()
        return AdmissionState.WAITLISTED, None

    # --- cancellation -----------------------------------------------------

    def cancel(self, booking_id: int, actor: Optional[UserIdentity] = None) -> Optional[Booking]:
        """Delete a booking; returns the waitlisted booking promoted into its slot."""
        now = self.now()
        with self._repository.unit_of_work() as store:
            booking = store.get_booking(booking_id)
            if booking is None:
                raise BookingNotFoundError(f"Booking {booking_id} does not exist")
            if actor is not None and not actor.is_administrator and actor.user_id != booking.user_id:
                raise PermissionDeniedError(
                    f"User {actor.user_id} cannot cancel booking {booking_id}"
                )
            court = self._load_court(store, booking.court_id)
            promoted = self._release(store, court, booking, now)
        return promoted

    def cancel_claim(self, court_id: int, user_id: str) -> Optional[Booking]:
        """Cancel whatever claim the user holds on the court."""
        now = self.now()
        with self._repository.unit_of_work() as store:
            court = self._load_court(store, court_id)
            claims = store.query_bookings(court_id=court_id, user_id=user_id)
            if not claims:
                raise BookingNotFoundError(f"User {user_id} has no claim on court {court_id}")
            promoted = self._release(store, court, claims[0], now)
        return promoted

    def _release(
        self,
        store: BookingStore,
        court: Court,
        booking: Booking,
        now: datetime,
    ) -> Optional[Booking]:
        batch = RecordBatch()
        batch.delete(booking.booking_id)

        head: Optional[Booking] = None
        if booking.admission_state is AdmissionState.CONFIRMED:
            waitlist = store.query_bookings(
                court_id=court.court_id,
                admission_state=AdmissionState.WAITLISTED,
            )
            if waitlist:
                head = waitlist[0]
                batch.update(head.booking_id, AdmissionState.CONFIRMED, booking.slot)

        self._commit(store, court, batch, now)
        logger.info(
            "Claim cancelled | court_id=%s | booking_id=%s | user_id=%s | freed_slot=%s",
            court.court_id,
            booking.booking_id,
            booking.user_id,
            booking.slot,
        )
        if head is None:
            if booking.slot is not None:
                logger.info(
                    "Slot vacated without promotion | court_id=%s | slot=%s",
                    court.court_id,
                    booking.slot,
                )
            return None

        logger.info(
            "Waitlist promotion | court_id=%s | booking_id=%s | user_id=%s | slot=%s",
            court.court_id,
            head.booking_id,
            head.user_id,
            booking.slot,
        )
        return store.get_booking(head.booking_id)

    # --- settlement -------------------------------------------------------

    def settle(self, court_id: int) -> SettlementResult:
        """Rank pending claims once the deadline has passed; no-op otherwise."""
        now = self.now()
        with self._repository.unit_of_work() as store:
            court = self._load_court(store, court_id)
            return self._settle_in(store, court, now)

    def _settle_in(self, store: BookingStore, court: Court, now: datetime) -> SettlementResult:
        if not court.deadline_passed(now):
            return SettlementResult(court_id=court.court_id)
        pending = store.query_bookings(
            court_id=court.court_id,
            admission_state=AdmissionState.PENDING,
        )
        if not pending:
            return SettlementResult(court_id=court.court_id)

        ranked = self._scorer.rank(store, pending, as_of=court.court_date)
        ledger = SlotLedger.from_bookings(store.query_bookings(court_id=court.court_id))

        batch = RecordBatch()
        confirmed: dict[int, int] = {}
        waitlisted: list[int] = []
        for claim in ranked:
            if len(ledger) < court.capacity:
                slot = ledger.next_slot()
                ledger = ledger.with_slot(slot)
                batch.update(claim.booking_id, AdmissionState.CONFIRMED, slot)
                confirmed[claim.booking_id] = slot
            else:
                batch.update(claim.booking_id, AdmissionState.WAITLISTED)
                waitlisted.append(claim.booking_id)

        self._commit(store, court, batch, now)
        logger.info(
            "Court settled | court_id=%s | pending=%s | confirmed=%s | waitlisted=%s",
            court.court_id,
            len(pending),
            len(confirmed),
            len(waitlisted),
        )
        return SettlementResult(
            court_id=court.court_id,
            confirmed=confirmed,
            waitlisted=waitlisted,
            scores=ranked,
        )

    # --- administrator reordering ----------------------------------------

    def move_participant(
        self,
        court_id: int,
        user_id: str,
        new_slot: int,
        actor: UserIdentity,
    ) -> Booking:
        """Move a confirmed participant to ``new_slot`` by swap or shift."""
        IdentityService.require_administrator(actor)
        if new_slot < 0:
            raise AllocationValidationError("new_slot must be >= 0")

        now = self.now()
        with self._repository.unit_of_work() as store:
            court = self._load_court(store, court_id)
            if not court.is_capacity_limited:
                raise AllocationValidationError(
                    f"Court {court_id} has no slots to reorder"
                )
            confirmed = store.query_bookings(
                court_id=court_id,
                admission_state=AdmissionState.CONFIRMED,
            )
            mover = next((booking for booking in confirmed if booking.user_id == user_id), None)
            if mover is None:
                raise ParticipantNotFoundError(
                    f"User {user_id} has no confirmed slot on court {court_id}"
                )
            if mover.slot == new_slot:
                return mover

            batch = plan_move(confirmed, mover, new_slot)
            self._commit(store, court, batch, now)
            moved = store.get_booking(mover.booking_id)

        logger.info(
            "Participant moved | court_id=%s | user_id=%s | from_slot=%s | to_slot=%s | "
            "affected=%s | actor=%s",
            court_id,
            user_id,
            mover.slot,
            new_slot,
            len(batch.updates) - 1,
            actor.user_id,
        )
        return moved

    # --- court edits ------------------------------------------------------

    def update_court(self, court_id: int, changes: dict[str, Any]) -> tuple[Court, list[Booking]]:
        """Apply catalog edits and hand freed capacity to the waitlist.

        Returns the updated court and any waitlisted bookings promoted
        because the edit raised capacity.
        """
        now = self.now()
        with self._repository.unit_of_work() as store:
            current = self._load_court(store, court_id)
            merged = replace(current, **changes)
            validate_court_definition(
                kind=merged.kind,
                capacity=merged.capacity,
                admission_policy=merged.admission_policy,
                settlement_deadline=merged.settlement_deadline,
                court_date=merged.court_date,
                status=merged.status,
            )
            bookings = store.query_bookings(court_id=court_id)
            confirmed = [b for b in bookings if b.admission_state is AdmissionState.CONFIRMED]
            if merged.is_capacity_limited and merged.capacity < len(confirmed):
                raise CourtValidationError(
                    f"capacity {merged.capacity} is below the "
                    f"{len(confirmed)} confirmed bookings"
                )
            if merged.admission_policy is AdmissionPolicy.FCFS and any(
                b.admission_state is AdmissionState.PENDING for b in bookings
            ):
                raise CourtValidationError(
                    "settle or cancel pending claims before switching to FCFS"
                )

            store.update_court(court_id, **changes)
            court = self._load_court(store, court_id)
            if court.deadline_passed(now):
                self._settle_in(store, court, now)
            promoted = self._fill_open_slots(store, court, now)

        logger.info(
            "Court updated | court_id=%s | fields=%s | promoted=%s",
            court_id,
            ",".join(sorted(changes)),
            len(promoted),
        )
        return court, promoted

    def _fill_open_slots(self, store: BookingStore, court: Court, now: datetime) -> list[Booking]:
        # Before a priority deadline free slots belong to settlement, not the waitlist.
        if not court.is_capacity_limited or (court.is_priority and not court.deadline_passed(now)):
            return []
        bookings = store.query_bookings(court_id=court.court_id)
        ledger = SlotLedger.from_bookings(bookings)
        batch = RecordBatch()
        for booking in bookings:
            if len(ledger) >= court.capacity:
                break
            if booking.admission_state is not AdmissionState.WAITLISTED:
                continue
            slot = ledger.next_slot()
            ledger = ledger.with_slot(slot)
            batch.update(booking.booking_id, AdmissionState.CONFIRMED, slot)
        if not batch:
            return []

        self._commit(store, court, batch, now)
        promoted = [store.get_booking(update.booking_id) for update in batch.updates]
        for booking in promoted:
            logger.info(
                "Waitlist promotion | court_id=%s | booking_id=%s | user_id=%s | slot=%s",
                court.court_id,
                booking.booking_id,
                booking.user_id,
                booking.slot,
            )
        return promoted

    # --- reads ------------------------------------------------------------

    def get_claim_status(self, court_id: int, user_id: str) -> Optional[Booking]:
        with self._repository.unit_of_work(write=False) as store:
            claims = store.query_bookings(court_id=court_id, user_id=user_id)
        return claims[0] if claims else None

    def list_user_bookings(self, user_id: str) -> list[UserBooking]:
        """The user's claims with their courts, earliest court first."""
        with self._repository.unit_of_work(write=False) as store:
            rows: list[UserBooking] = []
            for booking in store.query_bookings(user_id=user_id):
                court = store.get_court(booking.court_id)
                if court is not None:
                    rows.append(UserBooking(booking=booking, court=court))
        rows.sort(key=lambda row: (row.court.court_date, row.court.court_id))
        return rows

    # --- helpers ----------------------------------------------------------

    @staticmethod
    def _load_court(store: BookingStore, court_id: int) -> Court:
        court = store.get_court(court_id)
        if court is None:
            raise CourtNotFoundError(f"Court {court_id} does not exist")
        return court

    def _commit(self, store: BookingStore, court: Court, batch: RecordBatch, now: datetime) -> None:
        projected = apply_batch(store.query_bookings(court_id=court.court_id), batch)
        self._verify(court, projected)
        try:
            store.commit_batch(batch, now=now)
        except (SlotConflictError, RecordNotFoundError) as exc:
            raise CapacityRaceError(str(exc)) from exc

    @staticmethod
    def _verify(court: Court, bookings: list[Booking]) -> None:
        try:
            verify_court_invariants(court, bookings)
        except InvariantViolation as exc:
            logger.error("Allocation invariant violated | court_id=%s | error=%s", court.court_id, exc)
            raise CapacityRaceError(str(exc)) from exc
