"""Tests for court definition validation, the slot ledger and invariant checks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

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
    CourtKind,
    CourtStatus,
)


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _court(**overrides) -> Court:
    defaults = {
        "court_id": 1,
        "name": "Indoor",
        "kind": CourtKind.CAPACITY_LIMITED,
        "court_date": NOW + timedelta(days=3),
        "capacity": 2,
        "admission_policy": AdmissionPolicy.FCFS,
    }
    defaults.update(overrides)
    return Court(**defaults)


def _booking(booking_id: int, user_id: str, state: AdmissionState, slot=None) -> Booking:
    return Booking(
        booking_id=booking_id,
        user_id=user_id,
        court_id=1,
        admission_state=state,
        created_at=NOW + timedelta(seconds=booking_id),
        updated_at=NOW + timedelta(seconds=booking_id),
        slot=slot,
    )


# --- court definitions ---

def test_valid_capacity_limited_priority_court_passes() -> None:
    validate_court_definition(
        kind=CourtKind.CAPACITY_LIMITED,
        capacity=12,
        admission_policy=AdmissionPolicy.PRIORITY,
        settlement_deadline=NOW,
        court_date=NOW + timedelta(days=1),
    )


def test_valid_unbounded_court_passes() -> None:
    validate_court_definition(
        kind=CourtKind.UNBOUNDED,
        capacity=None,
        admission_policy=AdmissionPolicy.FCFS,
        settlement_deadline=None,
    )


@pytest.mark.parametrize("capacity", [None, 0, -3])
def test_capacity_limited_court_requires_positive_capacity(capacity) -> None:
    with pytest.raises(CourtValidationError):
        validate_court_definition(
            kind=CourtKind.CAPACITY_LIMITED,
            capacity=capacity,
            admission_policy=AdmissionPolicy.FCFS,
            settlement_deadline=None,
        )


def test_unbounded_court_rejects_capacity() -> None:
    with pytest.raises(CourtValidationError):
        validate_court_definition(
            kind=CourtKind.UNBOUNDED,
            capacity=10,
            admission_policy=AdmissionPolicy.FCFS,
            settlement_deadline=None,
        )


def test_unbounded_court_rejects_priority_policy() -> None:
    with pytest.raises(CourtValidationError):
        validate_court_definition(
            kind=CourtKind.UNBOUNDED,
            capacity=None,
            admission_policy=AdmissionPolicy.PRIORITY,
            settlement_deadline=None,
        )


def test_deadline_rejected_on_fcfs_court() -> None:
    with pytest.raises(CourtValidationError):
        validate_court_definition(
            kind=CourtKind.CAPACITY_LIMITED,
            capacity=4,
            admission_policy=AdmissionPolicy.FCFS,
            settlement_deadline=NOW,
        )


def test_deadline_after_court_date_rejected() -> None:
    with pytest.raises(CourtValidationError):
        validate_court_definition(
            kind=CourtKind.CAPACITY_LIMITED,
            capacity=4,
            admission_policy=AdmissionPolicy.PRIORITY,
            settlement_deadline=NOW + timedelta(days=2),
            court_date=NOW + timedelta(days=1),
        )


def test_status_only_accepted_on_unbounded_courts() -> None:
    validate_court_definition(
        kind=CourtKind.UNBOUNDED,
        capacity=None,
        admission_policy=AdmissionPolicy.FCFS,
        settlement_deadline=None,
        status=CourtStatus.RAIN,
    )
    with pytest.raises(CourtValidationError):
        validate_court_definition(
            kind=CourtKind.CAPACITY_LIMITED,
            capacity=4,
            admission_policy=AdmissionPolicy.FCFS,
            settlement_deadline=None,
            status=CourtStatus.CLOSED,
        )


def test_status_label_defaults_to_available_for_outdoor_courts() -> None:
    assert _court(kind=CourtKind.UNBOUNDED, capacity=None).status_label == "Available"
    assert _court(kind=CourtKind.UNBOUNDED, capacity=None, status=CourtStatus.CAT1).status_label == "Category 1"
    assert _court(kind=CourtKind.UNBOUNDED, capacity=None, status=CourtStatus.CANCELLED).status_label == "Cancelled"
    assert _court().status_label is None


def test_deadline_passed_only_for_priority_courts_with_deadline() -> None:
    deadline = NOW + timedelta(hours=1)
    priority = _court(admission_policy=AdmissionPolicy.PRIORITY, settlement_deadline=deadline)
    assert not priority.deadline_passed(NOW)
    assert priority.deadline_passed(deadline)
    assert not _court(admission_policy=AdmissionPolicy.PRIORITY).deadline_passed(NOW + timedelta(days=30))
    assert not _court().deadline_passed(NOW + timedelta(days=30))


# --- slot ledger ---

def test_empty_ledger_starts_at_slot_zero() -> None:
    ledger = SlotLedger()
    assert len(ledger) == 0
    assert ledger.next_slot() == 0
    assert ledger.gaps() == []


def test_ledger_grows_after_highest_slot_and_keeps_gaps() -> None:
    ledger = SlotLedger(frozenset({0, 2, 5}))
    assert ledger.next_slot() == 6
    assert ledger.gaps() == [1, 3, 4]
    assert 2 in ledger
    assert 3 not in ledger


def test_ledger_ignores_unconfirmed_bookings() -> None:
    ledger = SlotLedger.from_bookings(
        [
            _booking(1, "a", AdmissionState.CONFIRMED, 0),
            _booking(2, "b", AdmissionState.WAITLISTED),
            _booking(3, "c", AdmissionState.CONFIRMED, 3),
        ]
    )
    assert ledger.occupied == frozenset({0, 3})
    assert ledger.without_slot(3).next_slot() == 1
    assert ledger.with_slot(7).next_slot() == 8


# --- invariants ---

def test_consistent_booking_set_passes() -> None:
    verify_court_invariants(
        _court(),
        [
            _booking(1, "a", AdmissionState.CONFIRMED, 0),
            _booking(2, "b", AdmissionState.CONFIRMED, 4),
            _booking(3, "c", AdmissionState.WAITLISTED),
        ],
    )


def test_duplicate_slot_is_a_violation() -> None:
    with pytest.raises(InvariantViolation):
        verify_court_invariants(
            _court(),
            [
                _booking(1, "a", AdmissionState.CONFIRMED, 1),
                _booking(2, "b", AdmissionState.CONFIRMED, 1),
            ],
        )


def test_over_capacity_is_a_violation() -> None:
    with pytest.raises(InvariantViolation):
        verify_court_invariants(
            _court(capacity=1),
            [
                _booking(1, "a", AdmissionState.CONFIRMED, 0),
                _booking(2, "b", AdmissionState.CONFIRMED, 1),
            ],
        )


def test_second_claim_by_same_user_is_a_violation() -> None:
    with pytest.raises(InvariantViolation):
        verify_court_invariants(
            _court(),
            [
                _booking(1, "a", AdmissionState.CONFIRMED, 0),
                _booking(2, "a", AdmissionState.WAITLISTED),
            ],
        )


def test_waitlisted_booking_with_slot_is_a_violation() -> None:
    with pytest.raises(InvariantViolation):
        verify_court_invariants(_court(), [_booking(1, "a", AdmissionState.WAITLISTED, 0)])


def test_pending_on_fcfs_court_is_a_violation() -> None:
    with pytest.raises(InvariantViolation):
        verify_court_invariants(_court(), [_booking(1, "a", AdmissionState.PENDING)])


def test_unbounded_court_only_holds_going() -> None:
    unbounded = _court(kind=CourtKind.UNBOUNDED, capacity=None)
    verify_court_invariants(unbounded, [_booking(1, "a", AdmissionState.GOING)])
    with pytest.raises(InvariantViolation):
        verify_court_invariants(unbounded, [_booking(1, "a", AdmissionState.CONFIRMED, 0)])
    with pytest.raises(InvariantViolation):
        verify_court_invariants(_court(), [_booking(1, "a", AdmissionState.GOING)])
