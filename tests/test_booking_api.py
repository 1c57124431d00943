from __future__ import annotations

import inspect
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import BASE_TIME, SteppingClock
from courtslots.main import create_app
from courtslots.repository.data_repository import BookingStore, StoreUnavailableError


ADMIN = {"X-User-Id": "admin"}
ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}
CAROL = {"X-User-Id": "carol"}


@pytest.fixture
def api_clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def client(repository, settings, api_clock):
    app = create_app(settings=settings, clock=api_clock)
    with TestClient(app) as test_client:
        yield test_client


def _create_court(client: TestClient, **overrides) -> dict:
    payload = {
        "name": "Indoor Drop-in",
        "kind": "CAPACITY_LIMITED",
        "capacity": 2,
        "admission_policy": "FCFS",
        "court_date": (BASE_TIME + timedelta(days=4)).isoformat(),
        "location": "Gym T4",
        "start_time": "19:00",
        "end_time": "21:00",
    }
    payload.update(overrides)
    response = client.post("/courts", json=payload, headers=ADMIN)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_court_management_requires_administrator(client: TestClient) -> None:
    payload = {
        "name": "Beach",
        "kind": "UNBOUNDED",
        "court_date": (BASE_TIME + timedelta(days=1)).isoformat(),
    }
    assert client.post("/courts", json=payload).status_code == 401
    assert client.post("/courts", json=payload, headers=ALICE).status_code == 403
    assert client.post("/courts", json=payload, headers={"X-User-Id": "stranger"}).status_code == 401
    assert client.post("/courts", json=payload, headers=ADMIN).status_code == 201


def test_inconsistent_court_definition_rejected(client: TestClient) -> None:
    response = client.post(
        "/courts",
        json={
            "name": "Bad",
            "kind": "CAPACITY_LIMITED",
            "capacity": 4,
            "admission_policy": "FCFS",
            "settlement_deadline": BASE_TIME.isoformat(),
            "court_date": (BASE_TIME + timedelta(days=1)).isoformat(),
        },
        headers=ADMIN,
    )
    assert response.status_code == 400


def test_list_courts_filters_by_kind_and_location(client: TestClient) -> None:
    _create_court(client)
    _create_court(client, name="Beach", kind="UNBOUNDED", capacity=None, location="Powder Keg")

    beach = client.get("/courts", params={"kind": "UNBOUNDED"}).json()
    gym = client.get("/courts", params={"location": "gym"}).json()

    assert [court["name"] for court in beach] == ["Beach"]
    assert [court["name"] for court in gym] == ["Indoor Drop-in"]
    assert client.get("/courts/999").status_code == 404


def test_join_waitlist_and_duplicate_flow(client: TestClient) -> None:
    court = _create_court(client)
    court_id = court["court_id"]

    first = client.post(f"/courts/{court_id}/claims", headers=ALICE)
    second = client.post(f"/courts/{court_id}/claims", headers=BOB)
    third = client.post(f"/courts/{court_id}/claims", headers=CAROL)
    duplicate = client.post(f"/courts/{court_id}/claims", headers=ALICE)

    assert first.status_code == 201
    assert (first.json()["admission_state"], first.json()["slot"]) == ("CONFIRMED", 0)
    assert (second.json()["admission_state"], second.json()["slot"]) == ("CONFIRMED", 1)
    assert (third.json()["admission_state"], third.json()["slot"]) == ("WAITLISTED", None)
    assert duplicate.status_code == 409
    assert client.post("/courts/999/claims", headers=ALICE).status_code == 404


def test_claim_status_lookup(client: TestClient) -> None:
    court_id = _create_court(client)["court_id"]
    assert client.get(f"/courts/{court_id}/claims/alice", headers=BOB).status_code == 404

    client.post(f"/courts/{court_id}/claims", headers=ALICE)
    response = client.get(f"/courts/{court_id}/claims/alice", headers=BOB)

    assert response.status_code == 200
    assert response.json()["admission_state"] == "CONFIRMED"


def test_cancel_promotes_and_enforces_ownership(client: TestClient) -> None:
    court_id = _create_court(client, capacity=1)["court_id"]
    alice_booking = client.post(f"/courts/{court_id}/claims", headers=ALICE).json()
    client.post(f"/courts/{court_id}/claims", headers=BOB)

    forbidden = client.delete(f"/bookings/{alice_booking['booking_id']}", headers=BOB)
    assert forbidden.status_code == 403

    cancelled = client.delete(f"/bookings/{alice_booking['booking_id']}", headers=ALICE)
    assert cancelled.status_code == 200
    assert cancelled.json()["promoted"]["user_id"] == "bob"
    assert cancelled.json()["promoted"]["slot"] == 0

    own = client.delete(f"/courts/{court_id}/claims/me", headers=BOB)
    assert own.status_code == 200
    assert own.json() == {"cancelled": True, "promoted": None}
    assert client.delete(f"/courts/{court_id}/claims/me", headers=BOB).status_code == 404


def test_roster_reports_labels_and_waitlist_positions(client: TestClient) -> None:
    court_id = _create_court(client)["court_id"]
    for headers in (ALICE, BOB, CAROL, {"X-User-Id": "dave"}):
        client.post(f"/courts/{court_id}/claims", headers=headers)

    response = client.get(f"/courts/{court_id}/roster")

    assert response.status_code == 200
    participants = response.json()["participants"]
    assert [(p["display_name"], p["status_label"], p["waitlist_position"]) for p in participants] == [
        ("Alice", "Slot 1 - Confirmed", None),
        ("Bob", "Slot 2 - Confirmed", None),
        ("Carol", "Waitlisted", 1),
        ("Dave", "Waitlisted", 2),
    ]
    assert client.get("/courts/999/roster").status_code == 404


def test_priority_court_settles_after_deadline(client: TestClient, api_clock: SteppingClock) -> None:
    deadline = BASE_TIME + timedelta(days=2)
    court_id = _create_court(
        client,
        capacity=1,
        admission_policy="PRIORITY",
        settlement_deadline=deadline.isoformat(),
    )["court_id"]
    pending = client.post(f"/courts/{court_id}/claims", headers=ALICE).json()
    client.post(f"/courts/{court_id}/claims", headers=BOB)
    assert pending["admission_state"] == "PENDING"

    early = client.post(f"/courts/{court_id}/settle", headers=ALICE).json()
    assert early["settled"] is False

    api_clock.set(deadline + timedelta(minutes=1))
    settled = client.post(f"/courts/{court_id}/settle", headers=ALICE).json()
    again = client.post(f"/courts/{court_id}/settle", headers=ALICE).json()

    assert settled["settled"] is True
    assert settled["confirmed"] == [{"booking_id": pending["booking_id"], "slot": 0}]
    assert len(settled["waitlisted"]) == 1
    assert again["settled"] is False


def test_move_participant_endpoint(client: TestClient) -> None:
    court_id = _create_court(client, capacity=3)["court_id"]
    for headers in (ALICE, BOB, CAROL):
        client.post(f"/courts/{court_id}/claims", headers=headers)

    denied = client.post(
        f"/courts/{court_id}/moves",
        json={"user_id": "alice", "new_slot": 2},
        headers=BOB,
    )
    invalid = client.post(
        f"/courts/{court_id}/moves",
        json={"user_id": "alice", "new_slot": -1},
        headers=ADMIN,
    )
    missing = client.post(
        f"/courts/{court_id}/moves",
        json={"user_id": "erin", "new_slot": 0},
        headers=ADMIN,
    )
    moved = client.post(
        f"/courts/{court_id}/moves",
        json={"user_id": "alice", "new_slot": 2},
        headers=ADMIN,
    )

    assert denied.status_code == 403
    assert invalid.status_code == 422
    assert missing.status_code == 404
    assert moved.status_code == 200
    assert moved.json()["slot"] == 2
    roster = client.get(f"/courts/{court_id}/roster").json()["participants"]
    assert [(p["user_id"], p["slot"]) for p in roster] == [("bob", 0), ("carol", 1), ("alice", 2)]


def test_my_bookings_lists_claims_by_court_date(client: TestClient) -> None:
    later = _create_court(client, name="Later", court_date=(BASE_TIME + timedelta(days=9)).isoformat())
    sooner = _create_court(client, name="Sooner", court_date=(BASE_TIME + timedelta(days=1)).isoformat())
    client.post(f"/courts/{later['court_id']}/claims", headers=ALICE)
    client.post(f"/courts/{sooner['court_id']}/claims", headers=ALICE)

    response = client.get("/users/me/bookings", headers=ALICE)

    assert response.status_code == 200
    assert [row["court_name"] for row in response.json()] == ["Sooner", "Later"]
    assert client.get("/users/me/bookings").status_code == 401


def test_update_and_delete_court(client: TestClient) -> None:
    court_id = _create_court(client, capacity=3)["court_id"]
    client.post(f"/courts/{court_id}/claims", headers=ALICE)
    client.post(f"/courts/{court_id}/claims", headers=BOB)

    shrink = client.patch(f"/courts/{court_id}", json={"capacity": 1}, headers=ADMIN)
    rename = client.patch(f"/courts/{court_id}", json={"name": "Renamed"}, headers=ADMIN)
    denied = client.delete(f"/courts/{court_id}", headers=ALICE)
    deleted = client.delete(f"/courts/{court_id}", headers=ADMIN)

    assert shrink.status_code == 400
    assert rename.status_code == 200
    assert rename.json()["name"] == "Renamed"
    assert denied.status_code == 403
    assert deleted.json() == {"court_id": court_id, "bookings_removed": 2}
    assert client.get(f"/courts/{court_id}").status_code == 404


def test_store_outage_maps_to_service_unavailable(client: TestClient, monkeypatch) -> None:
    court_id = _create_court(client)["court_id"]

    def _busy(self, **kwargs):
        raise StoreUnavailableError("database is locked")

    monkeypatch.setattr(BookingStore, "create_booking", _busy)
    response = client.post(f"/courts/{court_id}/claims", headers=ALICE)

    assert response.status_code == 503
    assert "locked" in response.json()["detail"]


def test_capacity_raise_promotes_waitlist_ahead_of_late_joiner(client: TestClient) -> None:
    court_id = _create_court(client, capacity=1)["court_id"]
    client.post(f"/courts/{court_id}/claims", headers=ALICE)
    client.post(f"/courts/{court_id}/claims", headers=BOB)

    raised = client.patch(f"/courts/{court_id}", json={"capacity": 2}, headers=ADMIN)
    late = client.post(f"/courts/{court_id}/claims", headers=CAROL).json()

    assert raised.status_code == 200
    assert raised.json()["capacity"] == 2
    assert late["admission_state"] == "WAITLISTED"
    roster = client.get(f"/courts/{court_id}/roster").json()["participants"]
    assert [(p["user_id"], p["status"], p["slot"]) for p in roster] == [
        ("alice", "CONFIRMED", 0),
        ("bob", "CONFIRMED", 1),
        ("carol", "WAITLISTED", None),
    ]


def test_outdoor_court_status_lifecycle(client: TestClient) -> None:
    beach = _create_court(client, name="Beach", kind="UNBOUNDED", capacity=None, status="RAIN")
    _create_court(client, name="Park", kind="UNBOUNDED", capacity=None)

    assert (beach["status"], beach["status_label"]) == ("RAIN", "Rain")
    assert [court["name"] for court in client.get("/courts", params={"status": "RAIN"}).json()] == ["Beach"]

    closed = client.patch(f"/courts/{beach['court_id']}", json={"status": "CAT1"}, headers=ADMIN)
    assert closed.status_code == 200
    assert closed.json()["status_label"] == "Category 1"

    indoor = client.post(
        "/courts",
        json={
            "name": "Indoor",
            "kind": "CAPACITY_LIMITED",
            "capacity": 4,
            "court_date": (BASE_TIME + timedelta(days=1)).isoformat(),
            "status": "CLOSED",
        },
        headers=ADMIN,
    )
    assert indoor.status_code == 400


def test_patch_rejects_clearing_required_fields(client: TestClient) -> None:
    court_id = _create_court(client)["court_id"]

    for field in ("name", "court_date", "admission_policy", "location"):
        response = client.patch(f"/courts/{court_id}", json={field: None}, headers=ADMIN)
        assert response.status_code == 422, field

    cleared = client.patch(f"/courts/{court_id}", json={"description": None}, headers=ADMIN)
    assert cleared.status_code == 200
    assert client.patch("/courts/999", json={"name": "Ghost"}, headers=ADMIN).status_code == 404


def test_store_backed_routes_are_synchronous(client: TestClient) -> None:
    checked = 0
    for route in client.app.routes:
        path = getattr(route, "path", "")
        if path.startswith(("/courts", "/bookings", "/users")):
            assert not inspect.iscoroutinefunction(route.endpoint), path
            checked += 1
    assert checked >= 10
