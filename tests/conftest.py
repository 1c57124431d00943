from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from courtslots.domain.models import AdmissionPolicy, Court, CourtKind
from courtslots.repository.data_repository import DataRepository
from courtslots.services.allocation_service import CourtAllocationService
from courtslots.utils.config import get_settings


BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class SteppingClock:
    """Deterministic clock; every reading advances one second."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value

    def set(self, value: datetime) -> None:
        self.current = value


@pytest.fixture
def settings(tmp_path):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / "courtslots.db")


@pytest.fixture
def repository(settings) -> DataRepository:
    repository = DataRepository(settings)
    repository.initialize_database()
    with repository.unit_of_work() as store:
        store.create_user("admin", "Court Admin", is_administrator=True)
        for user_id, name in [
            ("alice", "Alice"),
            ("bob", "Bob"),
            ("carol", "Carol"),
            ("dave", "Dave"),
            ("erin", "Erin"),
        ]:
            store.create_user(user_id, name)
    return repository


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def service(repository, settings, clock) -> CourtAllocationService:
    return CourtAllocationService(repository=repository, settings=settings, clock=clock)


@pytest.fixture
def make_court(repository):
    def _make(
        kind: CourtKind = CourtKind.CAPACITY_LIMITED,
        capacity: Optional[int] = 2,
        admission_policy: AdmissionPolicy = AdmissionPolicy.FCFS,
        settlement_deadline: Optional[datetime] = None,
        court_date: datetime = BASE_TIME + timedelta(days=7),
        name: str = "Court",
    ) -> Court:
        if kind is CourtKind.UNBOUNDED:
            capacity = None
        with repository.unit_of_work() as store:
            return store.create_court(
                name=name,
                kind=kind,
                court_date=court_date,
                capacity=capacity,
                admission_policy=admission_policy,
                settlement_deadline=settlement_deadline,
                location="Gym T4",
                start_time="19:00",
                end_time="21:00",
                description=None,
                now=BASE_TIME,
            )

    return _make
