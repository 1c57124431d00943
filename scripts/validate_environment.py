#!/usr/bin/env python3
"""Validate local court slot allocation environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from courtslots.domain.models import AdmissionPolicy, AdmissionState, CourtKind
from courtslots.repository.data_repository import DataRepository
from courtslots.services.allocation_service import CourtAllocationService
from courtslots.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="courtslots-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    import_errors: list[str] = []
    for module_name in ("fastapi", "uvicorn", "pydantic", "httpx", "pytest"):
        try:
            importlib.import_module(module_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "courtslots_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo catalog seeding
        try:
            seeded = repository.seed_demo_catalog()
            if seeded != 3:
                raise RuntimeError(f"expected 3 courts, got {seeded}")
            ok, line = _print_result("Demo catalog", True, f": {seeded} courts")
        except Exception as exc:
            ok, line = _print_result("Demo catalog", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: FCFS admission fills capacity then waitlists
        service = CourtAllocationService(repository=repository, settings=validation_settings)
        try:
            now = datetime.now(timezone.utc)
            with repository.unit_of_work() as store:
                court = store.create_court(
                    name="Validation Court",
                    kind=CourtKind.CAPACITY_LIMITED,
                    court_date=now + timedelta(days=1),
                    capacity=2,
                    admission_policy=AdmissionPolicy.FCFS,
                    settlement_deadline=None,
                    location="",
                    start_time="",
                    end_time="",
                    description=None,
                    now=now,
                )
            states = [
                service.join(court.court_id, f"player-{index}").admission_state
                for index in range(1, 4)
            ]
            expected = [
                AdmissionState.CONFIRMED,
                AdmissionState.CONFIRMED,
                AdmissionState.WAITLISTED,
            ]
            if states != expected:
                raise RuntimeError(f"unexpected admission states {[s.value for s in states]}")
            ok, line = _print_result("FCFS admission", True)
        except Exception as exc:
            ok, line = _print_result("FCFS admission", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Cancellation promotes the waitlist head
        try:
            promoted = service.cancel_claim(court.court_id, "player-1")
            if promoted is None or promoted.user_id != "player-3" or promoted.slot != 0:
                raise RuntimeError(f"unexpected promotion {promoted}")
            ok, line = _print_result("Waitlist promotion", True)
        except Exception as exc:
            ok, line = _print_result("Waitlist promotion", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 7: Priority settlement on the seeded weekly court
        try:
            with repository.unit_of_work(write=False) as store:
                weekly = next(
                    court for court in store.list_courts()
                    if court.admission_policy is AdmissionPolicy.PRIORITY
                )
            for index in range(1, 7):
                service.join(weekly.court_id, f"player-{index}")
            late = CourtAllocationService(
                repository=repository,
                settings=validation_settings,
                clock=lambda: weekly.settlement_deadline + timedelta(minutes=1),
            )
            result = late.settle(weekly.court_id)
            if len(result.confirmed) != weekly.capacity or len(result.waitlisted) != 6 - weekly.capacity:
                raise RuntimeError(
                    f"confirmed={len(result.confirmed)} waitlisted={len(result.waitlisted)}"
                )
            ok, line = _print_result(
                "Priority settlement",
                True,
                f": {len(result.confirmed)} confirmed, {len(result.waitlisted)} waitlisted",
            )
        except Exception as exc:
            ok, line = _print_result("Priority settlement", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Court Slot Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
