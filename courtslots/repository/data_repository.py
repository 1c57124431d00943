"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from courtslots.domain.models import (
    AdmissionPolicy,
    AdmissionState,
    Booking,
    Court,
    CourtKind,
    CourtStatus,
    RecordBatch,
    UserIdentity,
)
from courtslots.utils.config import Settings, get_settings
from courtslots.utils.logger import get_logger


logger = get_logger(__name__)


class StoreError(Exception):
    """Base failure raised by the record store."""


class StoreUnavailableError(StoreError):
    """Raised when SQLite cannot serve the request (locked, I/O, schema)."""


class ClaimConflictError(StoreError):
    """Raised when a second booking is written for a (user, court) pair."""


class SlotConflictError(StoreError):
    """Raised when two confirmed bookings would share a slot."""


class RecordNotFoundError(StoreError):
    """Raised when a write targets a booking that no longer exists."""


_BOOKING_QUERY_FIELDS = {
    "booking_id": "id",
    "user_id": "user_id",
    "court_id": "court_id",
    "admission_state": "admission_state",
    "slot": "slot",
}

_COURT_UPDATE_FIELDS = (
    "name",
    "capacity",
    "admission_policy",
    "settlement_deadline",
    "court_date",
    "location",
    "start_time",
    "end_time",
    "description",
    "status",
)


def to_storage_time(value: datetime) -> str:
    """Normalize to fixed-width UTC ISO text so string order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_storage_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _booking_from_row(row: sqlite3.Row) -> Booking:
    return Booking(
        booking_id=int(row["id"]),
        user_id=str(row["user_id"]),
        court_id=int(row["court_id"]),
        admission_state=AdmissionState(row["admission_state"]),
        slot=None if row["slot"] is None else int(row["slot"]),
        created_at=from_storage_time(row["created_at"]),
        updated_at=from_storage_time(row["updated_at"]),
    )


def _court_from_row(row: sqlite3.Row) -> Court:
    return Court(
        court_id=int(row["id"]),
        name=str(row["name"]),
        kind=CourtKind(row["kind"]),
        capacity=None if row["capacity"] is None else int(row["capacity"]),
        admission_policy=AdmissionPolicy(row["admission_policy"]),
        settlement_deadline=from_storage_time(row["settlement_deadline"]),
        court_date=from_storage_time(row["court_date"]),
        location=str(row["location"] or ""),
        start_time=str(row["start_time"] or ""),
        end_time=str(row["end_time"] or ""),
        description=row["description"],
        status=None if row["status"] is None else CourtStatus(row["status"]),
        created_at=from_storage_time(row["created_at"]),
    )


def _storage_value(column: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_storage_time(value)
    if column in ("admission_policy", "kind", "admission_state", "status"):
        return getattr(value, "value", value)
    return value


class BookingStore:
    """Record store adapter bound to one open transaction.

    Instances are only handed out by ``DataRepository.unit_of_work`` so
    every read and write of an operation shares the same lock.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.IntegrityError as exc:
            message = str(exc)
            if "slot" in message:
                raise SlotConflictError(message) from exc
            if "user_id" in message:
                raise ClaimConflictError(message) from exc
            raise StoreUnavailableError(f"Integrity failure: {message}") from exc
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Booking store failure: {exc}") from exc

    # --- bookings -------------------------------------------------------

    def create_booking(
        self,
        *,
        user_id: str,
        court_id: int,
        admission_state: AdmissionState,
        slot: Optional[int],
        now: datetime,
    ) -> Booking:
        timestamp = to_storage_time(now)
        cursor = self._execute(
            """
            INSERT INTO Bookings (user_id, court_id, admission_state, slot, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (user_id, court_id, admission_state.value, slot, timestamp, timestamp),
        )
        booking = self.get_booking(int(cursor.lastrowid))
        if booking is None:
            raise StoreUnavailableError("Created booking could not be read back")
        return booking

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        row = self._execute("SELECT * FROM Bookings WHERE id = ?;", (booking_id,)).fetchone()
        if row is None:
            return None
        return _booking_from_row(row)

    def query_bookings(self, **fields: Any) -> list[Booking]:
        """Return bookings matching every field, in claim order."""
        clauses, params = self._where(fields)
        rows = self._execute(
            f"SELECT * FROM Bookings{clauses} ORDER BY created_at ASC, id ASC;",
            params,
        ).fetchall()
        return [_booking_from_row(row) for row in rows]

    def update_booking(
        self,
        booking_id: int,
        *,
        admission_state: AdmissionState,
        slot: Optional[int],
        now: datetime,
    ) -> None:
        cursor = self._execute(
            """
            UPDATE Bookings
            SET admission_state = ?, slot = ?, updated_at = ?
            WHERE id = ?;
            """,
            (admission_state.value, slot, to_storage_time(now), booking_id),
        )
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Booking {booking_id} does not exist")

    def delete_booking(self, booking_id: int) -> None:
        cursor = self._execute("DELETE FROM Bookings WHERE id = ?;", (booking_id,))
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Booking {booking_id} does not exist")

    def delete_bookings(self, **fields: Any) -> int:
        if not fields:
            raise ValueError("delete_bookings requires at least one field")
        clauses, params = self._where(fields)
        return int(self._execute(f"DELETE FROM Bookings{clauses};", params).rowcount)

    def commit_batch(self, batch: RecordBatch, *, now: datetime) -> None:
        """Apply every write in the batch or none of them."""
        if not batch:
            return
        self._execute("SAVEPOINT record_batch;")
        try:
            for booking_id in batch.deletes:
                self.delete_booking(booking_id)
            # Release slots first so swaps and shifts never collide mid-batch.
            moving_ids = [update.booking_id for update in batch.updates]
            if moving_ids:
                placeholders = ",".join("?" for _ in moving_ids)
                self._execute(
                    f"UPDATE Bookings SET slot = NULL WHERE id IN ({placeholders});",
                    moving_ids,
                )
            for update in batch.updates:
                self.update_booking(
                    update.booking_id,
                    admission_state=update.admission_state,
                    slot=update.slot,
                    now=now,
                )
        except Exception:
            self._conn.execute("ROLLBACK TO SAVEPOINT record_batch;")
            self._conn.execute("RELEASE SAVEPOINT record_batch;")
            raise
        self._execute("RELEASE SAVEPOINT record_batch;")

    def list_confirmed_court_dates(
        self,
        user_id: str,
        *,
        start: datetime,
        end: datetime,
    ) -> list[datetime]:
        """Dates of capacity-limited courts where the user held a slot, in [start, end)."""
        rows = self._execute(
            """
            SELECT c.court_date
            FROM Bookings AS b
            INNER JOIN Courts AS c ON c.id = b.court_id
            WHERE b.user_id = ?
              AND b.admission_state = ?
              AND c.kind = ?
              AND c.court_date >= ?
              AND c.court_date < ?
            ORDER BY c.court_date ASC;
            """,
            (
                user_id,
                AdmissionState.CONFIRMED.value,
                CourtKind.CAPACITY_LIMITED.value,
                to_storage_time(start),
                to_storage_time(end),
            ),
        ).fetchall()
        return [from_storage_time(row["court_date"]) for row in rows]

    @staticmethod
    def _where(fields: dict[str, Any]) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for name, value in fields.items():
            column = _BOOKING_QUERY_FIELDS.get(name)
            if column is None:
                raise ValueError(f"Unsupported booking field: {name}")
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(_storage_value(column, value))
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    # --- catalog --------------------------------------------------------

    def get_court(self, court_id: int) -> Optional[Court]:
        row = self._execute("SELECT * FROM Courts WHERE id = ?;", (court_id,)).fetchone()
        if row is None:
            return None
        return _court_from_row(row)

    def list_courts(
        self,
        *,
        kind: Optional[CourtKind] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        location: Optional[str] = None,
        status: Optional[CourtStatus] = None,
    ) -> list[Court]:
        clauses: list[str] = []
        params: list[Any] = []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind.value)
        if date_from is not None:
            clauses.append("court_date >= ?")
            params.append(to_storage_time(date_from))
        if date_to is not None:
            clauses.append("court_date <= ?")
            params.append(to_storage_time(date_to))
        if location:
            clauses.append("LOWER(location) LIKE ?")
            params.append(f"%{location.strip().lower()}%")
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._execute(
            f"SELECT * FROM Courts{where} ORDER BY court_date ASC, id ASC;",
            params,
        ).fetchall()
        return [_court_from_row(row) for row in rows]

    def create_court(
        self,
        *,
        name: str,
        kind: CourtKind,
        court_date: datetime,
        capacity: Optional[int],
        admission_policy: AdmissionPolicy,
        settlement_deadline: Optional[datetime],
        location: str,
        start_time: str,
        end_time: str,
        description: Optional[str],
        now: datetime,
        status: Optional[CourtStatus] = None,
    ) -> Court:
        cursor = self._execute(
            """
            INSERT INTO Courts (
                name, kind, capacity, admission_policy, settlement_deadline,
                court_date, location, start_time, end_time, description, status, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                name,
                kind.value,
                capacity,
                admission_policy.value,
                None if settlement_deadline is None else to_storage_time(settlement_deadline),
                to_storage_time(court_date),
                location,
                start_time,
                end_time,
                description,
                None if status is None else status.value,
                to_storage_time(now),
            ),
        )
        court = self.get_court(int(cursor.lastrowid))
        if court is None:
            raise StoreUnavailableError("Created court could not be read back")
        return court

    def update_court(self, court_id: int, **changes: Any) -> None:
        unknown = set(changes) - set(_COURT_UPDATE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported court fields: {sorted(unknown)}")
        if not changes:
            return
        assignments = ", ".join(f"{column} = ?" for column in changes)
        params = [_storage_value(column, value) for column, value in changes.items()]
        self._execute(f"UPDATE Courts SET {assignments} WHERE id = ?;", [*params, court_id])

    def delete_court(self, court_id: int) -> int:
        """Delete a court and its bookings; returns the number of bookings removed."""
        removed = self.delete_bookings(court_id=court_id)
        self._execute("DELETE FROM Courts WHERE id = ?;", (court_id,))
        return removed

    # --- identity directory ---------------------------------------------

    def create_user(self, user_id: str, name: str, is_administrator: bool = False) -> UserIdentity:
        self._execute(
            """
            INSERT INTO Users (id, name, is_administrator)
            VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                is_administrator = excluded.is_administrator;
            """,
            (user_id, name, int(is_administrator)),
        )
        return UserIdentity(user_id=user_id, display_name=name, is_administrator=is_administrator)

    def get_user(self, user_id: str) -> Optional[UserIdentity]:
        row = self._execute(
            "SELECT id, name, is_administrator FROM Users WHERE id = ?;",
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        return UserIdentity(
            user_id=str(row["id"]),
            display_name=str(row["name"]),
            is_administrator=bool(row["is_administrator"]),
        )

    def list_users(self, include_administrators: bool = False) -> list[UserIdentity]:
        where = "" if include_administrators else " WHERE is_administrator = 0"
        rows = self._execute(
            f"SELECT id, name, is_administrator FROM Users{where} ORDER BY id ASC;"
        ).fetchall()
        return [
            UserIdentity(
                user_id=str(row["id"]),
                display_name=str(row["name"]),
                is_administrator=bool(row["is_administrator"]),
            )
            for row in rows
        ]

    def get_display_names(self, user_ids: Sequence[str]) -> dict[str, str]:
        unique_ids = sorted(set(user_ids))
        if not unique_ids:
            return {}
        placeholders = ",".join("?" for _ in unique_ids)
        rows = self._execute(
            f"SELECT id, name FROM Users WHERE id IN ({placeholders});",
            unique_ids,
        ).fetchall()
        return {str(row["id"]): str(row["name"]) for row in rows}


class DataRepository:
    """Owns the SQLite file and hands out transactional ``BookingStore`` views."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        try:
            connection = sqlite3.connect(
                self._db_path,
                timeout=self._settings.store_busy_timeout_seconds,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open booking store: {exc}") from exc
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def unit_of_work(self, write: bool = True) -> Iterator[BookingStore]:
        """Run a block inside one transaction.

        Write units start with ``BEGIN IMMEDIATE``, which takes SQLite's
        reserved lock up front: concurrent writers from any thread or
        process queue here, so read-decide-write sequences cannot
        interleave. Any exception rolls the whole unit back.
        """
        connection = self._connect()
        try:
            try:
                connection.execute("BEGIN IMMEDIATE;" if write else "BEGIN;")
            except sqlite3.Error as exc:
                logger.warning("Booking store busy | path=%s | error=%s", self._db_path, exc)
                raise StoreUnavailableError(f"Booking store is busy: {exc}") from exc
            try:
                yield BookingStore(connection)
            except BaseException:
                if connection.in_transaction:
                    connection.rollback()
                raise
            try:
                connection.execute("COMMIT;")
            except sqlite3.Error as exc:
                if connection.in_transaction:
                    connection.rollback()
                raise StoreUnavailableError(f"Commit failed: {exc}") from exc
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        conn = self._connect()
        try:
            with conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS Users (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        is_administrator INTEGER NOT NULL DEFAULT 0
                            CHECK (is_administrator IN (0, 1))
                    );

                    CREATE TABLE IF NOT EXISTS Courts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        kind TEXT NOT NULL CHECK (kind IN ('UNBOUNDED', 'CAPACITY_LIMITED')),
                        capacity INTEGER CHECK (capacity IS NULL OR capacity > 0),
                        admission_policy TEXT NOT NULL DEFAULT 'FCFS'
                            CHECK (admission_policy IN ('FCFS', 'PRIORITY')),
                        settlement_deadline TEXT,
                        court_date TEXT NOT NULL,
                        location TEXT,
                        start_time TEXT,
                        end_time TEXT,
                        description TEXT,
                        status TEXT CHECK (
                            status IS NULL
                            OR status IN ('AVAILABLE', 'RAIN', 'CAT1', 'CLOSED', 'CANCELLED')
                        ),
                        created_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS Bookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        court_id INTEGER NOT NULL,
                        admission_state TEXT NOT NULL
                            CHECK (admission_state IN ('GOING', 'PENDING', 'CONFIRMED', 'WAITLISTED')),
                        slot INTEGER CHECK (slot IS NULL OR slot >= 0),
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        UNIQUE (user_id, court_id),
                        FOREIGN KEY (court_id) REFERENCES Courts(id) ON DELETE CASCADE
                    );

                    CREATE UNIQUE INDEX IF NOT EXISTS idx_bookings_court_slot
                    ON Bookings(court_id, slot) WHERE slot IS NOT NULL;

                    CREATE INDEX IF NOT EXISTS idx_bookings_court_state
                    ON Bookings(court_id, admission_state, created_at);

                    CREATE INDEX IF NOT EXISTS idx_courts_date
                    ON Courts(court_date);
                    """
                )
                court_columns = {
                    str(row["name"]) for row in conn.execute("PRAGMA table_info(Courts);")
                }
                if "status" not in court_columns:
                    conn.execute("ALTER TABLE Courts ADD COLUMN status TEXT;")
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Database initialization failed: {exc}") from exc
        finally:
            conn.close()

    def seed_demo_catalog(self, now: Optional[datetime] = None) -> int:
        """Seed demo users and courts only when the catalog is empty.

        Returns the number of courts created.
        """
        reference = now or datetime.now(timezone.utc)
        day = reference.replace(hour=0, minute=0, second=0, microsecond=0)
        with self.unit_of_work() as store:
            if store.list_courts():
                logger.info("Demo catalog already present; skipping seed")
                return 0

            store.create_user("admin", "Court Admin", is_administrator=True)
            for index, name in enumerate(
                ["David", "Jasmine", "Mike", "Travis", "Luis", "Andy", "May", "Gerry"],
                start=1,
            ):
                store.create_user(f"player-{index}", name)

            courts = [
                dict(
                    name="Beach Court",
                    kind=CourtKind.UNBOUNDED,
                    court_date=day + timedelta(days=2, hours=17),
                    capacity=None,
                    admission_policy=AdmissionPolicy.FCFS,
                    settlement_deadline=None,
                    location="Powder Keg",
                    start_time="17:00",
                    end_time="20:00",
                    description="Open play, everyone welcome",
                    status=CourtStatus.AVAILABLE,
                ),
                dict(
                    name="Indoor Drop-in",
                    kind=CourtKind.CAPACITY_LIMITED,
                    court_date=day + timedelta(days=3, hours=19),
                    capacity=6,
                    admission_policy=AdmissionPolicy.FCFS,
                    settlement_deadline=None,
                    location="Gym T4",
                    start_time="19:00",
                    end_time="21:00",
                    description=None,
                ),
                dict(
                    name="Indoor Weekly",
                    kind=CourtKind.CAPACITY_LIMITED,
                    court_date=day + timedelta(days=6, hours=19),
                    capacity=4,
                    admission_policy=AdmissionPolicy.PRIORITY,
                    settlement_deadline=day + timedelta(days=4, hours=12),
                    location="Gym T4",
                    start_time="19:00",
                    end_time="21:00",
                    description="Spots ranked at the deadline",
                ),
            ]
            for court in courts:
                store.create_court(now=reference, **court)
        logger.info("Demo catalog seeded with %s courts", len(courts))
        return len(courts)
