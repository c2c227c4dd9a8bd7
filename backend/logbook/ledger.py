"""Trip ledger: odometer state, the active trip and the collection of closed trips.

A ledger instance is the single writer of its store. Every mutating operation
validates its input first and reports a rejected input as a falsy
:class:`LedgerResult` carrying a :class:`LedgerError` tag; nothing raises for
bad input. A :class:`~logbook.storage.StorageError` during a mutation restores
the in-memory state and the persisted ledger keys, and is reported as
``STORAGE_ERROR``.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .clock import Clock, SystemClock
from .config import settings
from .state import RuntimeState, parse_date, parse_price
from .storage import ACTIVE_TRIP, CURRENT_KM, TRIPS, PersistenceStore, StorageError
from .utils import format_timestamp, parse_km, parse_timestamp

logger = logging.getLogger(__name__)


class TripType(str, Enum):
    BUSINESS = "business"
    PRIVATE = "private"


class LedgerError(str, Enum):
    INVALID_ODOMETER = "invalid_odometer"
    END_BEFORE_START = "end_before_start"
    TRIP_NOT_FOUND = "trip_not_found"
    NO_ACTIVE_TRIP = "no_active_trip"
    TRIP_ALREADY_ACTIVE = "trip_already_active"
    INVALID_TRIP_TYPE = "invalid_trip_type"
    INVALID_SETTING = "invalid_setting"
    STORAGE_ERROR = "storage_error"


def _coerce_type(value: Union[TripType, str, None]) -> Optional[TripType]:
    if isinstance(value, TripType):
        return value
    try:
        return TripType(str(value).strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class Trip:
    """A closed trip. ``distance`` is always ``end_km - start_km``."""

    id: int
    type: TripType
    start_km: int
    end_km: int
    distance: int
    start_time: str
    end_time: str
    note: str = ""

    @property
    def started_at(self) -> dt.datetime:
        return parse_timestamp(self.start_time)

    @property
    def ended_at(self) -> dt.datetime:
        return parse_timestamp(self.end_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "startKm": self.start_km,
            "endKm": self.end_km,
            "distance": self.distance,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trip":
        trip_type = _coerce_type(data.get("type"))
        if trip_type is None:
            raise ValueError(f"Unknown trip type {data.get('type')!r}")
        start_km = int(data["startKm"])
        end_km = int(data["endKm"])
        return cls(
            id=int(data["id"]),
            type=trip_type,
            start_km=start_km,
            end_km=end_km,
            distance=end_km - start_km,
            start_time=str(data["startTime"]),
            end_time=str(data["endTime"]),
            note=data.get("note") or "",
        )


@dataclass(frozen=True, slots=True)
class ActiveTrip:
    """An open trip; becomes a :class:`Trip` when it is ended."""

    type: TripType
    start_km: int
    start_time: str
    note: str = ""

    @property
    def started_at(self) -> dt.datetime:
        return parse_timestamp(self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "startKm": self.start_km,
            "startTime": self.start_time,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActiveTrip":
        trip_type = _coerce_type(data.get("type"))
        if trip_type is None:
            raise ValueError(f"Unknown trip type {data.get('type')!r}")
        return cls(
            type=trip_type,
            start_km=int(data["startKm"]),
            start_time=str(data["startTime"]),
            note=data.get("note") or "",
        )


@dataclass(slots=True)
class LedgerResult:
    ok: bool
    error: Optional[LedgerError] = None
    detail: str = ""
    trip: Optional[Union[Trip, ActiveTrip]] = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, trip: Optional[Union[Trip, ActiveTrip]] = None) -> "LedgerResult":
        return cls(ok=True, trip=trip)

    @classmethod
    def failure(cls, error: LedgerError, detail: str = "") -> "LedgerResult":
        return cls(ok=False, error=error, detail=detail)


@dataclass(slots=True)
class _Snapshot:
    current_km: int
    has_baseline: bool
    active_trip: Optional[ActiveTrip]
    trips: List[Trip] = field(default_factory=list)


class TripLedger:
    """Owns the odometer, the active trip and the trip collection (newest first)."""

    def __init__(
        self,
        store: PersistenceStore,
        clock: Optional[Clock] = None,
        runtime_state: Optional[RuntimeState] = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self.state = runtime_state or RuntimeState(settings)
        self.current_km = 0
        self.has_baseline = False
        self.active_trip: Optional[ActiveTrip] = None
        self.trips: List[Trip] = []
        self.selected_type = TripType.BUSINESS

    def initialize(self) -> Dict[str, bool]:
        """Load persisted state. Missing keys are a valid, empty starting point."""
        saved_km = self._store.get_int(CURRENT_KM)
        saved_trips = self._store.get_json(TRIPS) or []
        saved_active = self._store.get_json(ACTIVE_TRIP)

        if saved_km is not None:
            self.current_km = saved_km
        self.has_baseline = saved_km is not None
        try:
            self.trips = [Trip.from_dict(item) for item in saved_trips]
            self.active_trip = ActiveTrip.from_dict(saved_active) if saved_active else None
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Stored trip records are malformed: {exc}") from exc
        self.state.load(self._store)

        logger.info(
            "Ledger loaded: %d trips, odometer %s, active trip %s",
            len(self.trips),
            self.current_km if self.has_baseline else "unset",
            "yes" if self.active_trip else "no",
        )
        return {"has_baseline": self.has_baseline, "has_active_trip": self.active_trip is not None}

    def _snapshot(self) -> _Snapshot:
        return _Snapshot(self.current_km, self.has_baseline, self.active_trip, list(self.trips))

    def _restore(self, snapshot: _Snapshot) -> None:
        self.current_km = snapshot.current_km
        self.has_baseline = snapshot.has_baseline
        self.active_trip = snapshot.active_trip
        self.trips = snapshot.trips

    def _persist(self, previous: _Snapshot, write: Callable[[], None]) -> Optional[LedgerResult]:
        try:
            write()
        except StorageError as exc:
            logger.exception("Persisting ledger state failed")
            self._restore(previous)
            self._write_back(previous)
            return LedgerResult.failure(LedgerError.STORAGE_ERROR, str(exc))
        return None

    def _write_back(self, snapshot: _Snapshot) -> None:
        """Return the persisted ledger keys to ``snapshot`` after a partial write, key by key."""
        values = {
            TRIPS: [trip.to_dict() for trip in snapshot.trips] or None,
            CURRENT_KM: snapshot.current_km if snapshot.has_baseline else None,
            ACTIVE_TRIP: snapshot.active_trip.to_dict() if snapshot.active_trip else None,
        }
        for key, value in values.items():
            try:
                if value is None:
                    self._store.remove_key(key)
                else:
                    self._store.set_json(key, value)
            except StorageError:
                logger.exception("Could not restore %s after a failed write", key)

    def _set_odometer(self, km: Any) -> LedgerResult:
        value = parse_km(km)
        if value is None:
            logger.debug("Rejected odometer value %r", km)
            return LedgerResult.failure(LedgerError.INVALID_ODOMETER, "odometer must be a non-negative integer")
        previous = self._snapshot()
        self.current_km = value
        self.has_baseline = True
        failure = self._persist(previous, lambda: self._store.set_int(CURRENT_KM, value))
        if failure is not None:
            return failure
        logger.info("Odometer set to %d km", value)
        return LedgerResult.success()

    def set_baseline(self, km: Any) -> LedgerResult:
        return self._set_odometer(km)

    def update_odometer(self, km: Any) -> LedgerResult:
        """Manual correction outside the trip flow."""
        return self._set_odometer(km)

    def select_type(self, trip_type: Union[TripType, str]) -> bool:
        selected = _coerce_type(trip_type)
        if selected is None:
            return False
        self.selected_type = selected
        return True

    def start_trip(self, note: Optional[str] = "") -> LedgerResult:
        if self.active_trip is not None:
            return LedgerResult.failure(LedgerError.TRIP_ALREADY_ACTIVE, "a trip is already in progress")
        active = ActiveTrip(
            type=self.selected_type,
            start_km=self.current_km,
            start_time=format_timestamp(self._clock.now()),
            note=(note or "").strip(),
        )
        previous = self._snapshot()
        self.active_trip = active
        failure = self._persist(previous, lambda: self._store.set_json(ACTIVE_TRIP, active.to_dict()))
        if failure is not None:
            return failure
        logger.info("Started %s trip at %d km", active.type.value, active.start_km)
        return LedgerResult.success(active)

    def _next_id(self, now: dt.datetime) -> int:
        candidate = int(now.timestamp() * 1000)
        taken = {trip.id for trip in self.trips}
        while candidate in taken:
            candidate += 1
        return candidate

    def end_trip(self, end_km: Any) -> LedgerResult:
        active = self.active_trip
        if active is None:
            return LedgerResult.failure(LedgerError.NO_ACTIVE_TRIP, "no trip in progress")
        value = parse_km(end_km)
        if value is None:
            logger.debug("Rejected end odometer value %r", end_km)
            return LedgerResult.failure(LedgerError.INVALID_ODOMETER, "end_km must be a non-negative integer")
        if value <= active.start_km:
            return LedgerResult.failure(
                LedgerError.END_BEFORE_START,
                f"end_km {value} must be greater than start_km {active.start_km}",
            )

        now = self._clock.now()
        end_time = format_timestamp(max(now, active.started_at))
        trip = Trip(
            id=self._next_id(now),
            type=active.type,
            start_km=active.start_km,
            end_km=value,
            distance=value - active.start_km,
            start_time=active.start_time,
            end_time=end_time,
            note=active.note,
        )

        previous = self._snapshot()
        self.trips.insert(0, trip)
        self.current_km = value
        self.has_baseline = True
        self.active_trip = None

        def write() -> None:
            self._store.set_json(TRIPS, [item.to_dict() for item in self.trips])
            self._store.set_int(CURRENT_KM, value)
            self._store.remove_key(ACTIVE_TRIP)

        failure = self._persist(previous, write)
        if failure is not None:
            return failure
        logger.info("Closed %s trip %d: %d km", trip.type.value, trip.id, trip.distance)
        return LedgerResult.success(trip)

    def find_by_id(self, trip_id: int) -> Optional[Trip]:
        for trip in self.trips:
            if trip.id == trip_id:
                return trip
        return None

    def _index_of(self, trip_id: int) -> int:
        for index, trip in enumerate(self.trips):
            if trip.id == trip_id:
                return index
        return -1

    def update_trip(
        self,
        trip_id: int,
        trip_type: Union[TripType, str],
        start_km: Any,
        end_km: Any,
        note: Optional[str] = "",
    ) -> LedgerResult:
        """Replace type, odometer readings and note. Id and timestamps are kept."""
        index = self._index_of(trip_id)
        if index == -1:
            return LedgerResult.failure(LedgerError.TRIP_NOT_FOUND, f"no trip with id {trip_id}")
        new_type = _coerce_type(trip_type)
        if new_type is None:
            return LedgerResult.failure(LedgerError.INVALID_TRIP_TYPE, f"unknown trip type {trip_type!r}")
        start_value = parse_km(start_km)
        end_value = parse_km(end_km)
        if start_value is None or end_value is None:
            return LedgerResult.failure(LedgerError.INVALID_ODOMETER, "odometer readings must be non-negative integers")
        if end_value <= start_value:
            return LedgerResult.failure(
                LedgerError.END_BEFORE_START,
                f"end_km {end_value} must be greater than start_km {start_value}",
            )

        current = self.trips[index]
        updated = Trip(
            id=current.id,
            type=new_type,
            start_km=start_value,
            end_km=end_value,
            distance=end_value - start_value,
            start_time=current.start_time,
            end_time=current.end_time,
            note=(note or "").strip(),
        )
        previous = self._snapshot()
        self.trips[index] = updated
        failure = self._persist(
            previous, lambda: self._store.set_json(TRIPS, [item.to_dict() for item in self.trips])
        )
        if failure is not None:
            return failure
        logger.info("Updated trip %d", trip_id)
        return LedgerResult.success(updated)

    def delete_trip(self, trip_id: int) -> LedgerResult:
        remaining = [trip for trip in self.trips if trip.id != trip_id]
        if len(remaining) == len(self.trips):
            return LedgerResult.failure(LedgerError.TRIP_NOT_FOUND, f"no trip with id {trip_id}")
        previous = self._snapshot()
        self.trips = remaining
        failure = self._persist(
            previous, lambda: self._store.set_json(TRIPS, [item.to_dict() for item in self.trips])
        )
        if failure is not None:
            return failure
        logger.info("Deleted trip %d", trip_id)
        return LedgerResult.success()

    def clear_all_trips(self) -> LedgerResult:
        """Drop every trip. Odometer, active trip and settings stay."""
        previous = self._snapshot()
        self.trips = []
        failure = self._persist(previous, lambda: self._store.remove_key(TRIPS))
        if failure is not None:
            return failure
        logger.info("Cleared all trips")
        return LedgerResult.success()

    def reset_all(self) -> LedgerResult:
        previous = self._snapshot()
        failure = self._persist(previous, self._store.clear_all)
        if failure is not None:
            return failure
        self.current_km = 0
        self.has_baseline = False
        self.active_trip = None
        self.trips = []
        self.selected_type = TripType.BUSINESS
        self.state.reset()
        logger.info("Ledger reset")
        return LedgerResult.success()

    def update_settings(self, private_price: Any = None, start_date: Any = None) -> LedgerResult:
        updates: Dict[str, Any] = {}
        if private_price is not None:
            price = parse_price(private_price)
            if price is None:
                return LedgerResult.failure(LedgerError.INVALID_SETTING, "private_price must be a non-negative number")
            updates["private_price"] = price
        if start_date is not None:
            parsed = parse_date(start_date)
            if parsed is None:
                return LedgerResult.failure(LedgerError.INVALID_SETTING, "start_date must be an ISO date")
            updates["start_date"] = parsed
        try:
            self.state.persist(self._store, updates)
        except StorageError as exc:
            logger.exception("Persisting settings failed")
            return LedgerResult.failure(LedgerError.STORAGE_ERROR, str(exc))
        self.state.apply(updates)
        return LedgerResult.success()

    def now(self) -> dt.datetime:
        return self._clock.now()
