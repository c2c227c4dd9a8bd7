from __future__ import annotations

import datetime as dt
import os
import tempfile
from pathlib import Path
from typing import Generator

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="logbook-tests-"))
os.environ.setdefault("LB_STORAGE_BACKEND", "memory")
os.environ.setdefault("LB_SQLITE_PATH", str(_TEST_ROOT / "logbook.db"))
os.environ.setdefault("LB_JSON_DIR", str(_TEST_ROOT / "state"))
os.environ.setdefault("LB_EXPORT_DIR", str(_TEST_ROOT / "exports"))
os.environ.setdefault("LB_TIMEZONE", "Europe/Berlin")
os.environ.setdefault("LB_LOCALE", "de-DE")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from logbook import models  # noqa: E402
from logbook.config import settings  # noqa: E402
from logbook.ledger import Trip, TripLedger, TripType  # noqa: E402
from logbook.main import app, get_ledger  # noqa: E402
from logbook.state import RuntimeState  # noqa: E402
from logbook.storage import MemoryStore, SqlKeyValueStore  # noqa: E402

UTC = dt.timezone.utc


class FixedClock:
    def __init__(self, current: dt.datetime) -> None:
        self.current = current

    def now(self) -> dt.datetime:
        return self.current

    def advance(self, **delta: float) -> None:
        self.current += dt.timedelta(**delta)


def make_trip(
    trip_id: int,
    trip_type: TripType,
    start_km: int,
    end_km: int,
    start_time: str,
    end_time: str | None = None,
    note: str = "",
) -> Trip:
    return Trip(
        id=trip_id,
        type=trip_type,
        start_km=start_km,
        end_km=end_km,
        distance=end_km - start_km,
        start_time=start_time,
        end_time=end_time or start_time,
        note=note,
    )


@pytest.fixture()
def clock() -> FixedClock:
    # Monday, 10:00 in Berlin
    return FixedClock(dt.datetime(2026, 10, 19, 8, 0, tzinfo=UTC))


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def session_factory(tmp_path: Path) -> sessionmaker:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'store.db'}", connect_args={"check_same_thread": False}, future=True
    )
    models.Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def sql_store(session_factory: sessionmaker) -> SqlKeyValueStore:
    return SqlKeyValueStore(session_factory)


@pytest.fixture()
def ledger(store: MemoryStore, clock: FixedClock) -> TripLedger:
    trip_ledger = TripLedger(store, clock, RuntimeState(settings))
    trip_ledger.initialize()
    return trip_ledger


@pytest.fixture()
def client(ledger: TripLedger) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_ledger] = lambda: ledger
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def sample_trips() -> list[Trip]:
    return [
        make_trip(3, TripType.BUSINESS, 10100, 10150, "2026-10-19T08:00:00.000Z", "2026-10-19T09:00:00.000Z"),
        make_trip(2, TripType.PRIVATE, 10080, 10100, "2026-10-14T08:00:00.000Z", "2026-10-14T08:30:00.000Z"),
        make_trip(1, TripType.BUSINESS, 10050, 10080, "2026-09-30T08:00:00.000Z", "2026-09-30T09:15:00.000Z"),
    ]


@pytest.fixture()
def trip_factory():
    return make_trip
