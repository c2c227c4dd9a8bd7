"""Key-value persistence for the logbook.

Every value is stored as JSON text under one of the well-known keys below, so a
trip collection written by one backend reads back identically from any other.
Absent keys read as ``None``; every failure of the backing medium is raised as
:class:`StorageError`.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .database import SessionLocal, db_session, engine
from .models import Base, StoreEntry

logger = logging.getLogger(__name__)

CURRENT_KM = "currentKm"
TRIPS = "trips"
ACTIVE_TRIP = "activeTrip"
PRIVATE_PRICE = "privatePrice"
START_DATE = "startDate"

ALL_KEYS = (CURRENT_KM, TRIPS, ACTIVE_TRIP, PRIVATE_PRICE, START_DATE)


class StorageError(Exception):
    """The backing store could not be read or written."""

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)


class PersistenceStore(Protocol):
    def get_int(self, key: str) -> Optional[int]:
        ...

    def set_int(self, key: str, value: int) -> None:
        ...

    def get_json(self, key: str) -> Any:
        ...

    def set_json(self, key: str, value: Any) -> None:
        ...

    def remove_key(self, key: str) -> None:
        ...

    def clear_all(self) -> None:
        ...


class _JsonValueStore:
    """Typed accessors shared by all backends; subclasses move raw JSON text."""

    def _read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, key: str, text: str) -> None:
        raise NotImplementedError

    def remove_key(self, key: str) -> None:
        raise NotImplementedError

    def clear_all(self) -> None:
        raise NotImplementedError

    def get_json(self, key: str) -> Any:
        raw = self._read(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Stored value for {key!r} is not valid JSON", key=key) from exc

    def set_json(self, key: str, value: Any) -> None:
        try:
            text = json.dumps(value, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for {key!r} cannot be serialized: {exc}", key=key) from exc
        self._write(key, text)

    def get_int(self, key: str) -> Optional[int]:
        value = self.get_json(key)
        if value is None:
            return None
        # older stores kept the odometer as a numeric string
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise StorageError(f"Stored value for {key!r} is not an integer", key=key)
        try:
            return int(value)
        except ValueError as exc:
            raise StorageError(f"Stored value for {key!r} is not an integer", key=key) from exc

    def set_int(self, key: str, value: int) -> None:
        self.set_json(key, int(value))


class MemoryStore(_JsonValueStore):
    """Process-local store, mainly for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    def _read(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def _write(self, key: str, text: str) -> None:
        self._values[key] = text

    def remove_key(self, key: str) -> None:
        self._values.pop(key, None)

    def clear_all(self) -> None:
        self._values.clear()


class SqlKeyValueStore(_JsonValueStore):
    """One ``store_entries`` row per key; every call runs in its own committed session."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def _read(self, key: str) -> Optional[str]:
        try:
            with db_session(self._session_factory) as session:
                entry = session.get(StoreEntry, key)
                return entry.value if entry else None
        except SQLAlchemyError as exc:
            logger.exception("Reading %s from database failed", key)
            raise StorageError(f"Could not read {key!r}", key=key) from exc

    def _write(self, key: str, text: str) -> None:
        try:
            with db_session(self._session_factory) as session:
                entry = session.get(StoreEntry, key)
                if entry:
                    entry.value = text
                else:
                    session.add(StoreEntry(key=key, value=text))
        except SQLAlchemyError as exc:
            logger.exception("Writing %s to database failed", key)
            raise StorageError(f"Could not write {key!r}", key=key) from exc

    def remove_key(self, key: str) -> None:
        try:
            with db_session(self._session_factory) as session:
                session.execute(delete(StoreEntry).where(StoreEntry.key == key))
        except SQLAlchemyError as exc:
            logger.exception("Removing %s from database failed", key)
            raise StorageError(f"Could not remove {key!r}", key=key) from exc

    def clear_all(self) -> None:
        try:
            with db_session(self._session_factory) as session:
                session.execute(delete(StoreEntry))
        except SQLAlchemyError as exc:
            logger.exception("Clearing database store failed")
            raise StorageError("Could not clear store") from exc


class JsonFileStore(_JsonValueStore):
    """One ``<key>.json`` file per key inside ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Could not read {path}", key=key) from exc

    def _write(self, key: str, text: str) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, self._path(key))
        except OSError as exc:
            raise StorageError(f"Could not write {self._path(key)}", key=key) from exc

    def remove_key(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not remove {self._path(key)}", key=key) from exc

    def clear_all(self) -> None:
        try:
            for path in self.directory.glob("*.json"):
                path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not clear {self.directory}") from exc


def build_store(config: Settings) -> PersistenceStore:
    backend = config.storage_backend
    if backend == "sqlite":
        Base.metadata.create_all(bind=engine)
        return SqlKeyValueStore()
    if backend == "json":
        return JsonFileStore(config.json_dir)
    if backend == "memory":
        return MemoryStore()
    raise NotImplementedError(f"Unsupported storage backend {backend!r}")
