from __future__ import annotations

import datetime as dt
from decimal import Decimal, InvalidOperation
from threading import RLock
from typing import Any, Dict, Optional

from .config import Settings
from .storage import PRIVATE_PRICE, START_DATE, PersistenceStore


def parse_price(value: Any) -> Optional[Decimal]:
    """Return a finite, non-negative price or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        return None
    if not price.is_finite() or price < 0:
        return None
    return price.quantize(Decimal("0.01"))


def parse_date(value: Any) -> Optional[dt.date]:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


class RuntimeState:
    """Private-cost settings that can be adjusted at runtime."""

    def __init__(self, base_settings: Settings):
        self._lock = RLock()
        self._default_price = parse_price(base_settings.private_price) or Decimal("0.00")
        self._default_start_date = base_settings.start_date
        self.private_price: Decimal = self._default_price
        self.start_date: dt.date = self._default_start_date

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "private_price": self.private_price,
                "start_date": self.start_date,
            }

    def apply(self, updates: Dict[str, Any]) -> None:
        with self._lock:
            if updates.get("private_price") is not None:
                price = parse_price(updates["private_price"])
                if price is not None:
                    self.private_price = price
            if updates.get("start_date") is not None:
                start_date = parse_date(updates["start_date"])
                if start_date is not None:
                    self.start_date = start_date

    def reset(self) -> None:
        with self._lock:
            self.private_price = self._default_price
            self.start_date = self._default_start_date

    def load(self, store: PersistenceStore) -> None:
        decoded: Dict[str, Any] = {}
        price = store.get_json(PRIVATE_PRICE)
        if price is not None:
            decoded["private_price"] = price
        start_date = store.get_json(START_DATE)
        if start_date is not None:
            decoded["start_date"] = start_date
        if decoded:
            self.apply(decoded)

    def persist(self, store: PersistenceStore, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if value is None:
                continue
            if key == "private_price":
                store.set_json(PRIVATE_PRICE, f"{parse_price(value):.2f}")
            elif key == "start_date":
                store.set_json(START_DATE, parse_date(value).isoformat())
