"""Summaries and exports computed from a trip collection.

All functions are pure: they take the trips (and, where a window is involved,
the current time) and never touch storage. Reports are always rebuilt from
the full collection, so an edited trip simply lands in its new period on the
next call.
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .config import settings
from .csv_format import format_row
from .ledger import Trip, TripType

LOCAL_TZ = ZoneInfo(settings.timezone)

PERIODIC_HEADER = ["Period", "Type", "Business(km)", "Private(km)", "Total(km)"]

LABELS: Dict[str, Dict[str, Any]] = {
    "de": {
        "flat_header": ["Datum", "Start Zeit", "Ende Zeit", "Typ", "Start KM", "Ende KM", "Distanz", "Notiz"],
        "types": {TripType.BUSINESS: "Geschäftlich", TripType.PRIVATE: "Privat"},
        "date_format": "{0.day}.{0.month}.{0.year}",
        "month": "Monat",
        "week": "KW",
        "months": [
            "Januar", "Februar", "März", "April", "Mai", "Juni",
            "Juli", "August", "September", "Oktober", "November", "Dezember",
        ],
    },
    "en": {
        "flat_header": ["Date", "Start Time", "End Time", "Type", "Start KM", "End KM", "Distance", "Note"],
        "types": {TripType.BUSINESS: "Business", TripType.PRIVATE: "Private"},
        "date_format": "{0:%Y-%m-%d}",
        "month": "Month",
        "week": "Week",
        "months": [
            "January", "February", "March", "April", "May", "June",
            "July", "August", "September", "October", "November", "December",
        ],
    },
}

_NOTE_COLUMN = 7


def labels_for(locale: Optional[str] = None) -> Dict[str, Any]:
    language = (locale or settings.locale).replace("_", "-").split("-")[0].lower()
    return LABELS.get(language, LABELS["de"])


def _as_local(value: dt.datetime, tz: dt.tzinfo) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


@dataclass(frozen=True, slots=True)
class Summary:
    business: int = 0
    private: int = 0

    @property
    def total(self) -> int:
        return self.business + self.private

    def as_dict(self) -> Dict[str, int]:
        return {"business": self.business, "private": self.private, "total": self.total}


def summarize_all(trips: Iterable[Trip]) -> Summary:
    business = 0
    private = 0
    for trip in trips:
        if trip.type == TripType.BUSINESS:
            business += trip.distance
        else:
            private += trip.distance
    return Summary(business=business, private=private)


def summarize_in_range(
    trips: Iterable[Trip],
    predicate: Callable[[dt.datetime], bool],
    tz: dt.tzinfo = LOCAL_TZ,
) -> Summary:
    """Summarize trips whose local start time satisfies ``predicate``."""
    return summarize_all(trip for trip in trips if predicate(trip.started_at.astimezone(tz)))


def week_start(now: dt.datetime, tz: dt.tzinfo = LOCAL_TZ) -> dt.datetime:
    """Monday 00:00 local time of the week containing ``now``."""
    local = _as_local(now, tz)
    day_index = (local.weekday() + 1) % 7  # Sunday=0 .. Saturday=6
    days_back = 6 if day_index == 0 else day_index - 1
    monday = local.date() - dt.timedelta(days=days_back)
    return dt.datetime.combine(monday, dt.time.min, tzinfo=tz)


def month_start(now: dt.datetime, tz: dt.tzinfo = LOCAL_TZ) -> dt.datetime:
    local = _as_local(now, tz)
    return dt.datetime.combine(local.date().replace(day=1), dt.time.min, tzinfo=tz)


def summarize_week(trips: Iterable[Trip], now: dt.datetime, tz: dt.tzinfo = LOCAL_TZ) -> Summary:
    start = week_start(now, tz)
    end = _as_local(now, tz)
    return summarize_in_range(trips, lambda started: start <= started <= end, tz)


def summarize_month(trips: Iterable[Trip], now: dt.datetime, tz: dt.tzinfo = LOCAL_TZ) -> Summary:
    start = month_start(now, tz)
    end = _as_local(now, tz)
    return summarize_in_range(trips, lambda started: start <= started <= end, tz)


def iso_week(day: dt.date) -> Tuple[int, int]:
    """ISO-8601 ``(year, week)`` of ``day``, via the Thursday of its week."""
    thursday = day + dt.timedelta(days=4 - day.isoweekday())
    january_first = dt.date(thursday.year, 1, 1)
    week = math.ceil(((thursday - january_first).days + 1) / 7)
    return thursday.year, week


def iso_week_range(iso_year: int, week: int) -> Tuple[dt.date, dt.date]:
    """Monday and Sunday of an ISO week. Week 1 starts on the Monday on/before January 4."""
    january_fourth = dt.date(iso_year, 1, 4)
    first_monday = january_fourth - dt.timedelta(days=january_fourth.isoweekday() - 1)
    monday = first_monday + dt.timedelta(weeks=week - 1)
    return monday, monday + dt.timedelta(days=6)


def flat_rows(
    trips: Sequence[Trip],
    locale: Optional[str] = None,
    tz: dt.tzinfo = LOCAL_TZ,
) -> Tuple[List[str], List[List[Any]]]:
    """Header and one row per trip, in collection order."""
    labels = labels_for(locale)
    rows: List[List[Any]] = []
    for trip in trips:
        started = trip.started_at.astimezone(tz)
        ended = trip.ended_at.astimezone(tz)
        rows.append(
            [
                labels["date_format"].format(started.date()),
                started.strftime("%H:%M:%S"),
                ended.strftime("%H:%M:%S"),
                labels["types"][trip.type],
                trip.start_km,
                trip.end_km,
                trip.distance,
                trip.note or "",
            ]
        )
    return list(labels["flat_header"]), rows


def export_flat_csv(trips: Sequence[Trip], locale: Optional[str] = None, tz: dt.tzinfo = LOCAL_TZ) -> str:
    header, rows = flat_rows(trips, locale, tz)
    lines = [format_row(header)]
    lines.extend(format_row(row, quoted={_NOTE_COLUMN}) for row in rows)
    return "".join(lines)


@dataclass(slots=True)
class _Bucket:
    business: int = 0
    private: int = 0

    def add(self, trip: Trip) -> None:
        if trip.type == TripType.BUSINESS:
            self.business += trip.distance
        else:
            self.private += trip.distance

    def row(self, label: str, kind: str) -> List[Any]:
        return [label, kind, self.business, self.private, self.business + self.private]


def periodic_rows(
    trips: Sequence[Trip],
    locale: Optional[str] = None,
    tz: dt.tzinfo = LOCAL_TZ,
) -> Tuple[List[str], List[List[Any]]]:
    """Month totals, each followed by its ISO weeks, newest first."""
    labels = labels_for(locale)
    ordered = sorted(trips, key=lambda trip: trip.started_at, reverse=True)

    months: Dict[Tuple[int, int], Tuple[_Bucket, Dict[Tuple[int, int], _Bucket]]] = {}
    for trip in ordered:
        local_day = trip.started_at.astimezone(tz).date()
        month_key = (local_day.year, local_day.month)
        week_key = iso_week(local_day)
        if month_key not in months:
            months[month_key] = (_Bucket(), {})
        month_bucket, weeks = months[month_key]
        month_bucket.add(trip)
        weeks.setdefault(week_key, _Bucket()).add(trip)

    date_format = labels["date_format"]
    rows: List[List[Any]] = []
    for (year, month), (month_bucket, weeks) in months.items():
        rows.append(month_bucket.row(f"{labels['months'][month - 1]} {year}", labels["month"]))
        for (iso_year, week), week_bucket in weeks.items():
            monday, sunday = iso_week_range(iso_year, week)
            label = f"{date_format.format(monday)} - {date_format.format(sunday)}"
            rows.append(week_bucket.row(label, f"{labels['week']} {week}"))
    return list(PERIODIC_HEADER), rows


def export_periodic_report(trips: Sequence[Trip], locale: Optional[str] = None, tz: dt.tzinfo = LOCAL_TZ) -> str:
    if not trips:
        return ""
    header, rows = periodic_rows(trips, locale, tz)
    return "".join([format_row(header)] + [format_row(row) for row in rows])


@dataclass(frozen=True, slots=True)
class PrivateCostAnalysis:
    start_date: dt.date
    months: int
    private_km: int
    price: Decimal
    total_cost: Decimal
    cost_per_km: Optional[Decimal]


def _months_covered(start_date: dt.date, today: dt.date) -> int:
    if today < start_date:
        return 0
    return (today.year - start_date.year) * 12 + today.month - start_date.month + 1


def private_cost_analysis(
    trips: Iterable[Trip],
    price: Decimal,
    start_date: dt.date,
    today: dt.date,
    tz: dt.tzinfo = LOCAL_TZ,
) -> PrivateCostAnalysis:
    """Spread the monthly private-use charge since ``start_date`` over the private km driven."""
    months = _months_covered(start_date, today)
    private_km = sum(
        trip.distance
        for trip in trips
        if trip.type == TripType.PRIVATE
        and start_date <= trip.started_at.astimezone(tz).date() <= today
    )
    total_cost = (Decimal(price) * months).quantize(Decimal("0.01"))
    cost_per_km = (total_cost / private_km).quantize(Decimal("0.01")) if private_km else None
    return PrivateCostAnalysis(
        start_date=start_date,
        months=months,
        private_km=private_km,
        price=Decimal(price),
        total_cost=total_cost,
        cost_per_km=cost_per_km,
    )
