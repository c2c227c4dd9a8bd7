from __future__ import annotations

import datetime as dt
import itertools
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from logbook.ledger import TripType
from logbook.reports import (
    export_flat_csv,
    export_periodic_report,
    iso_week,
    iso_week_range,
    month_start,
    private_cost_analysis,
    summarize_all,
    summarize_in_range,
    summarize_month,
    summarize_week,
    week_start,
)

BERLIN = ZoneInfo("Europe/Berlin")
NOW = dt.datetime(2026, 10, 19, 8, 0, tzinfo=dt.timezone.utc)


def test_summarize_all_ignores_order(sample_trips) -> None:
    expected = summarize_all(sample_trips)
    assert expected.as_dict() == {"business": 80, "private": 20, "total": 100}
    for permutation in itertools.permutations(sample_trips):
        assert summarize_all(permutation) == expected


def test_summarize_empty_collection() -> None:
    assert summarize_all([]).as_dict() == {"business": 0, "private": 0, "total": 0}


def test_summarize_in_range_uses_local_start_time(sample_trips) -> None:
    october = summarize_in_range(sample_trips, lambda started: started.month == 10, BERLIN)
    assert october.as_dict() == {"business": 50, "private": 20, "total": 70}
    assert october.total == october.business + october.private


@pytest.mark.parametrize(
    "local_now, monday",
    [
        (dt.datetime(2026, 10, 19, 10, 0), dt.date(2026, 10, 19)),  # Monday
        (dt.datetime(2026, 10, 21, 23, 59), dt.date(2026, 10, 19)),  # Wednesday
        (dt.datetime(2026, 10, 24, 12, 0), dt.date(2026, 10, 19)),  # Saturday
        (dt.datetime(2026, 10, 25, 12, 0), dt.date(2026, 10, 19)),  # Sunday, DST change
        (dt.datetime(2026, 11, 1, 0, 30), dt.date(2026, 10, 26)),  # Sunday
    ],
)
def test_week_start_is_monday_midnight(local_now, monday) -> None:
    start = week_start(local_now.replace(tzinfo=BERLIN), BERLIN)
    assert start.date() == monday
    assert (start.hour, start.minute, start.second) == (0, 0, 0)
    assert start.tzinfo is BERLIN


def test_week_start_uses_local_date() -> None:
    # 23:30 UTC on Sunday is already Monday in Berlin
    now = dt.datetime(2026, 10, 25, 23, 30, tzinfo=dt.timezone.utc)
    assert week_start(now, BERLIN).date() == dt.date(2026, 10, 26)


def test_month_start() -> None:
    start = month_start(dt.datetime(2026, 10, 19, 10, 0, tzinfo=BERLIN), BERLIN)
    assert start == dt.datetime(2026, 10, 1, 0, 0, tzinfo=BERLIN)


def test_weekly_and_monthly_windows(sample_trips) -> None:
    assert summarize_week(sample_trips, NOW, BERLIN).as_dict() == {"business": 50, "private": 0, "total": 50}
    assert summarize_month(sample_trips, NOW, BERLIN).as_dict() == {"business": 50, "private": 20, "total": 70}


def test_windows_exclude_trips_after_now(sample_trips) -> None:
    earlier = NOW - dt.timedelta(minutes=1)
    assert summarize_week(sample_trips, earlier, BERLIN).total == 0
    assert summarize_month(sample_trips, earlier, BERLIN).as_dict() == {"business": 0, "private": 20, "total": 20}


@pytest.mark.parametrize(
    "day, expected",
    [
        (dt.date(2026, 10, 19), (2026, 43)),
        (dt.date(2026, 1, 1), (2026, 1)),
        (dt.date(2025, 12, 29), (2026, 1)),
        (dt.date(2021, 1, 3), (2020, 53)),
        (dt.date(2024, 12, 30), (2025, 1)),
        (dt.date(2027, 1, 3), (2026, 53)),
    ],
)
def test_iso_week_matches_calendar(day, expected) -> None:
    assert iso_week(day) == expected
    assert iso_week(day) == tuple(day.isocalendar())[:2]


def test_iso_week_range() -> None:
    assert iso_week_range(2026, 1) == (dt.date(2025, 12, 29), dt.date(2026, 1, 4))
    assert iso_week_range(2026, 43) == (dt.date(2026, 10, 19), dt.date(2026, 10, 25))
    assert iso_week_range(2020, 53) == (dt.date(2020, 12, 28), dt.date(2021, 1, 3))


def test_flat_csv_of_empty_collection_is_header_only() -> None:
    assert export_flat_csv([], "de-DE", BERLIN) == "Datum,Start Zeit,Ende Zeit,Typ,Start KM,Ende KM,Distanz,Notiz\n"


def test_flat_csv_rows_keep_collection_order(sample_trips, trip_factory) -> None:
    trips = [
        trip_factory(
            5,
            TripType.PRIVATE,
            200,
            230,
            "2026-09-30T08:00:00.000Z",
            "2026-09-30T09:15:30.000Z",
            note='Kunde "Müller", Köln',
        ),
        sample_trips[0],
    ]
    lines = export_flat_csv(trips, "de-DE", BERLIN).splitlines()
    assert lines[1] == '30.9.2026,10:00:00,11:15:30,Privat,200,230,30,"Kunde ""Müller"", Köln"'
    assert lines[2] == '19.10.2026,10:00:00,11:00:00,Geschäftlich,10100,10150,50,""'
    assert len(lines) == 3


def test_flat_csv_english_labels(sample_trips) -> None:
    csv = export_flat_csv(sample_trips[:1], "en-US", BERLIN)
    header, row = csv.splitlines()
    assert header == "Date,Start Time,End Time,Type,Start KM,End KM,Distance,Note"
    assert row == '2026-10-19,10:00:00,11:00:00,Business,10100,10150,50,""'


def test_periodic_report_of_empty_collection() -> None:
    assert export_periodic_report([], "de-DE", BERLIN) == ""


def test_periodic_report_groups_months_and_weeks(sample_trips) -> None:
    shuffled = [sample_trips[2], sample_trips[0], sample_trips[1]]
    report = export_periodic_report(shuffled, "de-DE", BERLIN)
    assert report.splitlines() == [
        "Period,Type,Business(km),Private(km),Total(km)",
        "Oktober 2026,Monat,50,20,70",
        "19.10.2026 - 25.10.2026,KW 43,50,0,50",
        "12.10.2026 - 18.10.2026,KW 42,0,20,20",
        "September 2026,Monat,30,0,30",
        "28.9.2026 - 4.10.2026,KW 40,30,0,30",
    ]
    assert [trip.id for trip in shuffled] == [1, 3, 2]


def test_periodic_report_splits_week_across_months(trip_factory) -> None:
    trips = [
        trip_factory(1, TripType.BUSINESS, 0, 10, "2026-09-29T08:00:00.000Z"),
        trip_factory(2, TripType.PRIVATE, 10, 25, "2026-10-02T08:00:00.000Z"),
    ]
    lines = export_periodic_report(trips, "en", BERLIN).splitlines()
    assert lines[1:] == [
        "October 2026,Month,0,15,15",
        "2026-09-28 - 2026-10-04,Week 40,0,15,15",
        "September 2026,Month,10,0,10",
        "2026-09-28 - 2026-10-04,Week 40,10,0,10",
    ]


def test_periodic_report_month_uses_local_time(trip_factory) -> None:
    # 23:30 UTC on 31 October is already November in Berlin
    trips = [trip_factory(1, TripType.BUSINESS, 0, 10, "2026-10-31T23:30:00.000Z")]
    lines = export_periodic_report(trips, "de", BERLIN).splitlines()
    assert lines[1] == "November 2026,Monat,10,0,10"
    assert lines[2] == "26.10.2026 - 1.11.2026,KW 44,10,0,10"


def test_private_cost_analysis(sample_trips) -> None:
    analysis = private_cost_analysis(
        sample_trips, Decimal("251.00"), dt.date(2026, 1, 1), dt.date(2026, 10, 19), BERLIN
    )
    assert analysis.months == 10
    assert analysis.private_km == 20
    assert analysis.total_cost == Decimal("2510.00")
    assert analysis.cost_per_km == Decimal("125.50")


def test_private_cost_analysis_without_private_trips(sample_trips) -> None:
    analysis = private_cost_analysis(
        sample_trips, Decimal("251.00"), dt.date(2026, 10, 15), dt.date(2026, 10, 19), BERLIN
    )
    assert analysis.months == 1
    assert analysis.private_km == 0
    assert analysis.cost_per_km is None

    before_start = private_cost_analysis(
        sample_trips, Decimal("251.00"), dt.date(2027, 1, 1), dt.date(2026, 10, 19), BERLIN
    )
    assert before_start.months == 0
    assert before_start.total_cost == Decimal("0.00")
