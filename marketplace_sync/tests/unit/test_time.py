"""
Unit tests for time utilities.
"""

from datetime import date, datetime, timedelta, timezone

from marketplace_sync.core.time import as_utc, format_datetime, local_date, parse_iso


def test_parse_iso_zulu_and_offset() -> None:
    assert parse_iso("2026-10-01T12:00:00Z") == datetime(2026, 10, 1, 12, tzinfo=timezone.utc)
    assert parse_iso("2026-10-01T14:00:00+02:00") == datetime(2026, 10, 1, 12, tzinfo=timezone.utc)


def test_as_utc_treats_naive_as_utc() -> None:
    naive = datetime(2026, 10, 19, 10, 0)

    assert as_utc(naive) == datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
    assert as_utc(naive).tzinfo is timezone.utc


def test_as_utc_converts_offsets() -> None:
    plus_two = datetime(2026, 10, 19, 12, 0, tzinfo=timezone(timedelta(hours=2)))

    assert as_utc(plus_two) == datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def test_local_date_crosses_midnight() -> None:
    # 23:30 UTC is already the next day in Warsaw
    assert local_date(datetime(2026, 10, 19, 23, 30, tzinfo=timezone.utc)) == date(2026, 10, 20)


def test_format_datetime_none_is_empty() -> None:
    assert format_datetime(None) == ""
