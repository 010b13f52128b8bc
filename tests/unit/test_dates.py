from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from journeyboard.board.dates import add_months, parse_due_date, resolve_due_date

NOW = datetime(2024, 1, 31, 9, 30, tzinfo=timezone.utc)


def test_relative_tokens_cover_days_weeks_months_quarters() -> None:
    assert parse_due_date("+3d", now=NOW).value == NOW + timedelta(days=3)
    assert parse_due_date("+2W", now=NOW).value == NOW + timedelta(days=14)
    assert parse_due_date("+1m", now=NOW).value == datetime(2024, 2, 29, 9, 30, tzinfo=timezone.utc)
    assert parse_due_date("+1q", now=NOW).value == datetime(2024, 4, 30, 9, 30, tzinfo=timezone.utc)


def test_iso_dates_are_normalised_to_utc() -> None:
    assert parse_due_date("2024-05-10").value == datetime(2024, 5, 10, tzinfo=timezone.utc)
    assert parse_due_date("2024-05-10T12:00:00Z").value == datetime(2024, 5, 10, 12, tzinfo=timezone.utc)
    shifted = parse_due_date("2024-05-10T12:00:00-03:00").value
    assert shifted == datetime(2024, 5, 10, 15, tzinfo=timezone.utc)
    assert parse_due_date(date(2024, 5, 10)).value == datetime(2024, 5, 10, tzinfo=timezone.utc)


def test_blank_due_date_is_empty_not_an_error() -> None:
    for value in (None, "", "   "):
        parsed = parse_due_date(value)
        assert parsed.ok
        assert parsed.value is None


def test_unreadable_due_date_reports_error_and_falls_back() -> None:
    parsed = parse_due_date("amanhã", now=NOW)
    assert not parsed.ok
    assert "amanhã" in (parsed.error or "")
    assert resolve_due_date("amanhã", now=NOW) == NOW + timedelta(days=7)
    assert resolve_due_date("semana que vem", now=NOW, fallback_days=2) == NOW + timedelta(days=2)


def test_add_months_clamps_to_month_end() -> None:
    assert add_months(datetime(2023, 12, 31), 2) == datetime(2024, 2, 29)
    assert add_months(datetime(2024, 11, 15), 3) == datetime(2025, 2, 15)
