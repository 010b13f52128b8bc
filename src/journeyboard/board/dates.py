"""Parser for card due dates: ISO dates or relative ``+<N>[dwmq]`` tokens."""

from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_FALLBACK_DAYS = 7

_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_RELATIVE = re.compile(r"^\+(\d+)([dwmq])$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class DueDateParse:
    """Either a parsed timestamp (possibly ``None`` for blank input) or an error."""

    value: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def add_months(moment: datetime, months: int) -> datetime:
    """Shift ``moment`` by whole months, clamping to the target month's last day."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _parse_iso(text: str) -> Optional[datetime]:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return _as_utc(datetime.fromisoformat(candidate))
    except ValueError:
        pass
    try:
        parsed = date.fromisoformat(text[:10])
    except ValueError:
        return None
    return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)


def parse_due_date(value: Any, *, now: Optional[datetime] = None) -> DueDateParse:
    """Parse ``value`` without applying any fallback policy."""
    if value is None:
        return DueDateParse()
    if isinstance(value, datetime):
        return DueDateParse(value=_as_utc(value))
    if isinstance(value, date):
        return DueDateParse(value=datetime(value.year, value.month, value.day, tzinfo=timezone.utc))

    text = str(value).strip()
    if not text:
        return DueDateParse()

    if _ISO_PREFIX.match(text):
        parsed = _parse_iso(text)
        if parsed is not None:
            return DueDateParse(value=parsed)

    match = _RELATIVE.match(text)
    if match:
        base = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        amount = int(match.group(1))
        unit = match.group(2).lower()
        if unit == "d":
            return DueDateParse(value=base + timedelta(days=amount))
        if unit == "w":
            return DueDateParse(value=base + timedelta(weeks=amount))
        if unit == "m":
            return DueDateParse(value=add_months(base, amount))
        return DueDateParse(value=add_months(base, amount * 3))

    return DueDateParse(error=f"Unrecognised due date {text!r}; expected ISO date or +<N>[dwmq]")


def resolve_due_date(
    value: Any,
    *,
    now: Optional[datetime] = None,
    fallback_days: int = DEFAULT_FALLBACK_DAYS,
) -> Optional[datetime]:
    """Parse ``value`` and fall back to ``now + fallback_days`` when it is unreadable."""
    parsed = parse_due_date(value, now=now)
    if parsed.ok:
        return parsed.value
    base = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    LOGGER.warning("%s; using +%dd fallback", parsed.error, fallback_days)
    return base + timedelta(days=fallback_days)


__all__ = [
    "DEFAULT_FALLBACK_DAYS",
    "DueDateParse",
    "add_months",
    "parse_due_date",
    "resolve_due_date",
]
