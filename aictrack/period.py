"""Time windows for period reports.

Accepted inputs:

- ``7d`` / ``2w`` / ``1m``: the last N days, weeks or months (a month is
  30 days).
- ``3 days ago`` / ``1 week ago`` / ``2 months ago``.
- ``2024-01-15`` or ``2024-01-15 09:30:00``: from that instant until now.
- ``parse_from_to`` additionally accepts ``2024/01/15`` and ``01/15/2024``.

Dates without a zone are taken as UTC.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import InvalidTimeRange

_LAST_RE = re.compile(r"^(\d+)([dwm])$")
_AGO_RE = re.compile(r"^(\d+)\s+(days?|weeks?|months?)\s+ago$")

_UNIT_DAYS = {"d": 1, "w": 7, "m": 30, "day": 1, "week": 7, "month": 30}
_UNIT_WORDS = {"d": "days", "w": "weeks", "m": "months", "y": "years"}

_RANGE_FORMATS = ("%Y-%m-%d", "%Y-%m-%d %H:%M:%S")
_DATE_FORMATS = _RANGE_FORMATS + ("%Y/%m/%d", "%m/%d/%Y")


@dataclass(frozen=True)
class TimeRange:
    """Closed window ``[start, end]``."""

    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return self.start <= ts <= self.end

    @property
    def days(self) -> float:
        return (self.end - self.start).total_seconds() / 86400

    def to_dict(self) -> dict:
        return {"from": self.start.isoformat(), "to": self.end.isoformat()}


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _parse_date(text: str, formats: tuple[str, ...]) -> Optional[datetime]:
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def parse_last(expr: str, now: Optional[datetime] = None) -> TimeRange:
    """Parse ``Nd`` / ``Nw`` / ``Nm`` into a window ending now."""
    m = _LAST_RE.match(expr.strip())
    if not m:
        raise InvalidTimeRange(
            f"invalid duration format: {expr} (expected format: Nd/Nw/Nm)"
        )
    end = _now(now)
    return TimeRange(end - timedelta(days=int(m.group(1)) * _UNIT_DAYS[m.group(2)]), end)


def parse_time_range(expr: str, now: Optional[datetime] = None) -> TimeRange:
    """Parse any supported window expression into a ``TimeRange``.

    Raises:
        InvalidTimeRange: the expression matches none of the formats.
    """
    text = expr.strip()
    end = _now(now)
    if _LAST_RE.match(text):
        return parse_last(text, end)

    m = _AGO_RE.match(text.lower())
    if m:
        unit = m.group(2).rstrip("s")
        return TimeRange(end - timedelta(days=int(m.group(1)) * _UNIT_DAYS[unit]), end)

    start = _parse_date(text, _RANGE_FORMATS)
    if start is not None:
        return TimeRange(start, end)

    raise InvalidTimeRange(f"unsupported time format: {expr}")


def parse_from_to(start: str, end: str) -> TimeRange:
    """Parse an explicit ``from`` / ``to`` pair."""
    t0 = _parse_date(start.strip(), _DATE_FORMATS)
    if t0 is None:
        raise InvalidTimeRange(f"invalid from date: {start}")
    t1 = _parse_date(end.strip(), _DATE_FORMATS)
    if t1 is None:
        raise InvalidTimeRange(f"invalid to date: {end}")
    if t0 > t1:
        raise InvalidTimeRange("from date must be before to date")
    return TimeRange(t0, t1)


def expand_since(expr: str) -> str:
    """Expand git-style shorthand: ``7d`` -> ``7 days ago``.

    Anything that is not ``<N><d|w|m|y>`` is returned unchanged so git can
    interpret it (``yesterday``, ``2024-01-01``...).
    """
    m = re.match(r"^(\d+)([dwmy])$", expr.strip())
    if not m:
        return expr
    return f"{m.group(1)} {_UNIT_WORDS[m.group(2)]} ago"
