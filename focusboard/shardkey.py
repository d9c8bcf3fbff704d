"""Calendar-day shard keys.

A shard key is the calendar date (YYYY-MM-DD) of an instant projected
into a timezone. These functions are pure: the same (timezone, instant)
always gives the same key in every process, so "today" needs no
coordinated reset.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, tzinfo
from datetime import timezone as dt_timezone
from zoneinfo import ZoneInfo


def _zone(timezone: str | tzinfo) -> tzinfo:
    if isinstance(timezone, str):
        return ZoneInfo(timezone)
    return timezone


def _require_aware(instant: datetime) -> None:
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError(f"Instant must be timezone-aware: {instant!r}")


def shard_key(timezone: str | tzinfo, instant: datetime) -> str:
    """Calendar date of *instant* in *timezone*, as YYYY-MM-DD."""
    _require_aware(instant)
    return instant.astimezone(_zone(timezone)).date().isoformat()


def local_midnight(timezone: str | tzinfo, day: date) -> datetime:
    """The instant local *day* begins in *timezone*.

    Where a DST change skips 00:00 (America/Santiago in September), the
    day begins at the transition: fold=0 reads the missing wall time with
    the old offset, which is exactly that instant. The UTC round trip
    returns it with its real local time (01:00) instead of a wall time
    that never happened.
    """
    tz = _zone(timezone)
    midnight = datetime.combine(day, time(0), tzinfo=tz)
    return midnight.astimezone(dt_timezone.utc).astimezone(tz)


def split_by_day(timezone: str | tzinfo, start: datetime, end: datetime) -> list[tuple[str, int]]:
    """Split [start, end) at local midnights into (day_key, whole_seconds) pieces.

    The pieces always sum to floor(end - start) (clamped to 0), so a
    session's per-day contributions add up to its reported duration.
    """
    _require_aware(start)
    _require_aware(end)
    tz = _zone(timezone)
    # same-tzinfo subtraction ignores offsets, so do the arithmetic in UTC
    start = start.astimezone(dt_timezone.utc)
    end = end.astimezone(dt_timezone.utc)
    if end <= start:
        return []

    pieces: list[tuple[str, int]] = []
    day = start.astimezone(tz).date()
    last_day = end.astimezone(tz).date()
    consumed = 0
    while day < last_day:
        boundary = local_midnight(tz, day + timedelta(days=1))
        upto = math.floor((boundary - start).total_seconds())
        if upto > consumed:
            pieces.append((day.isoformat(), upto - consumed))
            consumed = upto
        day += timedelta(days=1)

    total = math.floor((end - start).total_seconds())
    if total > consumed:
        pieces.append((last_day.isoformat(), total - consumed))
    return pieces
