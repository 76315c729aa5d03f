"""Utilities for converting between UTC instants and routine-local wall clock time.

Instants are persisted as naive UTC ``datetime`` values; calendar days and
times of day are always interpreted in the routine's IANA timezone.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import settings

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def utc_now() -> datetime:
    """Return the current UTC time as a naive ``datetime`` (storage format)."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_storage(dt: datetime) -> datetime:
    """Normalise ``dt`` to naive UTC. Naive input is assumed to already be UTC."""

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def get_zone(name: Optional[str]) -> ZoneInfo:
    """Return the ``ZoneInfo`` for ``name`` falling back to the configured default."""

    try:
        return ZoneInfo(name or settings.default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(settings.default_timezone)


def local_date(instant: datetime, tz_name: Optional[str]) -> date:
    """Calendar day of ``instant`` (naive UTC or aware) in ``tz_name``."""

    aware = instant if instant.tzinfo else instant.replace(tzinfo=timezone.utc)
    return aware.astimezone(get_zone(tz_name)).date()


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def localize(day: date, time_of_day: time, tz_name: Optional[str]) -> datetime:
    """Attach ``tz_name`` to the wall clock ``day`` + ``time_of_day``.

    Wall times inside a spring-forward gap are moved forward by the size of
    the gap; ambiguous fall-back times resolve to the first occurrence.
    """

    zone = get_zone(tz_name)
    naive = datetime.combine(day, time_of_day.replace(tzinfo=None))
    candidate = naive.replace(tzinfo=zone, fold=0)
    roundtrip = candidate.astimezone(timezone.utc).astimezone(zone)
    if roundtrip.replace(tzinfo=None) != naive:
        # 존재하지 않는 시각 (서머타임 시작 구간)
        gap = candidate.replace(fold=1).utcoffset() - candidate.utcoffset()
        if gap < timedelta(0):
            gap = -gap
        candidate = (naive + gap).replace(tzinfo=zone, fold=0)
    return candidate


def local_day_bounds(day: date, tz_name: Optional[str]) -> tuple[datetime, datetime]:
    """Return the naive UTC ``[start, end)`` range covering local ``day``."""

    start = localize(day, time(0, 0), tz_name)
    end = localize(day + timedelta(days=1), time(0, 0), tz_name)
    return to_storage(start), to_storage(end)


__all__ = [
    "WEEKDAY_NAMES",
    "utc_now",
    "to_storage",
    "get_zone",
    "local_date",
    "weekday_name",
    "localize",
    "local_day_bounds",
]
