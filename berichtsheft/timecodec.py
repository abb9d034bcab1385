"""
Packed date/time conversions.

WebUntis encodes dates as YYYYMMDD integers and times of day as HHMM
integers (e.g. 20260219 and 815 for 08:15). Everything else in this
package converts through the helpers below.

Validation is deliberately loose: month must be 1..12 and day 1..31, but
the calendar itself is not checked (20260230 is accepted by
packed_datetime_to_iso). weekday_name rolls such days over into the next
month the way the web frontend did; packed_to_date rejects them.
"""

from __future__ import annotations

import re
from datetime import date, timedelta


WEEKDAYS = ["Montag", "Dienstag", "Mittwoch", "Donnerstag", "Freitag", "Samstag", "Sonntag"]

_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):00$")


def _split_date(packed: int) -> tuple[int, int, int]:
    year = packed // 10000
    month = (packed % 10000) // 100
    day = packed % 100
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month in packed date: {packed!r}")
    if not 1 <= day <= 31:
        raise ValueError(f"Invalid day in packed date: {packed!r}")
    return year, month, day


def _split_time(packed: int) -> tuple[int, int]:
    return packed // 100, packed % 100


def packed_datetime_to_iso(packed_date: int, packed_time: int) -> str:
    """
    Convert (YYYYMMDD, HHMM) to 'YYYY-MM-DDTHH:MM:00'.
    Raises ValueError for a month outside 1..12 or a day outside 1..31.
    """
    year, month, day = _split_date(packed_date)
    hour, minute = _split_time(packed_time)
    return f"{year:04d}-{month:02d}-{day:02d}T{hour:02d}:{minute:02d}:00"


def iso_to_packed(iso: str) -> tuple[int, int]:
    """
    Inverse of packed_datetime_to_iso.
    """
    m = _ISO_RE.match(iso.strip())
    if not m:
        raise ValueError(f"Invalid timestamp format: {iso!r}")
    year, month, day, hour, minute = (int(x) for x in m.groups())
    packed_date = year * 10000 + month * 100 + day
    _split_date(packed_date)
    return packed_date, hour * 100 + minute


def minutes_between(start: int, end: int) -> int:
    """
    Minutes from HHMM `start` to HHMM `end`. Negative if end < start;
    callers decide whether that is a data error.
    """
    sh, sm = _split_time(start)
    eh, em = _split_time(end)
    return (eh * 60 + em) - (sh * 60 + sm)


def packed_to_date(packed: int) -> date:
    year, month, day = _split_date(packed)
    return date(year, month, day)


def date_to_packed(d: date) -> int:
    return d.year * 10000 + d.month * 100 + d.day


def weekday_name(packed: int) -> str:
    """
    German weekday name ("Montag" .. "Sonntag") for a packed date.
    Days past the end of the month count on into the next one
    (20260230 is 2026-03-02, a Monday).
    """
    year, month, day = _split_date(packed)
    d = date(year, month, 1) + timedelta(days=day - 1)
    return WEEKDAYS[d.weekday()]


def week_start(d: date) -> date:
    """
    Monday of the week containing `d`.
    """
    return d - timedelta(days=d.weekday())
