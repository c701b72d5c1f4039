from __future__ import annotations

import calendar
import math
from datetime import date, datetime, time as dt_time, timedelta, timezone
from functools import lru_cache
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo


# Local market hours as (hour, minute).
PRE_OPEN = (4, 0)
REGULAR_OPEN = (9, 30)
REGULAR_CLOSE = (16, 0)
POST_CLOSE = (20, 0)

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

# 9999-12-31T23:59:59Z, the last instant datetime can represent.
MAX_TIMESTAMP_MS = 253_402_300_799_000


@lru_cache(maxsize=8)
def zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def to_local(ms: float, tz_name: str) -> datetime:
    return datetime.fromtimestamp(float(ms) / 1000.0, tz=zone(tz_name))


def to_ms(moment: datetime) -> int:
    return int(round(moment.timestamp() * 1000))


def date_key(ms: float, tz_name: str) -> date:
    return to_local(ms, tz_name).date()


def local_ms(day: date, hour: int, minute: int, tz_name: str) -> int:
    return to_ms(datetime.combine(day, dt_time(hour, minute), tzinfo=zone(tz_name)))


def market_session(ms: float, tz_name: str) -> str:
    local = to_local(ms, tz_name)
    if local.weekday() >= 5:
        return "CLOSED"
    minutes = local.hour * 60 + local.minute
    if PRE_OPEN[0] * 60 + PRE_OPEN[1] <= minutes < REGULAR_OPEN[0] * 60 + REGULAR_OPEN[1]:
        return "PRE"
    if REGULAR_OPEN[0] * 60 + REGULAR_OPEN[1] <= minutes < REGULAR_CLOSE[0] * 60 + REGULAR_CLOSE[1]:
        return "REG"
    if REGULAR_CLOSE[0] * 60 + REGULAR_CLOSE[1] <= minutes < POST_CLOSE[0] * 60 + POST_CLOSE[1]:
        return "POST"
    return "CLOSED"


def day_domain(ms: float, tz_name: str) -> Tuple[int, int]:
    """Local midnight-to-midnight range containing `ms` (23h/25h on DST switch days)."""
    day = date_key(ms, tz_name)
    start = local_ms(day, 0, 0, tz_name)
    end = local_ms(day + timedelta(days=1), 0, 0, tz_name)
    return start, end


def session_boundaries(ms: float, tz_name: str) -> List[Tuple[str, int]]:
    day = date_key(ms, tz_name)
    return [
        ("pre", local_ms(day, *PRE_OPEN, tz_name)),
        ("open", local_ms(day, *REGULAR_OPEN, tz_name)),
        ("close", local_ms(day, *REGULAR_CLOSE, tz_name)),
        ("post", local_ms(day, *POST_CLOSE, tz_name)),
    ]


def format_time_label(ms: float, tz_name: str) -> str:
    local = to_local(ms, tz_name)
    return f"{local.hour:02d}:{local.minute:02d}"


def format_date_label(ms: float, tz_name: str, now_ms: Optional[float] = None) -> str:
    local = to_local(ms, tz_name)
    text = f"{MONTH_NAMES[local.month - 1]} {local.day}"
    if now_ms is not None and to_local(now_ms, tz_name).year != local.year:
        text = f"{text}, {local.year}"
    return text


def parse_timestamp(value, tz_name: str) -> Optional[int]:
    """
    Parse a feed timestamp into epoch milliseconds.

    Numbers are epoch seconds or milliseconds. Date-only strings resolve to local noon
    so western timezones don't shift them onto the previous calendar day.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        if not math.isfinite(number):
            return None
        ms = number if abs(number) >= 1e11 else number * 1000
        if abs(ms) > MAX_TIMESTAMP_MS:
            return None
        return int(ms)
    text = str(value).strip()
    if not text:
        return None
    if len(text) == 10 and text[4] == "-" and text[7] == "-":
        try:
            day = date.fromisoformat(text)
        except ValueError:
            return None
        return local_ms(day, 12, 0, tz_name)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            return parse_timestamp(float(text), tz_name)
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return to_ms(parsed)


def clean_boundaries(ms: float, tz_name: str) -> List[int]:
    """Year, quarter, month and Monday starts around `ms`, each pinned to local noon."""
    local = to_local(ms, tz_name)
    year, month = local.year, local.month
    quarter = ((month - 1) // 3) * 3 + 1
    days = [
        date(year, 1, 1),
        date(year + 1, 1, 1),
        date(year, quarter, 1),
        shift_months(date(year, quarter, 1), 3),
        date(year, month, 1),
        shift_months(date(year, month, 1), 1),
        local.date() - timedelta(days=local.weekday()),
    ]
    return [local_ms(day, 12, 0, tz_name) for day in days]


def snap_to_clean_boundary(ms: float, visible_range: float, tz_name: str, threshold: float = 0.03) -> float:
    best = float(ms)
    best_dist = visible_range * threshold
    for target in clean_boundaries(ms, tz_name):
        dist = abs(target - ms)
        if dist < best_dist:
            best_dist = dist
            best = float(target)
    return best


def shift_months(day: date, months: int) -> date:
    """Same day-of-month `months` later, clamped to the end of shorter months."""
    index = day.year * 12 + (day.month - 1) + months
    year, month = index // 12, index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))
