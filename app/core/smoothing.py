from __future__ import annotations

from bisect import bisect_right
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from .config import ChartConfig
from .feeds import DailyCandles
from .models import HOURLY_PERIODS, DataPoint, MovingAverageSeries, normalize_period
from .sessions import date_key


def sma(values: Iterable[float], length: int) -> np.ndarray:
    arr = np.asarray(list(values) if not isinstance(values, np.ndarray) else values, dtype=np.float64)
    n = arr.size
    out = np.full(n, np.nan, dtype=np.float64)
    if length <= 0 or n < length:
        return out
    csum = np.cumsum(arr, dtype=np.float64)
    csum[length:] = csum[length:] - csum[:-length]
    out[length - 1:] = csum[length - 1:] / float(length)
    return out


def to_optional(values: np.ndarray) -> List[Optional[float]]:
    return [None if np.isnan(v) else float(v) for v in values]


def daily_sma_by_date(daily: Optional[DailyCandles], length: int, tz: str) -> Dict[date, Optional[float]]:
    if daily is None or len(daily) == 0:
        return {}
    rows = daily.rows(tz)
    days = [date_key(ts, tz) for ts, _, _, _ in rows]
    closes = [close for _, _, close, _ in rows]
    values = to_optional(sma(closes, length))
    return dict(zip(days, values))


def latest_completed_sma(by_date: Dict[date, Optional[float]], session_day: date) -> Optional[float]:
    """SMA of the last daily close strictly before `session_day`."""
    days = sorted(d for d in by_date if d < session_day)
    if not days:
        return None
    return by_date[days[-1]]


def interpolate_daily_to_intraday(points: Sequence[DataPoint], by_date: Dict[date, Optional[float]], tz: str) -> List[Optional[float]]:
    """
    Spread daily SMA values over intraday samples so the overlay never steps.

    The first half of each day blends from the midpoint with the previous day toward
    the day's value, the second half from the day's value toward the midpoint with
    the next day. A day holding a single sample takes the daily value exactly.
    """
    out: List[Optional[float]] = [None] * len(points)
    if not points or not by_date:
        return out
    days = sorted(by_date)
    i = 0
    while i < len(points):
        day = date_key(points[i].time, tz)
        j = i
        while j + 1 < len(points) and date_key(points[j + 1].time, tz) == day:
            j += 1
        pos = bisect_right(days, day) - 1
        cur = by_date[days[pos]] if pos >= 0 else None
        if cur is not None:
            prev_val = by_date[days[pos - 1]] if pos - 1 >= 0 else None
            next_val = by_date[days[pos + 1]] if pos + 1 < len(days) and days[pos] == day else None
            prev_val = cur if prev_val is None else prev_val
            next_val = cur if next_val is None else next_val
            count = j - i + 1
            for k in range(count):
                if count == 1:
                    out[i + k] = cur
                    continue
                frac = k / (count - 1)
                if frac < 0.5:
                    t = frac + 0.5
                    out[i + k] = prev_val + (cur - prev_val) * t
                else:
                    t = frac - 0.5
                    out[i + k] = cur + (next_val - cur) * t
        i = j + 1
    return out


def compute_moving_averages(
    period: str,
    points: Sequence[DataPoint],
    daily: Optional[DailyCandles],
    enabled: Iterable[int],
    config: ChartConfig = ChartConfig(),
) -> Dict[int, MovingAverageSeries]:
    """
    One index-aligned series per enabled window length.

    Short windows run over the fused samples themselves. Long windows always come from
    daily history: flat at the last completed value on 1D, interpolated per sample
    on hourly views, taken per date on daily views.
    """
    period = normalize_period(period)
    tz = config.market_tz
    out: Dict[int, MovingAverageSeries] = {}
    if not points:
        return out
    prices = [p.price for p in points]
    for length in sorted(set(int(v) for v in enabled)):
        if length <= 0:
            continue
        if length <= config.short_ma_max and period in ("1D",) + HOURLY_PERIODS:
            values = to_optional(sma(prices, length))
        elif period == "1D":
            flat = latest_completed_sma(daily_sma_by_date(daily, length, tz), date_key(points[-1].time, tz))
            values = [flat] * len(points)
        else:
            by_date = daily_sma_by_date(daily, length, tz)
            if period in HOURLY_PERIODS or _has_intraday_samples(points, tz):
                values = interpolate_daily_to_intraday(points, by_date, tz)
            else:
                values = [by_date.get(date_key(p.time, tz)) for p in points]
        out[length] = MovingAverageSeries(length, values)
    return out


def _has_intraday_samples(points: Sequence[DataPoint], tz: str) -> bool:
    seen = set()
    for p in points:
        key = date_key(p.time, tz)
        if key in seen:
            return True
        seen.add(key)
    return False
