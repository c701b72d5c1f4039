from __future__ import annotations

from bisect import bisect_left, bisect_right
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional, Sequence

from .config import ChartConfig
from .feeds import DailyCandles, IntradayCandle, LiveTick
from .models import DAILY_PERIODS, HOURLY_PERIODS, DataPoint, normalize_period
from .sessions import MONTH_NAMES, date_key, format_date_label, format_time_label


@dataclass(frozen=True)
class ChartGroup:
    start_idx: int  # inclusive
    end_idx: int  # inclusive
    label: str


def build_points(
    period: str,
    daily: Optional[DailyCandles],
    intraday: Sequence[IntradayCandle],
    hourly: Sequence[IntradayCandle],
    live: Sequence[LiveTick],
    previous_close: float,
    current_price: float,
    now_ms: int,
    config: ChartConfig = ChartConfig(),
) -> List[DataPoint]:
    """
    Fuse the available feeds into one time-ascending series for `period`.

    Fewer than two points means "no chart yet". 1W/1M never fall back to daily
    candles; an empty result keeps the host's loading state up.
    """
    period = normalize_period(period)
    tz = config.market_tz
    if period == "1D":
        if intraday:
            return _intraday_points(intraday, live, previous_close, current_price, now_ms, config)
        return _live_points(live, previous_close, current_price, now_ms, tz)
    if period in HOURLY_PERIODS:
        if not hourly:
            return []
        return hourly_points(hourly, now_ms, tz)
    if period in DAILY_PERIODS:
        return _daily_points(daily, now_ms, tz)
    return []


def _intraday_points(
    intraday: Sequence[IntradayCandle],
    live: Sequence[LiveTick],
    previous_close: float,
    current_price: float,
    now_ms: int,
    config: ChartConfig,
) -> List[DataPoint]:
    tz = config.market_tz
    pts = [
        DataPoint(c.time, _label(format_time_label, c.time, tz, c.raw_time), c.close, c.volume)
        for c in intraday
    ]
    # Flat lead-in from the previous close so the line starts at the open.
    pts.insert(0, DataPoint(pts[0].time - 1000, pts[0].label, previous_close, 0.0))

    last = pts[-1]
    newer = [t for t in live if t.time > last.time]
    if newer:
        target_time, target_price = newer[0].time, newer[0].price
    else:
        target_time, target_price = now_ms, current_price
    gap = target_time - last.time
    if gap > config.bridge_gap_ms:
        step = config.bridge_step_ms
        t = last.time + step
        while t < target_time:
            ratio = (t - last.time) / gap
            price = round(last.price + (target_price - last.price) * ratio, 2)
            pts.append(DataPoint(t, _label(format_time_label, t, tz), price))
            t += step
    for tick in newer:
        pts.append(DataPoint(tick.time, _label(format_time_label, tick.time, tz), tick.price))
    if now_ms - pts[-1].time > config.extend_to_now_ms:
        pts.append(DataPoint(now_ms, _label(format_time_label, now_ms, tz), current_price))
    return pts


def _live_points(live: Sequence[LiveTick], previous_close: float, current_price: float, now_ms: int, tz: str) -> List[DataPoint]:
    if len(live) <= 1:
        return [
            DataPoint(now_ms - 5 * 60_000, "", previous_close),
            DataPoint(now_ms, "Now", current_price),
        ]
    return [DataPoint(t.time, _label(format_time_label, t.time, tz), t.price) for t in live]


def hourly_points(hourly: Sequence[IntradayCandle], now_ms: int, tz: str) -> List[DataPoint]:
    # Spread each day's volume evenly; extended-hours candles often report zero.
    totals: "OrderedDict" = OrderedDict()
    for c in hourly:
        key = date_key(c.time, tz)
        total, count = totals.get(key, (0.0, 0))
        totals[key] = (total + c.volume, count + 1)
    out = []
    for c in hourly:
        total, count = totals[date_key(c.time, tz)]
        label = _label(lambda ms, zone: f"{format_date_label(ms, zone, now_ms)} {format_time_label(ms, zone)}", c.time, tz, c.raw_time)
        out.append(DataPoint(c.time, label, c.close, round(total / max(count, 1))))
    return out


def _daily_points(daily: Optional[DailyCandles], now_ms: int, tz: str) -> List[DataPoint]:
    if daily is None or len(daily) == 0:
        return []
    return [
        DataPoint(ts, _label(lambda ms, zone: format_date_label(ms, zone, now_ms), ts, tz, raw_date), close, volume)
        for ts, raw_date, close, volume in daily.rows(tz)
    ]


def splice_resolution(points: Sequence[DataPoint], finer: Sequence[DataPoint], start_ms: float, end_ms: float) -> List[DataPoint]:
    """Replace the samples inside [start_ms, end_ms] with finer-resolution samples."""
    inside = sorted((p for p in finer if start_ms <= p.time <= end_ms), key=lambda p: p.time)
    if not inside:
        return list(points)
    times = [p.time for p in points]
    lo = bisect_left(times, inside[0].time)
    hi = bisect_right(times, inside[-1].time)
    merged = list(points[:lo])
    for p in inside:
        if merged and merged[-1].time >= p.time:
            continue
        merged.append(p)
    for p in points[hi:]:
        if merged and merged[-1].time >= p.time:
            continue
        merged.append(p)
    return merged


def compute_chart_groups(points: Sequence[DataPoint], period: str, tz: str) -> List[ChartGroup]:
    """Alternating background bands: day, week, month, quarter or year per period."""
    period = normalize_period(period)
    if period == "1D" or len(points) < 2:
        return []
    groups: List[ChartGroup] = []
    current_key = None
    current_label = ""
    start_idx = 0
    for i, point in enumerate(points):
        day = date_key(point.time, tz)
        if period == "1W":
            key, label = day, ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")[day.weekday()]
        elif period == "1M":
            monday = day - timedelta(days=day.weekday())
            key = monday
            label = f"{MONTH_NAMES[monday.month - 1]} {monday.day}"
        elif period in ("3M", "YTD"):
            key = (day.year, day.month)
            label = MONTH_NAMES[day.month - 1]
        elif period == "1Y":
            quarter = (day.month - 1) // 3 + 1
            key, label = (day.year, quarter), f"Q{quarter}"
        else:
            key, label = day.year, str(day.year)
        if key != current_key:
            if i > 0:
                groups.append(ChartGroup(start_idx, i - 1, current_label))
            current_key = key
            current_label = label
            start_idx = i
    groups.append(ChartGroup(start_idx, len(points) - 1, current_label))
    return groups


def _label(fmt: Callable[[float, str], str], ms: float, tz: str, raw: str = "") -> str:
    try:
        return fmt(ms, tz)
    except (OverflowError, OSError, ValueError):
        return str(raw)
