from __future__ import annotations

from dataclasses import dataclass, field
import json
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import report_error
from .sessions import parse_timestamp


@dataclass
class DailyCandles:
    dates: List[str] = field(default_factory=list)
    closes: List[float] = field(default_factory=list)
    volumes: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.closes)

    def rows(self, tz_name: str) -> List[Tuple[int, str, float, float]]:
        """(time, raw date, close, volume) sorted by time, keeping the last row per timestamp."""
        volumes = list(self.volumes) + [0.0] * max(0, len(self.closes) - len(self.volumes))
        out: List[Tuple[int, str, float, float]] = []
        for raw_date, close, volume in zip(self.dates, self.closes, volumes):
            ts = parse_timestamp(raw_date, tz_name)
            if ts is None:
                continue
            out.append((ts, raw_date, close, volume))
        out.sort(key=lambda row: row[0])
        deduped: List[Tuple[int, str, float, float]] = []
        for row in out:
            if deduped and deduped[-1][0] == row[0]:
                deduped[-1] = row
            else:
                deduped.append(row)
        return deduped

    @classmethod
    def from_dict(cls, raw: Any, error_sink=None) -> Optional["DailyCandles"]:
        if not isinstance(raw, dict):
            return None
        dates = list(raw.get("dates") or [])
        closes = list(raw.get("closes") or [])
        volumes = list(raw.get("volumes") or [])
        out = cls()
        dropped = 0
        for i in range(min(len(dates), len(closes))):
            close = _to_float(closes[i])
            if close is None:
                dropped += 1
                continue
            out.dates.append(str(dates[i]))
            out.closes.append(close)
            out.volumes.append(_to_float(volumes[i]) or 0.0 if i < len(volumes) else 0.0)
        if dropped:
            report_error(error_sink, f"daily candles: dropped {dropped} rows with invalid close")
        return out


@dataclass(frozen=True)
class IntradayCandle:
    time: int
    close: float
    volume: float = 0.0
    raw_time: str = ""


@dataclass(frozen=True)
class LiveTick:
    time: int
    price: float


@dataclass
class FeedSnapshot:
    symbol: str = ""
    daily: Optional[DailyCandles] = None
    intraday: List[IntradayCandle] = field(default_factory=list)
    hourly: List[IntradayCandle] = field(default_factory=list)
    live: List[LiveTick] = field(default_factory=list)
    previous_close: float = 0.0
    current_price: float = 0.0
    now_ms: Optional[int] = None
    events: Dict[str, list] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any, tz_name: str, error_sink=None) -> "FeedSnapshot":
        if not isinstance(raw, dict):
            raise ValueError(f"Feed snapshot must be a mapping, got {type(raw).__name__}")
        events = raw.get("events") or {}
        return cls(
            symbol=str(raw.get("symbol") or ""),
            daily=DailyCandles.from_dict(raw.get("daily"), error_sink),
            intraday=parse_candles(raw.get("intraday") or [], tz_name, error_sink, "intraday"),
            hourly=parse_candles(raw.get("hourly") or [], tz_name, error_sink, "hourly"),
            live=parse_ticks(raw.get("live") or [], tz_name, error_sink),
            previous_close=_to_float(raw.get("previous_close")) or 0.0,
            current_price=_to_float(raw.get("current_price")) or 0.0,
            now_ms=parse_timestamp(raw.get("now"), tz_name),
            events={str(k): list(v or []) for k, v in events.items()} if isinstance(events, dict) else {},
        )


def parse_candles(rows: Iterable[Any], tz_name: str, error_sink=None, name: str = "candles") -> List[IntradayCandle]:
    out: List[IntradayCandle] = []
    dropped = 0
    for row in rows:
        if not isinstance(row, dict):
            dropped += 1
            continue
        ts = parse_timestamp(row.get("time"), tz_name)
        close = _to_float(row.get("close"))
        if ts is None or close is None:
            dropped += 1
            continue
        out.append(IntradayCandle(time=ts, close=close, volume=_to_float(row.get("volume")) or 0.0, raw_time=str(row.get("time"))))
    if dropped:
        report_error(error_sink, f"{name}: dropped {dropped} malformed rows")
    out.sort(key=lambda c: c.time)
    return _dedupe(out)


def parse_ticks(rows: Iterable[Any], tz_name: str, error_sink=None) -> List[LiveTick]:
    out: List[LiveTick] = []
    dropped = 0
    for row in rows:
        if not isinstance(row, dict):
            dropped += 1
            continue
        ts = parse_timestamp(row.get("time"), tz_name)
        price = _to_float(row.get("price"))
        if ts is None or price is None:
            dropped += 1
            continue
        out.append(LiveTick(time=ts, price=price))
    if dropped:
        report_error(error_sink, f"live ticks: dropped {dropped} malformed rows")
    out.sort(key=lambda t: t.time)
    return _dedupe(out)


def load_snapshot(path: str, tz_name: str, error_sink=None) -> FeedSnapshot:
    with open(path, "r", encoding="utf-8") as handle:
        return FeedSnapshot.from_dict(json.load(handle), tz_name, error_sink)


def _dedupe(rows: list) -> list:
    # Keep the last row per timestamp; later rows are the fresher revision.
    out: list = []
    for row in rows:
        if out and out[-1].time == row.time:
            out[-1] = row
        else:
            out.append(row)
    return out


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number
