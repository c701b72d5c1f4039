from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


PERIODS: Tuple[str, ...] = ("1D", "1W", "1M", "3M", "YTD", "1Y", "MAX")
HOURLY_PERIODS: Tuple[str, ...] = ("1W", "1M")
DAILY_PERIODS: Tuple[str, ...] = ("3M", "YTD", "1Y", "MAX")

DAY_MS = 86_400_000


def normalize_period(period: str) -> str:
    value = str(period or "").upper()
    if value == "ALL":
        value = "MAX"
    if value not in PERIODS:
        raise ValueError(f"Unknown chart period: {period}")
    return value


@dataclass(frozen=True)
class DataPoint:
    time: int
    label: str
    price: float
    volume: Optional[float] = None


@dataclass(frozen=True)
class MovingAverageSeries:
    period: int
    values: List[Optional[float]]

    def value_at(self, index: int) -> Optional[float]:
        if 0 <= index < len(self.values):
            return self.values[index]
        return None


@dataclass(frozen=True)
class ZoomWindow:
    start_ms: float
    end_ms: float

    @property
    def span(self) -> float:
        return self.end_ms - self.start_ms

    @property
    def center(self) -> float:
        return (self.start_ms + self.end_ms) / 2.0


@dataclass(frozen=True)
class BreachEvent:
    index: int
    ma_periods: Tuple[int, ...]
    price: float
    ma_values: Dict[int, float] = field(default_factory=dict)


@dataclass
class BreachCluster:
    index: int
    price: float
    events: List[BreachEvent] = field(default_factory=list)

    @property
    def periods(self) -> set:
        out = set()
        for event in self.events:
            out.update(event.ma_periods)
        return out


@dataclass(frozen=True)
class CrossEvent:
    index: int
    kind: str  # "golden" | "death"
    ma100: float
    ma200: float
    price: float


@dataclass(frozen=True)
class MeasurePoint:
    time: int
    price: float

    def to_dict(self) -> Dict[str, float]:
        return {"time": int(self.time), "price": float(self.price)}

    @classmethod
    def from_dict(cls, raw) -> Optional["MeasurePoint"]:
        if not isinstance(raw, dict):
            return None
        try:
            return cls(time=int(raw["time"]), price=float(raw["price"]))
        except (KeyError, TypeError, ValueError):
            return None


@dataclass(frozen=True)
class MeasureDelta:
    start_time: int
    end_time: int
    start_price: float
    end_price: float
    change: float
    percent: Optional[float]
    days: int
