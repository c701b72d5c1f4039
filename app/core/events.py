from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import report_error
from .feeds import _to_float
from .models import DataPoint
from .sessions import date_key, parse_timestamp


@dataclass(frozen=True)
class EarningsEvent:
    time: int
    eps_actual: Optional[float] = None
    eps_estimate: Optional[float] = None
    revenue: Optional[float] = None
    kind: ClassVar[str] = "earnings"
    glyph: ClassVar[str] = "E"
    shape: ClassVar[str] = "circle"

    @property
    def beat(self) -> Optional[bool]:
        if self.eps_actual is None or self.eps_estimate is None:
            return None
        return self.eps_actual >= self.eps_estimate

    @property
    def color(self) -> str:
        if self.beat is None:
            return "#A855F7"
        return "#00C805" if self.beat else "#FF3B30"


@dataclass(frozen=True)
class ExDividendEvent:
    time: int
    amount: float = 0.0
    kind: ClassVar[str] = "ex_dividend"
    glyph: ClassVar[str] = "D"
    shape: ClassVar[str] = "circle"
    color: ClassVar[str] = "#22C55E"


@dataclass(frozen=True)
class DividendCreditEvent:
    time: int
    amount: float = 0.0
    shares: Optional[float] = None
    kind: ClassVar[str] = "dividend_credit"
    glyph: ClassVar[str] = "$"
    shape: ClassVar[str] = "circle"
    color: ClassVar[str] = "#10B981"


@dataclass(frozen=True)
class TradeEvent:
    time: int
    side: str = "update"  # buy | sell | update
    shares: Optional[float] = None
    price: Optional[float] = None
    kind: ClassVar[str] = "trade"
    shape: ClassVar[str] = "triangle"

    @property
    def glyph(self) -> str:
        return {"buy": "B", "sell": "S"}.get(self.side, "U")

    @property
    def color(self) -> str:
        return {"buy": "#00C805", "sell": "#FF3B30"}.get(self.side, "#3B82F6")


@dataclass(frozen=True)
class AnalystEvent:
    time: int
    action: str = "target"  # upgrade | downgrade | init | reiterate | target
    firm: str = ""
    rating_from: str = ""
    rating_to: str = ""
    target_from: Optional[float] = None
    target_to: Optional[float] = None
    kind: ClassVar[str] = "analyst"
    glyph: ClassVar[str] = "A"
    shape: ClassVar[str] = "diamond"

    @property
    def color(self) -> str:
        if self.action == "upgrade":
            return "#00C805"
        if self.action == "downgrade":
            return "#FF3B30"
        if self.target_from is not None and self.target_to is not None and self.target_to != self.target_from:
            return "#00C805" if self.target_to > self.target_from else "#FF3B30"
        return "#9CA3AF"


@dataclass(frozen=True)
class AINoteEvent:
    time: int
    title: str = ""
    summary: str = ""
    sentiment: str = "neutral"
    kind: ClassVar[str] = "ai_note"
    glyph: ClassVar[str] = "i"
    shape: ClassVar[str] = "square"

    @property
    def color(self) -> str:
        return {"positive": "#00C805", "negative": "#FF3B30"}.get(self.sentiment, "#F59E0B")


ChartEvent = Union[EarningsEvent, ExDividendEvent, DividendCreditEvent, TradeEvent, AnalystEvent, AINoteEvent]


@dataclass(frozen=True)
class PlacedEvent:
    index: int
    event: ChartEvent

    @property
    def kind(self) -> str:
        return self.event.kind

    @property
    def color(self) -> str:
        return self.event.color

    @property
    def glyph(self) -> str:
        return self.event.glyph

    @property
    def shape(self) -> str:
        return self.event.shape


@dataclass
class EventCluster:
    index: int
    events: List[PlacedEvent] = field(default_factory=list)

    @property
    def kinds(self) -> List[str]:
        out: List[str] = []
        for placed in self.events:
            if placed.kind not in out:
                out.append(placed.kind)
        return out

    @property
    def primary(self) -> PlacedEvent:
        return self.events[0]


def date_index(points: Sequence[DataPoint], tz: str) -> Dict[date, int]:
    """First sample index per calendar date."""
    out: Dict[date, int] = {}
    for i, point in enumerate(points):
        out.setdefault(date_key(point.time, tz), i)
    return out


def find_index_for_date(by_date: Mapping[date, int], day: date, fallback_days: int = 3) -> Optional[int]:
    if day in by_date:
        return by_date[day]
    for offset in range(1, fallback_days + 1):
        for candidate in (day - timedelta(days=offset), day + timedelta(days=offset)):
            if candidate in by_date:
                return by_date[candidate]
    return None


def place_events(
    points: Sequence[DataPoint],
    events: Sequence[ChartEvent],
    tz: str,
    fallback_days: int = 3,
) -> Tuple[List[PlacedEvent], int]:
    """Map events onto chart indices; returns (placed sorted by index, dropped count)."""
    if not points:
        return [], len(events)
    by_date = date_index(points, tz)
    placed: List[PlacedEvent] = []
    dropped = 0
    for event in events:
        idx = find_index_for_date(by_date, date_key(event.time, tz), fallback_days)
        if idx is None:
            dropped += 1
            continue
        placed.append(PlacedEvent(idx, event))
    placed.sort(key=lambda p: (p.index, p.event.time))
    return placed, dropped


def cluster_events(placed: Sequence[PlacedEvent], px_per_sample: float, min_gap_px: float = 16.0) -> List[EventCluster]:
    """Greedy left-to-right merge of markers closer than `min_gap_px` on screen."""
    if not placed:
        return []
    ordered = sorted(placed, key=lambda p: p.index)
    clusters: List[EventCluster] = []
    current = EventCluster(index=ordered[0].index, events=[ordered[0]])
    for item in ordered[1:]:
        gap_px = (item.index - current.events[-1].index) * px_per_sample
        if gap_px < min_gap_px:
            current.events.append(item)
        else:
            clusters.append(current)
            current = EventCluster(index=item.index, events=[item])
    clusters.append(current)
    return clusters


def _earnings(row: Mapping[str, Any], ts: int) -> ChartEvent:
    return EarningsEvent(ts, _to_float(row.get("eps_actual")), _to_float(row.get("eps_estimate")), _to_float(row.get("revenue")))


def _dividend(row: Mapping[str, Any], ts: int) -> ChartEvent:
    return ExDividendEvent(ts, _to_float(row.get("amount")) or 0.0)


def _credit(row: Mapping[str, Any], ts: int) -> ChartEvent:
    return DividendCreditEvent(ts, _to_float(row.get("amount")) or 0.0, _to_float(row.get("shares")))


def _trade(row: Mapping[str, Any], ts: int) -> ChartEvent:
    side = str(row.get("side") or "update").lower()
    if side not in ("buy", "sell"):
        side = "update"
    return TradeEvent(ts, side, _to_float(row.get("shares")), _to_float(row.get("price")))


def _analyst(row: Mapping[str, Any], ts: int) -> ChartEvent:
    return AnalystEvent(
        ts,
        str(row.get("action") or "target").lower(),
        str(row.get("firm") or ""),
        str(row.get("rating_from") or ""),
        str(row.get("rating_to") or ""),
        _to_float(row.get("target_from")),
        _to_float(row.get("target_to")),
    )


def _ai_note(row: Mapping[str, Any], ts: int) -> ChartEvent:
    return AINoteEvent(ts, str(row.get("title") or ""), str(row.get("summary") or ""), str(row.get("sentiment") or "neutral").lower())


_DECODERS: Dict[str, Callable[[Mapping[str, Any], int], ChartEvent]] = {
    "earnings": _earnings,
    "dividends": _dividend,
    "dividend_credits": _credit,
    "trades": _trade,
    "analyst": _analyst,
    "ai": _ai_note,
}


def events_from_snapshot(raw: Mapping[str, list], tz: str, error_sink=None) -> List[ChartEvent]:
    out: List[ChartEvent] = []
    for key, rows in raw.items():
        decoder = _DECODERS.get(key)
        if decoder is None:
            report_error(error_sink, f"events: unknown event group '{key}'")
            continue
        dropped = 0
        for row in rows or []:
            if not isinstance(row, Mapping):
                dropped += 1
                continue
            ts = parse_timestamp(row.get("date", row.get("time")), tz)
            if ts is None:
                dropped += 1
                continue
            out.append(decoder(row, ts))
        if dropped:
            report_error(error_sink, f"events: dropped {dropped} undated '{key}' rows")
    out.sort(key=lambda e: e.time)
    return out
