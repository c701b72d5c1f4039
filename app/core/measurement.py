from __future__ import annotations

from bisect import bisect_left
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import check_invariant
from .models import DAY_MS, DataPoint, MeasureDelta, MeasurePoint


def nearest_index(times: Sequence[float], t: float) -> int:
    """Index of the timestamp closest to `t`; ties go to the earlier sample. -1 when empty."""
    n = len(times)
    if n == 0:
        return -1
    pos = bisect_left(times, t)
    if pos <= 0:
        return 0
    if pos >= n:
        return n - 1
    before = times[pos - 1]
    after = times[pos]
    return pos - 1 if (t - before) <= (after - t) else pos


def compute_delta(start: MeasurePoint, end: MeasurePoint) -> MeasureDelta:
    change = end.price - start.price
    percent = (change / start.price) * 100.0 if start.price != 0 else None
    days = int(round(abs(end.time - start.time) / DAY_MS))
    return MeasureDelta(
        start_time=start.time,
        end_time=end.time,
        start_price=start.price,
        end_price=end.price,
        change=change,
        percent=percent,
        days=days,
    )


class MeasurementTool:
    """
    Up to three measure points A, B and C, filled one click at a time.

    Points are stored as time/price snapshots so they survive zoom and period
    changes. A fourth click clears everything.
    """

    def __init__(self, strict: bool = False, error_sink=None) -> None:
        self.strict = strict
        self.error_sink = error_sink
        self._points: List[MeasurePoint] = []

    @property
    def points(self) -> Tuple[MeasurePoint, ...]:
        return tuple(self._points)

    @property
    def state(self) -> str:
        return ("empty", "A", "AB", "ABC")[len(self._points)]

    @property
    def a(self) -> Optional[MeasurePoint]:
        return self._points[0] if len(self._points) > 0 else None

    @property
    def b(self) -> Optional[MeasurePoint]:
        return self._points[1] if len(self._points) > 1 else None

    @property
    def c(self) -> Optional[MeasurePoint]:
        return self._points[2] if len(self._points) > 2 else None

    def is_empty(self) -> bool:
        return not self._points

    def click(self, point: MeasurePoint) -> str:
        if len(self._points) >= 3:
            self._points = []
        else:
            self._points.append(point)
        return self.state

    def click_at(self, points: Sequence[DataPoint], time_ms: float) -> str:
        """Snap `time_ms` to the nearest sample and record it."""
        idx = nearest_index([p.time for p in points], time_ms)
        if idx < 0:
            return self.state
        sample = points[idx]
        return self.click(MeasurePoint(sample.time, sample.price))

    def set_pair(self, first: Optional[MeasurePoint], second: Optional[MeasurePoint]) -> None:
        """Two-finger touch: A and B follow the fingers directly."""
        self._points = [p for p in (first, second) if p is not None]

    def clear(self) -> None:
        self._points = []

    def resolve_index(self, points: Sequence[DataPoint], point: MeasurePoint) -> Optional[int]:
        idx = nearest_index([p.time for p in points], point.time)
        if idx < 0:
            return None
        if not check_invariant(0 <= idx < len(points), f"measure index {idx} outside 0..{len(points) - 1}", self.strict, self.error_sink):
            return None
        return idx

    def deltas(self) -> Dict[str, MeasureDelta]:
        """'ab' with the earlier of A/B as start; 'bc' and 'ac' once C is set."""
        out: Dict[str, MeasureDelta] = {}
        if len(self._points) < 2:
            return out
        first, second = sorted(self._points[:2], key=lambda p: p.time)
        out["ab"] = compute_delta(first, second)
        if len(self._points) == 3:
            third = self._points[2]
            out["bc"] = compute_delta(second, third)
            out["ac"] = compute_delta(first, third)
        return out

    def to_dict(self) -> Dict[str, Optional[Dict[str, float]]]:
        return {
            "a": self.a.to_dict() if self.a else None,
            "b": self.b.to_dict() if self.b else None,
            "c": self.c.to_dict() if self.c else None,
        }

    def load(self, raw) -> None:
        """Restore from `to_dict` output; C without A and B is discarded."""
        self._points = []
        if not isinstance(raw, dict):
            return
        for key in ("a", "b", "c"):
            point = MeasurePoint.from_dict(raw.get(key))
            if point is None:
                break
            self._points.append(point)
