from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .models import BreachCluster, BreachEvent, CrossEvent


MA_COLORS: Dict[int, str] = {
    5: "#F59E0B",
    10: "#8B5CF6",
    50: "#3B82F6",
    100: "#EC4899",
    200: "#10B981",
}

CROSS_COLORS = {
    "golden": "#FFD700",
    "death": "#9CA3AF",
}

CROSS_EPSILON = 0.0001

# Highest rank first: a cluster touching MA200 always wins.
_RANK = (200, 100, 50)
_PILL_SIZE = {200: 18.0, 100: 15.0}
_GLOW = {200: 0.25, 100: 0.18}


def detect_breaches(
    prices: Sequence[float],
    ma_values: Mapping[int, Sequence[Optional[float]]],
    start: int = 0,
    end: Optional[int] = None,
) -> List[BreachEvent]:
    """
    Edge-triggered scan for price moving from at/above an MA to strictly below it.

    The first defined sample of each MA only seeds its state. Undefined samples are
    skipped without touching the state carried for that MA.
    """
    end = len(prices) if end is None else min(end, len(prices))
    was_above: Dict[int, Optional[bool]] = {period: None for period in ma_values}
    events: List[BreachEvent] = []
    for i in range(max(0, start), end):
        price = prices[i]
        breached: List[int] = []
        seen: Dict[int, float] = {}
        for period, values in ma_values.items():
            value = values[i] if i < len(values) else None
            if value is None:
                continue
            seen[period] = value
            is_above = price >= value
            if not is_above and was_above[period]:
                breached.append(period)
            was_above[period] = is_above
        if breached:
            events.append(BreachEvent(index=i, ma_periods=tuple(sorted(breached)), price=price, ma_values=seen))
    return events


def cluster_breaches(events: Sequence[BreachEvent], min_gap: int = 5) -> List[BreachCluster]:
    if not events:
        return []
    clusters: List[BreachCluster] = []
    current = BreachCluster(index=events[0].index, price=events[0].price, events=[events[0]])
    for event in events[1:]:
        if event.index - current.events[-1].index <= min_gap:
            current.events.append(event)
        else:
            clusters.append(current)
            current = BreachCluster(index=event.index, price=event.price, events=[event])
    clusters.append(current)
    return clusters


def detect_crosses(
    prices: Sequence[float],
    fast: Sequence[Optional[float]],
    slow: Sequence[Optional[float]],
    epsilon: float = CROSS_EPSILON,
    start: int = 0,
    end: Optional[int] = None,
) -> List[CrossEvent]:
    end = len(prices) if end is None else min(end, len(prices))
    events: List[CrossEvent] = []
    prev_diff: Optional[float] = None
    for i in range(max(0, start), end):
        ma_fast = fast[i] if i < len(fast) else None
        ma_slow = slow[i] if i < len(slow) else None
        if ma_fast is None or ma_slow is None:
            prev_diff = None
            continue
        diff = ma_fast - ma_slow
        if prev_diff is not None:
            if prev_diff <= epsilon and diff > epsilon:
                events.append(CrossEvent(i, "golden", ma_fast, ma_slow, prices[i]))
            elif prev_diff >= -epsilon and diff < -epsilon:
                events.append(CrossEvent(i, "death", ma_fast, ma_slow, prices[i]))
        prev_diff = diff
    return events


def dominant_period(cluster: BreachCluster) -> Optional[int]:
    periods = cluster.periods
    for period in _RANK:
        if period in periods:
            return period
    return min(periods) if periods else None


def cluster_color(cluster: BreachCluster) -> str:
    period = dominant_period(cluster)
    return MA_COLORS.get(period, "#F59E0B") if period is not None else "#F59E0B"


def cluster_pill_size(cluster: BreachCluster) -> float:
    return _PILL_SIZE.get(dominant_period(cluster), 13.0)


def cluster_glow_opacity(cluster: BreachCluster) -> float:
    return _GLOW.get(dominant_period(cluster), 0.12)


def signal_series(ma_values: Mapping[int, Sequence[Optional[float]]], allowed: Iterable[int]) -> Dict[int, Sequence[Optional[float]]]:
    allowed_set = set(int(p) for p in allowed)
    return {period: values for period, values in ma_values.items() if period in allowed_set}
