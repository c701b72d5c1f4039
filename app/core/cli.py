from __future__ import annotations

import argparse
from datetime import timedelta
import os
import sys
from typing import Optional

import numpy as np

from core.chart_engine import ChartEngine, format_delta
from core.config import load_config
from core.feeds import DailyCandles, FeedSnapshot, load_snapshot
from core.models import DAY_MS, PERIODS, ZoomWindow
from core.preferences import ChartPreferences
from core.scene import render_svg
from core.sessions import date_key, local_ms, parse_timestamp


class _PrintSink:
    def append_error(self, message: str) -> None:
        print(f"error: {message}", file=sys.stderr)

    def append(self, message: str) -> None:
        print(f"debug: {message}", file=sys.stderr)


def synthetic_snapshot(n: int, end_ms: int, tz: str) -> FeedSnapshot:
    """Deterministic daily closes: slow trend plus two sine waves, no randomness."""
    i = np.arange(n, dtype=np.float64)
    close = 100.0 + i * 0.05 + 8.0 * np.sin(i / 17.0) + 2.0 * np.sin(i / 3.0)
    volume = 1_000_000.0 + 250_000.0 * np.cos(i / 5.0)
    last_day = date_key(end_ms, tz)
    dates = []
    day = last_day
    while len(dates) < n:
        if day.weekday() < 5:
            dates.append(day.isoformat())
        day -= timedelta(days=1)
    dates.reverse()
    daily = DailyCandles(dates=dates, closes=[round(float(c), 2) for c in close], volumes=[float(v) for v in volume])
    return FeedSnapshot(
        symbol="SYNTH",
        daily=daily,
        previous_close=daily.closes[-2],
        current_price=daily.closes[-1],
        now_ms=local_ms(last_day, 16, 0, tz),
    )


def _parse_ms(value: Optional[str], tz: str) -> Optional[int]:
    if value is None:
        return None
    ts = parse_timestamp(value.strip(), tz)
    if ts is None:
        raise SystemExit(f"Unparseable timestamp: {value}")
    return ts


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Headless chart renderer (no UI).")
    ap.add_argument("--snapshot", help="Feed snapshot JSON handed over by the data layer")
    ap.add_argument("--synthetic", type=int, default=0, help="Generate N synthetic daily closes instead of reading a snapshot")
    ap.add_argument("--period", default="1Y", choices=list(PERIODS) + ["ALL"])
    ap.add_argument("--config", help="JSON file overriding chart config keys")
    ap.add_argument("--mas", default="50,200", help="Comma separated MA windows to draw")
    ap.add_argument("--signals", action="store_true", help="Detect breaches and golden/death crosses")
    ap.add_argument("--no-events", action="store_true")
    ap.add_argument("--volume", action="store_true")
    ap.add_argument("--zoom-start", help="Zoom window start (epoch ms or ISO date)")
    ap.add_argument("--zoom-end", help="Zoom window end (epoch ms or ISO date)")
    ap.add_argument("--measure", action="append", default=[], help="Measure point date (repeat up to three times)")
    ap.add_argument("--svg", help="Write the rendered scene to this SVG file")
    args = ap.parse_args(argv)

    config = load_config(os.path.abspath(args.config)) if args.config else load_config("")
    tz = config.market_tz
    sink = _PrintSink()

    if int(args.synthetic or 0) > 0:
        if int(args.synthetic) < 2:
            raise SystemExit("--synthetic must be >= 2")
        snapshot = synthetic_snapshot(int(args.synthetic), int(parse_timestamp("2024-06-28", tz) or 0), tz)
    elif args.snapshot:
        snapshot = load_snapshot(os.path.abspath(args.snapshot), tz, sink)
    else:
        raise SystemExit("Pass --snapshot PATH or --synthetic N")

    mas = tuple(sorted({int(v) for v in args.mas.split(",") if v.strip()}))
    prefs = ChartPreferences(
        enabled_mas=mas,
        signals_enabled=bool(args.signals),
        events_enabled=not bool(args.no_events),
        volume_enabled=bool(args.volume),
        last_period=args.period,
    )
    requests = []
    engine = ChartEngine(
        snapshot.symbol,
        config=config,
        preferences=prefs,
        error_sink=sink,
        on_resolution_request=lambda level, start, end: requests.append((level, start, end)),
    )
    engine.set_snapshot(snapshot)
    engine.set_period(prefs.last_period, animate=False)

    start = _parse_ms(args.zoom_start, tz)
    end = _parse_ms(args.zoom_end, tz)
    if start is not None or end is not None:
        lo, hi = engine.viewport.extent_ms()
        window = ZoomWindow(float(start if start is not None else lo), float(end if end is not None else hi))
        engine.viewport.zoom_to(window, animate=False)

    for raw in args.measure[:3]:
        ts = _parse_ms(raw, tz)
        engine.measurement.click_at(engine.points, ts)

    points = engine.points
    first, last = engine.visible_range()
    print(f"symbol={engine.symbol or '-'} period={engine.period} points={len(points)} visible={first}..{last}")
    if len(points) >= 2:
        span_days = (points[last].time - points[first].time) / DAY_MS
        print(f"visible_days={span_days:.1f} px_per_sample={engine.viewport.px_per_sample():.2f}")
    for cluster in engine.breach_clusters():
        periods = ",".join(str(p) for p in sorted(cluster.periods))
        print(f"breach index={cluster.index} price={cluster.price:.2f} periods={periods} events={len(cluster.events)}")
    for cross in engine.crosses():
        print(f"cross index={cross.index} kind={cross.kind} price={cross.price:.2f}")
    for cluster in engine.event_clusters():
        print(f"events index={cluster.index} kinds={','.join(cluster.kinds)} count={len(cluster.events)}")
    for key, delta in engine.measurement.deltas().items():
        print(f"measure {key} {format_delta(delta)}")
    for level, lo, hi in requests:
        print(f"resolution_request level={level} start={int(lo)} end={int(hi)}")

    if args.svg:
        with open(args.svg, "w", encoding="utf-8") as handle:
            handle.write(render_svg(engine.build_scene()))
        print(f"wrote {args.svg}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
