from __future__ import annotations

from dataclasses import replace
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import ChartConfig
from .curve import PathCommand, monotone_path
from .errors import report_debug, report_error
from .events import ChartEvent, EventCluster, PlacedEvent, cluster_events, events_from_snapshot, place_events
from .feeds import FeedSnapshot, IntradayCandle
from .measurement import MeasurementTool
from .models import BreachCluster, CrossEvent, DataPoint, MeasureDelta, MeasurePoint, MovingAverageSeries, normalize_period
from .point_builder import ChartGroup, build_points, compute_chart_groups, hourly_points, splice_resolution
from .preferences import ChartPreferences
from .scene import CircleShape, ClipRegion, LineShape, PathShape, RectShape, Scene, TextShape
from .sessions import date_key, session_boundaries
from .signals import (
    CROSS_COLORS,
    MA_COLORS,
    cluster_breaches,
    cluster_color,
    cluster_glow_opacity,
    cluster_pill_size,
    detect_breaches,
    detect_crosses,
    signal_series,
)
from .smoothing import compute_moving_averages
from .viewport import InputMode, PriceScale, ViewportController, natural_level


UP_COLOR = "#00C805"
DOWN_COLOR = "#FF3B30"
GRID_COLOR = "#374151"
MEASURE_COLORS = {"A": "#60A5FA", "B": "#F472B6", "C": "#FBBF24"}

HoverCallback = Callable[[Optional[float], str, Optional[float]], None]


def format_delta(delta: MeasureDelta) -> str:
    sign = "+" if delta.change >= 0 else "-"
    text = f"{sign}${abs(delta.change):.2f}"
    if delta.percent is not None:
        text += f" ({sign}{abs(delta.percent):.2f}%)"
    return f"{text}  {delta.days}d"


class ChartEngine:
    """
    One interactive chart for one instrument.

    Everything derived (points, averages, signals, markers, the scene) is recomputed
    from the snapshot, period, preferences and viewport; only the measure points
    carry state across renders.
    """

    def __init__(
        self,
        symbol: str = "",
        config: ChartConfig = ChartConfig(),
        preferences: Optional[ChartPreferences] = None,
        error_sink=None,
        debug_sink=None,
        on_hover: Optional[HoverCallback] = None,
        on_resolution_request: Optional[Callable[[str, float, float], None]] = None,
        on_period_change: Optional[Callable[[str], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.symbol = symbol.upper()
        self.config = config
        self.preferences = preferences or ChartPreferences()
        self.error_sink = error_sink
        self.debug_sink = debug_sink
        self.on_hover = on_hover
        self.on_resolution_request = on_resolution_request
        self.on_period_change = on_period_change
        self.viewport = ViewportController(config, self._forward_resolution_request, error_sink, clock)
        self.price_scale = PriceScale(config)
        self.measurement = MeasurementTool(config.strict_invariants, error_sink)
        self.snapshot = FeedSnapshot(symbol=self.symbol)
        self.period = normalize_period(self.preferences.last_period)
        self.events: List[ChartEvent] = []
        self.hover_index: Optional[int] = None
        self._base: List[DataPoint] = []
        self._finer: Optional[Tuple[List[DataPoint], float, float]] = None
        self._points: List[DataPoint] = []
        self._ma: Optional[Dict[int, MovingAverageSeries]] = None
        self._placed: Optional[List[PlacedEvent]] = None
        self._groups: Optional[List[ChartGroup]] = None

    # -- inputs ---------------------------------------------------------------

    @property
    def points(self) -> List[DataPoint]:
        return self._points

    def now_ms(self) -> int:
        if self.snapshot.now_ms is not None:
            return int(self.snapshot.now_ms)
        return int(time.time() * 1000)

    def set_snapshot(self, snapshot: FeedSnapshot) -> None:
        if snapshot.symbol and snapshot.symbol.upper() != self.symbol:
            self.symbol = snapshot.symbol.upper()
            self._finer = None
            self.measurement.clear()
        self.snapshot = snapshot
        self.events = events_from_snapshot(snapshot.events, self.config.market_tz, self.error_sink)
        self._rebuild()
        if self.viewport.period != self.period or len(self.viewport.points) < 2:
            self.viewport.set_period(self.period, self._points, animate=False)
        else:
            self.viewport.set_points(self._points)

    def set_period(self, period: str, animate: bool = True, now_ms: Optional[float] = None) -> None:
        period = normalize_period(period)
        self.period = period
        self.preferences = replace(self.preferences, last_period=period)
        self._finer = None
        self._rebuild()
        self.price_scale.reset()
        self.hover_index = None
        self.viewport.set_period(period, self._points, animate=animate, now_ms=now_ms)
        if self.on_period_change is not None:
            try:
                self.on_period_change(period)
            except Exception as exc:
                report_error(self.error_sink, f"period change handler failed: {exc}")

    def resize(self, width: float, height: float) -> None:
        cfg = self.config.with_size(width, height)
        self.config = cfg
        self.viewport.config = cfg
        self.price_scale.config = cfg

    def set_preferences(self, prefs: ChartPreferences) -> None:
        self.preferences = prefs
        self._ma = None

    def apply_resolution(self, level: str, candles: Sequence, start_ms: float, end_ms: float) -> None:
        """Finer samples for a zoomed sub-range; the period's own level drops them again."""
        if level == natural_level(self.period) or not candles:
            if self._finer is None:
                return
            self._finer = None
        else:
            if all(isinstance(c, DataPoint) for c in candles):
                finer = list(candles)
            else:
                finer = hourly_points([c for c in candles if isinstance(c, IntradayCandle)], self.now_ms(), self.config.market_tz)
            self._finer = (finer, float(start_ms), float(end_ms))
            report_debug(self.debug_sink, f"{self.symbol}: spliced {len(finer)} {level} samples")
        self._rebuild()
        self.viewport.set_points(self._points)

    def _rebuild(self) -> None:
        snap = self.snapshot
        self._base = build_points(
            self.period,
            snap.daily,
            snap.intraday,
            snap.hourly,
            snap.live,
            snap.previous_close,
            snap.current_price,
            self.now_ms(),
            self.config,
        )
        points = self._base
        if self._finer is not None:
            finer, start, end = self._finer
            points = splice_resolution(points, finer, start, end)
        self._points = points
        self._ma = None
        self._placed = None
        self._groups = None
        if self.hover_index is not None and self.hover_index >= len(points):
            self.hover_index = None

    def _forward_resolution_request(self, level: str, start_ms: float, end_ms: float) -> None:
        report_debug(self.debug_sink, f"{self.symbol}: request {level} {int(start_ms)}..{int(end_ms)}")
        if level == natural_level(self.period) and self._finer is not None:
            self._finer = None
            self._rebuild()
            self.viewport.set_points(self._points)
        if self.on_resolution_request is not None:
            self.on_resolution_request(level, start_ms, end_ms)

    # -- derived ------------------------------------------------------------------

    def moving_averages(self) -> Dict[int, MovingAverageSeries]:
        if self._ma is None:
            enabled = set(self.preferences.enabled_mas)
            if self.preferences.signals_enabled:
                enabled.update(self.config.signal_ma_periods)
            self._ma = compute_moving_averages(self.period, self._points, self.snapshot.daily, enabled, self.config)
        return self._ma

    def visible_range(self) -> Tuple[int, int]:
        return self.viewport.visible_indices(margin=0)

    def _signal_inputs(self) -> Tuple[List[float], Dict[int, List[Optional[float]]]]:
        prices = [p.price for p in self._points]
        ma = {period: series.values for period, series in self.moving_averages().items()}
        return prices, ma

    def breach_clusters(self) -> List[BreachCluster]:
        if not self.preferences.signals_enabled or len(self._points) < 2:
            return []
        prices, ma = self._signal_inputs()
        first, last = self.visible_range()
        tracked = signal_series(ma, self.config.signal_ma_periods)
        events = detect_breaches(prices, tracked, first, last + 1)
        return cluster_breaches(events, self.config.breach_cluster_gap)

    def crosses(self) -> List[CrossEvent]:
        if not self.preferences.signals_enabled or len(self._points) < 2:
            return []
        prices, ma = self._signal_inputs()
        if 100 not in ma or 200 not in ma:
            return []
        first, last = self.visible_range()
        return detect_crosses(prices, ma[100], ma[200], self.config.cross_epsilon, first, last + 1)

    def placed_events(self) -> List[PlacedEvent]:
        if self._placed is None:
            placed, dropped = place_events(self._points, self.events, self.config.market_tz, self.config.event_fallback_days)
            if dropped:
                report_debug(self.debug_sink, f"{self.symbol}: {dropped} events outside the chart")
            self._placed = placed
        return self._placed

    def event_clusters(self) -> List[EventCluster]:
        if not self.preferences.events_enabled or len(self._points) < 2:
            return []
        first, last = self.visible_range()
        visible = [p for p in self.placed_events() if first <= p.index <= last]
        return cluster_events(visible, self.viewport.px_per_sample(), self.config.event_cluster_gap_px)

    def chart_groups(self) -> List[ChartGroup]:
        if self._groups is None:
            self._groups = compute_chart_groups(self._points, self.period, self.config.market_tz)
        return self._groups

    def reference_price(self) -> Optional[float]:
        if self.period == "1D":
            return self.snapshot.previous_close or (self._points[0].price if self._points else None)
        if not self._points:
            return None
        first, _ = self.visible_range()
        return self._points[first].price

    # -- interaction ------------------------------------------------------------------

    def tick(self, now_ms: Optional[float] = None) -> bool:
        return self.viewport.tick(now_ms)

    def pointer_move(self, x: float, y: float) -> InputMode:
        mode = self.viewport.pointer_move(x, y)
        if mode == InputMode.HOVERING:
            self._set_hover(self.viewport.index_at_x(x))
        elif mode == InputMode.PANNING:
            self._set_hover(None)
        return mode

    def pointer_down(self, x: float, y: float) -> InputMode:
        if not self.config.contains(x, y):
            self.measurement.clear()
            return self.viewport.mode
        return self.viewport.pointer_down(x, y)

    def pointer_up(self, x: float, y: float) -> Optional[str]:
        action = self.viewport.pointer_up(x, y)
        if action == "click":
            self._measure_click(x, y)
        return action

    def pointer_leave(self) -> None:
        self.viewport.pointer_leave()
        self._set_hover(None)

    def wheel(self, x: float, delta: float, now_ms: Optional[float] = None) -> bool:
        return self.viewport.wheel(x, delta, now_ms)

    def key(self, name: str, now_ms: Optional[float] = None) -> Optional[str]:
        action = self.viewport.key(name, now_ms)
        if action == "clear":
            self.measurement.clear()
        return action

    def touch_begin(self, touches: Sequence[Tuple[float, float]]) -> InputMode:
        mode = self.viewport.touch_begin(touches)
        self._follow_touches(mode, touches)
        return mode

    def touch_move(self, touches: Sequence[Tuple[float, float]]) -> InputMode:
        mode = self.viewport.touch_move(touches)
        self._follow_touches(mode, touches)
        return mode

    def touch_end(self, last: Tuple[float, float], remaining: Sequence[Tuple[float, float]] = ()) -> Optional[str]:
        action = self.viewport.touch_end(remaining)
        if action == "tap":
            self._measure_click(*last)
        elif action == "pinch_end":
            self.measurement.clear()
        if not remaining:
            self._set_hover(None)
        return action

    def _follow_touches(self, mode: InputMode, touches: Sequence[Tuple[float, float]]) -> None:
        if mode == InputMode.PINCHING and len(touches) >= 2:
            self._set_hover(None)
            self.measurement.set_pair(self._snapshot_at(touches[0][0]), self._snapshot_at(touches[1][0]))
        elif mode == InputMode.HOVERING and touches:
            self._set_hover(self.viewport.index_at_x(touches[0][0]))
        elif mode == InputMode.PANNING:
            self._set_hover(None)

    def _snapshot_at(self, x: float) -> Optional[MeasurePoint]:
        idx = self.viewport.index_at_x(x)
        if idx < 0:
            return None
        point = self._points[idx]
        return MeasurePoint(point.time, point.price)

    def _measure_click(self, x: float, y: float) -> None:
        if not self.config.contains(x, y) or len(self._points) < 2:
            self.measurement.clear()
            return
        point = self._snapshot_at(x)
        if point is not None:
            self.measurement.click(point)

    def _set_hover(self, index: Optional[int]) -> None:
        if index is not None and not (0 <= index < len(self._points)):
            index = None
        self.hover_index = index
        if self.on_hover is None:
            return
        reference = self.reference_price()
        try:
            if index is None:
                self.on_hover(None, "", reference)
            else:
                point = self._points[index]
                self.on_hover(point.price, point.label, reference)
        except Exception as exc:
            report_error(self.error_sink, f"hover handler failed: {exc}")

    # -- scene --------------------------------------------------------------------

    def build_scene(self) -> Scene:
        cfg = self.config
        left, top = cfg.pad_left, cfg.pad_top
        width, height = cfg.plot_width, cfg.plot_height
        bottom = top + height
        scene = Scene(cfg.width, cfg.height, clip=ClipRegion(left, top, width, height))
        points = self._points
        if len(points) < 2:
            return scene

        vp = self.viewport
        first, last = vp.visible_indices(margin=1)
        reference = self.reference_price()
        visible_prices = [p.price for p in points[first:last + 1]]
        session = date_key(points[-1].time, cfg.market_tz) if self.period == "1D" else None
        self.price_scale.fit(visible_prices, reference, self.period, session)
        y_of = self.price_scale.y_for_price

        self._add_groups(scene, first, last, top, height)
        if self.period == "1D":
            for _, ms in session_boundaries(points[-1].time, cfg.market_tz):
                x = vp.x_for_time(ms)
                scene.add(LineShape(x, top, x, bottom, stroke=GRID_COLOR, dashed=True, opacity=0.6))

        xy = [(vp.x_for_index(i), y_of(points[i].price)) for i in range(first, last + 1)]
        up = reference is None or points[last].price >= reference
        color = UP_COLOR if up else DOWN_COLOR

        if self.preferences.volume_enabled:
            self._add_volume(scene, first, last, bottom, height, color)
        if reference is not None:
            ry = y_of(reference)
            scene.add(LineShape(left, ry, left + width, ry, stroke="#9CA3AF", dashed=True, opacity=0.7, layer="reference"))

        curve = monotone_path(xy)
        area: List[PathCommand] = list(curve) + [("L", xy[-1][0], bottom), ("L", xy[0][0], bottom), ("Z",)]
        scene.add(PathShape(tuple(area), fill=color, opacity=0.12, layer="area"))
        scene.add(PathShape(tuple(curve), stroke=color, width=2.0, layer="price"))

        self._add_moving_averages(scene, first, last, y_of)
        self._add_signals(scene, y_of)
        self._add_events(scene, bottom)
        self._add_measurements(scene, y_of)

        if self.hover_index is not None and vp.mode != InputMode.PANNING:
            hx = vp.x_for_index(self.hover_index)
            hy = y_of(points[self.hover_index].price)
            scene.add(LineShape(hx, top, hx, bottom, stroke="#D1D5DB", opacity=0.8, layer="crosshair"))
            scene.add(CircleShape(hx, hy, 4.0, fill=color, stroke="#FFFFFF", width=1.5, layer="crosshair"))
        if self.period == "1D":
            lx, ly = xy[-1]
            scene.add(CircleShape(lx, ly, 4.0, fill=color, layer="current"))
        return scene

    def _add_groups(self, scene: Scene, first: int, last: int, top: float, height: float) -> None:
        vp = self.viewport
        for n, group in enumerate(self.chart_groups()):
            if group.end_idx < first or group.start_idx > last:
                continue
            x0 = vp.x_for_index(group.start_idx)
            x1 = vp.x_for_index(min(group.end_idx + 1, len(self._points) - 1))
            if n % 2 == 1:
                scene.add(RectShape(x0, top, max(0.0, x1 - x0), height, fill="#FFFFFF", opacity=0.03))
            scene.add(TextShape(x0 + 4, top + height + 14, group.label, color="#9CA3AF", size=9.0, anchor="start", layer="axis"))

    def _add_volume(self, scene: Scene, first: int, last: int, bottom: float, height: float, color: str) -> None:
        vols = [self._points[i].volume or 0.0 for i in range(first, last + 1)]
        peak = max(vols) if vols else 0.0
        if peak <= 0:
            return
        band = height * 0.18
        bar = max(1.0, min(8.0, self.viewport.px_per_sample() * 0.6))
        for i, vol in zip(range(first, last + 1), vols):
            if vol <= 0:
                continue
            h = band * vol / peak
            x = self.viewport.x_for_index(i)
            scene.add(RectShape(x - bar / 2.0, bottom - h, bar, h, fill=color, opacity=0.25, layer="volume"))

    def _add_moving_averages(self, scene: Scene, first: int, last: int, y_of) -> None:
        vp = self.viewport
        ma = self.moving_averages()
        for period in sorted(self.preferences.enabled_mas):
            series = ma.get(period)
            if series is None:
                continue
            run: List[Tuple[float, float]] = []
            for i in range(first, last + 2):
                value = series.value_at(i) if i <= last else None
                if value is not None:
                    run.append((vp.x_for_index(i), y_of(value)))
                    continue
                if len(run) >= 2:
                    scene.add(PathShape(tuple(monotone_path(run)), stroke=MA_COLORS.get(period, "#9CA3AF"), width=1.5, opacity=0.9, layer="ma"))
                run = []

    def _add_signals(self, scene: Scene, y_of) -> None:
        vp = self.viewport
        for cluster in self.breach_clusters():
            x = vp.x_for_index(cluster.index)
            y = y_of(cluster.price)
            size = cluster_pill_size(cluster)
            color = cluster_color(cluster)
            scene.add(CircleShape(x, y, size * 0.9, fill=color, opacity=cluster_glow_opacity(cluster), layer="signal"))
            scene.add(RectShape(x - size / 2.0, y + 6, size, size, fill=color, radius=size / 2.0, layer="signal"))
            label = str(len(cluster.events)) if len(cluster.events) > 1 else "B"
            scene.add(TextShape(x, y + 6 + size * 0.72, label, color="#FFFFFF", size=size * 0.55, bold=True, layer="signal"))
        for cross in self.crosses():
            x = vp.x_for_index(cross.index)
            y = y_of(cross.ma100)
            color = CROSS_COLORS[cross.kind]
            scene.add(CircleShape(x, y, 7.0, fill=color, stroke="#111827", width=1.5, layer="signal"))
            scene.add(TextShape(x, y + 3.5, "G" if cross.kind == "golden" else "D", color="#111827", size=8.0, bold=True, layer="signal"))

    def _add_events(self, scene: Scene, bottom: float) -> None:
        vp = self.viewport
        y = bottom - 12.0
        r = 7.0
        for cluster in self.event_clusters():
            x = vp.x_for_index(cluster.index)
            primary = cluster.primary
            color = primary.color
            if primary.shape == "circle":
                scene.add(CircleShape(x, y, r, fill=color, layer="event"))
            else:
                scene.add(PathShape(_polygon(primary.shape, x, y, r), fill=color, layer="event"))
            glyph = primary.glyph if len(cluster.events) == 1 else str(len(cluster.events))
            scene.add(TextShape(x, y + 3.5, glyph, color="#FFFFFF", size=8.0, bold=True, layer="event"))

    def _add_measurements(self, scene: Scene, y_of) -> None:
        vp = self.viewport
        anchors: Dict[str, Tuple[float, float]] = {}
        for name, point in zip("ABC", self.measurement.points):
            idx = self.measurement.resolve_index(self._points, point)
            if idx is None:
                continue
            x = vp.x_for_time(point.time)
            y = y_of(point.price)
            anchors[name] = (x, y)
            scene.add(LineShape(x, self.config.pad_top, x, self.config.pad_top + self.config.plot_height, stroke=MEASURE_COLORS[name], dashed=True, opacity=0.7, layer="measure"))
            scene.add(CircleShape(x, y, 5.0, fill=MEASURE_COLORS[name], stroke="#FFFFFF", width=1.5, layer="measure"))
            scene.add(TextShape(x, y - 9.0, name, color=MEASURE_COLORS[name], size=10.0, bold=True, layer="measure"))
        deltas = self.measurement.deltas()
        pairs = {"ab": ("A", "B"), "bc": ("B", "C"), "ac": ("A", "C")}
        row = 0
        for key in ("ab", "bc", "ac"):
            delta = deltas.get(key)
            if delta is None:
                continue
            x = vp.x_for_time(delta.start_time)
            x2 = vp.x_for_time(delta.end_time)
            color = UP_COLOR if delta.change >= 0 else DOWN_COLOR
            scene.add(LineShape(x, y_of(delta.start_price), x2, y_of(delta.end_price), stroke=color, width=1.5, layer="measure"))
            a, b = pairs[key]
            text = f"{a}→{b} {format_delta(delta)}" if a in anchors and b in anchors else format_delta(delta)
            scene.add(TextShape(self.config.pad_left + 6, self.config.pad_top + 12 + row * 14, text, color=color, size=10.0, anchor="start", layer="measure"))
            row += 1


def _polygon(shape: str, x: float, y: float, r: float) -> Tuple[PathCommand, ...]:
    if shape == "triangle":
        corners = [(x, y - r), (x + r, y + r * 0.8), (x - r, y + r * 0.8)]
    elif shape == "diamond":
        corners = [(x, y - r), (x + r, y), (x, y + r), (x - r, y)]
    else:
        corners = [(x - r, y - r), (x + r, y - r), (x + r, y + r), (x - r, y + r)]
    commands: List[PathCommand] = [("M",) + corners[0]]
    commands.extend(("L",) + c for c in corners[1:])
    commands.append(("Z",))
    return tuple(commands)
