from __future__ import annotations

from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from enum import Enum
import math
import time
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .config import ChartConfig
from .errors import check_invariant, report_error
from .measurement import nearest_index
from .models import DAILY_PERIODS, DAY_MS, HOURLY_PERIODS, DataPoint, ZoomWindow, normalize_period
from .sessions import date_key, day_domain, local_ms, shift_months, snap_to_clean_boundary


Domain = Tuple[float, float]

LEVEL_RANK = {"intraday": 0, "hourly": 1, "daily": 2}


class InputMode(Enum):
    NONE = "none"
    HOVERING = "hovering"
    PANNING = "panning"
    MEASURING = "measuring"
    PINCHING = "pinching"


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Animating:
    start: Tuple[float, float]  # window in ms
    target: Tuple[float, float]  # window in ms
    started_ms: float
    duration_ms: float
    clears: bool = False  # lands on the full extent

    def progress(self, now_ms: float) -> float:
        if self.duration_ms <= 0:
            return 1.0
        return min(1.0, max(0.0, (now_ms - self.started_ms) / self.duration_ms))

    def done(self, now_ms: float) -> bool:
        return self.progress(now_ms) >= 1.0


AnimationState = Union[Idle, Animating]
IDLE = Idle()


def ease_out_cubic(p: float) -> float:
    return 1.0 - (1.0 - p) ** 3


def resolution_level(span_ms: float, config: ChartConfig) -> str:
    days = span_ms / DAY_MS
    if days <= config.intraday_max_days:
        return "intraday"
    if days <= config.hourly_max_days:
        return "hourly"
    return "daily"


def natural_level(period: str) -> str:
    period = normalize_period(period)
    if period == "1D":
        return "intraday"
    if period in HOURLY_PERIODS:
        return "hourly"
    return "daily"


def period_window(period: str, points: Sequence[DataPoint], tz: str) -> Optional[ZoomWindow]:
    """Initial zoom window for a daily period; None shows the full extent."""
    period = normalize_period(period)
    if period not in DAILY_PERIODS or period == "MAX" or len(points) < 2:
        return None
    last = points[-1].time
    last_day = date_key(last, tz)
    if period == "3M":
        start_day = shift_months(last_day, -3)
    elif period == "1Y":
        start_day = shift_months(last_day, -12)
    else:
        start_day = last_day.replace(month=1, day=1)
    start = local_ms(start_day, 0, 0, tz)
    if start <= points[0].time:
        return None
    return ZoomWindow(float(start), float(last))


class ViewportController:
    """
    Visible range of a chart plus the mapping between samples and pixels.

    Zoom arithmetic happens in domain space: timestamps for the 1D time-based axis,
    fractional sample indices for the gap-free multi-day axis. Windows themselves are
    stored in milliseconds so they survive data splices.
    """

    def __init__(
        self,
        config: ChartConfig = ChartConfig(),
        on_resolution_request: Optional[Callable[[str, float, float], None]] = None,
        error_sink=None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config
        self.on_resolution_request = on_resolution_request
        self.error_sink = error_sink
        self._clock = clock or (lambda: time.monotonic() * 1000.0)
        self.period = "1D"
        self.points: List[DataPoint] = []
        self._times: List[float] = []
        self.window: Optional[ZoomWindow] = None
        self.history: List[Optional[ZoomWindow]] = []
        self.animation: AnimationState = IDLE
        self._frame: Optional[Tuple[float, float]] = None
        self.mode = InputMode.NONE
        self._last_wheel_ms: Optional[float] = None
        self._last_request: Optional[Tuple[str, float, float]] = None
        self._press: Optional[Tuple[float, float]] = None
        self._press_window: Optional[Domain] = None
        self._touch_origin: Optional[Tuple[float, float]] = None
        self._touch_moved = 0.0

    # -- data ---------------------------------------------------------------

    @property
    def time_based(self) -> bool:
        return self.period == "1D"

    @property
    def is_zoomed(self) -> bool:
        return self.window is not None

    @property
    def is_animating(self) -> bool:
        return isinstance(self.animation, Animating)

    def set_points(self, points: Sequence[DataPoint]) -> None:
        """New data for the same period; the window is kept and clamped."""
        self.points = list(points)
        self._times = [float(p.time) for p in self.points]
        if self.window is not None:
            self.window = self._clamp(self._to_domain(self.window))
        if self.window is None and self.is_animating and not self.animation.clears:
            self.animation = IDLE
            self._frame = None

    def set_period(self, period: str, points: Sequence[DataPoint], animate: bool = True, now_ms: Optional[float] = None) -> None:
        period = normalize_period(period)
        previous = self.period
        had_points = len(self.points) >= 2
        self.period = period
        self.points = list(points)
        self._times = [float(p.time) for p in self.points]
        if natural_level(previous) != natural_level(period) or previous == "1D" or period == "1D":
            # The axis itself changed; nothing meaningful to animate from.
            self.history = []
            self.animation = IDLE
            self._frame = None
            animate = False
        self._last_request = None
        self._last_wheel_ms = None
        target = period_window(period, self.points, self.config.market_tz)
        if target is not None:
            target = self._clamp(self._to_domain(target))
        self.set_window(target, animate=animate and had_points, now_ms=now_ms)

    # -- domain ---------------------------------------------------------------

    def full_domain(self) -> Domain:
        n = len(self._times)
        if self.time_based:
            if n == 0:
                return (0.0, 1.0)
            start, end = day_domain(self._times[-1], self.config.market_tz)
            return (min(float(start), self._times[0]), max(float(end), self._times[-1]))
        if n < 2:
            return (0.0, 1.0)
        return (0.0, float(n - 1))

    def domain_of_time(self, t: float) -> float:
        if self.time_based:
            return float(t)
        times = self._times
        n = len(times)
        if n < 2:
            return 0.0
        if t <= times[0]:
            return 0.0
        if t >= times[-1]:
            return float(n - 1)
        i = bisect_right(times, t) - 1
        span = times[i + 1] - times[i]
        frac = (t - times[i]) / span if span > 0 else 0.0
        return i + frac

    def time_of_domain(self, u: float) -> float:
        if self.time_based:
            return float(u)
        times = self._times
        n = len(times)
        if n == 0:
            return 0.0
        if n == 1 or u <= 0:
            return times[0]
        if u >= n - 1:
            return times[-1]
        i = int(math.floor(u))
        return times[i] + (times[i + 1] - times[i]) * (u - i)

    def _to_domain(self, window: ZoomWindow) -> Domain:
        return (self.domain_of_time(window.start_ms), self.domain_of_time(window.end_ms))

    def window_domain(self) -> Domain:
        if self.window is None:
            return self.full_domain()
        return self._to_domain(self.window)

    def view_domain(self) -> Domain:
        """What is on screen right now, mid-animation included."""
        if self.is_animating and self._frame is not None:
            return (self.domain_of_time(self._frame[0]), self.domain_of_time(self._frame[1]))
        return self.window_domain()

    def min_span(self) -> float:
        lo, hi = self.full_domain()
        full = hi - lo
        n = len(self._times)
        if n < 2:
            return full
        if self.time_based:
            spacing = (self._times[-1] - self._times[0]) / (n - 1)
        else:
            spacing = 1.0
        return min(full, spacing * self.config.min_visible_samples)

    def data_domain(self) -> Domain:
        """Domain covered by samples; narrower than `full_domain` on the 1D day axis."""
        if len(self._times) < 2:
            return self.full_domain()
        return (self.domain_of_time(self._times[0]), self.domain_of_time(self._times[-1]))

    def _clamp(self, domain: Domain) -> Optional[ZoomWindow]:
        full_lo, full_hi = self.full_domain()
        data_lo, data_hi = self.data_domain()
        lo, hi = domain
        full = full_hi - full_lo
        span = hi - lo
        if len(self._times) < 2 or span >= full * (1.0 - 1e-9):
            return None
        span = max(span, self.min_span())
        if not math.isfinite(span) or span <= 0:
            return None
        # A window covering every sample is the full extent.
        if span >= (data_hi - data_lo) * (1.0 - 1e-9):
            return None
        if lo < data_lo:
            lo = data_lo
        if lo + span > data_hi:
            lo = data_hi - span
        hi = lo + span
        start = self.time_of_domain(lo)
        end = self.time_of_domain(hi)
        if not check_invariant(start < end, f"zoom window start {start} >= end {end}", self.config.strict_invariants, self.error_sink):
            return None
        return ZoomWindow(start, end)

    def extent_ms(self) -> Tuple[float, float]:
        lo, hi = self.full_domain()
        return (self.time_of_domain(lo), self.time_of_domain(hi))

    # -- mapping ----------------------------------------------------------------

    def x_for_domain(self, u: float) -> float:
        lo, hi = self.view_domain()
        span = hi - lo
        if span <= 0:
            return self.config.pad_left
        return self.config.pad_left + (u - lo) / span * self.config.plot_width

    def x_for_time(self, t: float) -> float:
        return self.x_for_domain(self.domain_of_time(t))

    def x_for_index(self, index: int) -> float:
        if self.time_based:
            return self.x_for_domain(self._times[index])
        return self.x_for_domain(float(index))

    def domain_at_x(self, x: float) -> float:
        lo, hi = self.view_domain()
        width = self.config.plot_width
        frac = (x - self.config.pad_left) / width if width > 0 else 0.0
        return lo + frac * (hi - lo)

    def time_at_x(self, x: float) -> float:
        return self.time_of_domain(self.domain_at_x(x))

    def index_at_x(self, x: float) -> int:
        """Nearest sample under pixel `x`; -1 without data."""
        n = len(self._times)
        if n == 0:
            return -1
        if self.time_based:
            return nearest_index(self._times, self.time_at_x(x))
        return int(min(n - 1, max(0, round(self.domain_at_x(x)))))

    def px_per_sample(self) -> float:
        lo, hi = self.view_domain()
        n = len(self._times)
        if hi <= lo or n < 2:
            return self.config.plot_width
        per_unit = self.config.plot_width / (hi - lo)
        if self.time_based:
            return per_unit * (self._times[-1] - self._times[0]) / (n - 1)
        return per_unit

    def visible_indices(self, margin: int = 1) -> Tuple[int, int]:
        """First and last sample index inside the view, widened by `margin`."""
        n = len(self._times)
        if n == 0:
            return (0, -1)
        lo, hi = self.view_domain()
        start_t = self.time_of_domain(lo)
        end_t = self.time_of_domain(hi)
        first = bisect_left(self._times, start_t)
        last = bisect_right(self._times, end_t) - 1
        first = max(0, first - margin)
        last = min(n - 1, last + margin)
        if last < first:
            return (0, n - 1)
        return (first, last)

    # -- window changes -----------------------------------------------------------

    def set_window(
        self,
        window: Optional[ZoomWindow],
        animate: bool = True,
        now_ms: Optional[float] = None,
        push_history: bool = False,
    ) -> bool:
        """Move to `window` (None = full extent); cancels any running animation."""
        if window == self.window and not self.is_animating:
            return False
        now = self._now(now_ms)
        if push_history:
            self.push_history()
        start_domain = self.view_domain()
        start = (self.time_of_domain(start_domain[0]), self.time_of_domain(start_domain[1]))
        self.window = window
        if window is None:
            target_domain = self.full_domain()
            target = (self.time_of_domain(target_domain[0]), self.time_of_domain(target_domain[1]))
        else:
            target = (window.start_ms, window.end_ms)
        if animate and self.config.animation_ms > 0 and start != target and len(self._times) >= 2:
            self.animation = Animating(start, target, now, float(self.config.animation_ms), clears=window is None)
            self._frame = start
        else:
            self.animation = IDLE
            self._frame = None
        if self.mode != InputMode.PANNING:
            self._request_resolution()
        return True

    def zoom_to(self, window: ZoomWindow, animate: bool = True, now_ms: Optional[float] = None, push_history: bool = True) -> bool:
        """Clamp an arbitrary window onto the data and move there."""
        return self.set_window(self._clamp(self._to_domain(window)), animate=animate, now_ms=now_ms, push_history=push_history)

    def tick(self, now_ms: Optional[float] = None) -> bool:
        """Advance the animation; False once idle."""
        anim = self.animation
        if not isinstance(anim, Animating):
            return False
        now = self._now(now_ms)
        if anim.done(now):
            self.animation = IDLE
            self._frame = None
            return False
        e = ease_out_cubic(anim.progress(now))
        d0 = (self.domain_of_time(anim.start[0]), self.domain_of_time(anim.start[1]))
        d1 = (self.domain_of_time(anim.target[0]), self.domain_of_time(anim.target[1]))
        lo = d0[0] + (d1[0] - d0[0]) * e
        hi = d0[1] + (d1[1] - d0[1]) * e
        self._frame = (self.time_of_domain(lo), self.time_of_domain(hi))
        return True

    def push_history(self) -> None:
        if self.history and self.history[-1] == self.window:
            return
        self.history.append(self.window)
        limit = max(1, self.config.history_limit)
        if len(self.history) > limit:
            del self.history[: len(self.history) - limit]

    def pop_history(self, now_ms: Optional[float] = None) -> bool:
        if not self.history:
            return False
        previous = self.history.pop()
        if previous is not None:
            previous = self._clamp(self._to_domain(previous))
        return self.set_window(previous, animate=True, now_ms=now_ms)

    def reset(self, animate: bool = True, now_ms: Optional[float] = None) -> bool:
        if self.window is None and not self.is_animating:
            return False
        return self.set_window(None, animate=animate, now_ms=now_ms, push_history=self.window is not None)

    def _elastic_span(self, span: float, wanted: float) -> float:
        """Shrink `span` toward `wanted`, easing asymptotically onto the floor."""
        floor = self.min_span()
        if wanted >= span:
            return wanted
        if span <= floor:
            return span
        zone = floor * max(1.0, self.config.elastic_zone)
        step = span - wanted
        if span > zone:
            free = span - zone
            if step <= free:
                return wanted
            step -= free
            span = zone
        headroom = span - floor
        if headroom <= 0:
            return floor
        return floor + headroom * math.exp(-step / headroom)

    def zoom_at(self, x: float, factor: float, now_ms: Optional[float] = None, push_history: bool = False) -> bool:
        """Scale the window by 1/`factor` keeping the sample under `x` in place."""
        if len(self._times) < 2 or factor <= 0 or factor == 1.0:
            return False
        lo, hi = self.window_domain()
        span = hi - lo
        width = self.config.plot_width
        frac = (x - self.config.pad_left) / width if width > 0 else 0.5
        frac = min(1.0, max(0.0, frac))
        anchor = lo + frac * span
        full_lo, full_hi = self.full_domain()
        new_span = self._elastic_span(span, span / factor)
        if new_span >= (full_hi - full_lo):
            return self.set_window(None, animate=True, now_ms=now_ms, push_history=push_history)
        new_lo = anchor - frac * new_span
        window = self._clamp((new_lo, new_lo + new_span))
        if window is not None and self.config.snap_zoom_stops and not self.time_based:
            window = self._snap(window)
        if window == self.window:
            return False
        return self.set_window(window, animate=True, now_ms=now_ms, push_history=push_history)

    def _snap(self, window: ZoomWindow) -> Optional[ZoomWindow]:
        tz = self.config.market_tz
        span = window.span
        start = snap_to_clean_boundary(window.start_ms, span, tz, self.config.snap_threshold)
        end = snap_to_clean_boundary(window.end_ms, span, tz, self.config.snap_threshold)
        if end <= start:
            return window
        return self._clamp((self.domain_of_time(start), self.domain_of_time(end)))

    def wheel(self, x: float, delta: float, now_ms: Optional[float] = None) -> bool:
        """Positive `delta` zooms in. A pause longer than the gesture gap starts a new history entry."""
        if delta == 0:
            return False
        now = self._now(now_ms)
        new_gesture = self._last_wheel_ms is None or (now - self._last_wheel_ms) > self.config.wheel_gesture_gap_ms
        self._last_wheel_ms = now
        magnitude = min(abs(delta), self.config.wheel_delta_cap)
        factor = self.config.wheel_base ** (magnitude / 120.0)
        if delta < 0:
            factor = 1.0 / factor
        return self.zoom_at(x, factor, now_ms=now, push_history=new_gesture)

    def zoom_center(self, factor: float, now_ms: Optional[float] = None) -> bool:
        center = self.config.pad_left + self.config.plot_width / 2.0
        return self.zoom_at(center, factor, now_ms=now_ms, push_history=True)

    def pan_fraction(self, fraction: float, now_ms: Optional[float] = None) -> bool:
        if self.window is None:
            return False
        lo, hi = self.window_domain()
        shift = (hi - lo) * fraction
        window = self._clamp((lo + shift, hi + shift))
        if window == self.window:
            return False
        return self.set_window(window, animate=True, now_ms=now_ms, push_history=True)

    def key(self, name: str, now_ms: Optional[float] = None) -> Optional[str]:
        """Keyboard navigation; returns the action taken or None."""
        cfg = self.config
        if name in ("+", "="):
            return "zoom_in" if self.zoom_center(cfg.keyboard_zoom_factor, now_ms) else None
        if name in ("-", "_"):
            return "zoom_out" if self.zoom_center(1.0 / cfg.keyboard_zoom_factor, now_ms) else None
        if name == "Left":
            return "pan" if self.pan_fraction(-cfg.keyboard_pan_fraction, now_ms) else None
        if name == "Right":
            return "pan" if self.pan_fraction(cfg.keyboard_pan_fraction, now_ms) else None
        if name == "Home":
            return "reset" if self.reset(now_ms=now_ms) else None
        if name == "Backspace":
            return "back" if self.pop_history(now_ms) else None
        if name == "Escape":
            return "clear"
        return None

    # -- pointer sessions ---------------------------------------------------------

    def pointer_down(self, x: float, y: float) -> InputMode:
        self._press = (x, y)
        self._press_window = self.window_domain()
        self.mode = InputMode.MEASURING
        return self.mode

    def pointer_move(self, x: float, y: float) -> InputMode:
        if self._press is None:
            if self.mode in (InputMode.NONE, InputMode.HOVERING):
                self.mode = InputMode.HOVERING if self.config.contains(x, y) else InputMode.NONE
            return self.mode
        dx = x - self._press[0]
        if self.mode == InputMode.MEASURING and abs(dx) > self.config.pan_deadzone_px:
            if self.window is not None:
                self.push_history()
                self.mode = InputMode.PANNING
            else:
                self.mode = InputMode.HOVERING
        if self.mode == InputMode.PANNING:
            self._drag_to(dx)
        return self.mode

    def pointer_up(self, x: float, y: float) -> Optional[str]:
        """'click' when the press never left the deadzone, 'pan_end' after a drag."""
        mode = self.mode
        self._press = None
        self._press_window = None
        self.mode = InputMode.HOVERING if self.config.contains(x, y) else InputMode.NONE
        if mode == InputMode.MEASURING:
            return "click"
        if mode == InputMode.PANNING:
            self._request_resolution()
            return "pan_end"
        return None

    def pointer_leave(self) -> None:
        if self._press is None:
            self.mode = InputMode.NONE

    def _drag_to(self, dx: float) -> None:
        if self._press_window is None:
            return
        lo, hi = self._press_window
        width = self.config.plot_width
        if width <= 0:
            return
        shift = -dx / width * (hi - lo)
        window = self._clamp((lo + shift, hi + shift))
        if window is not None:
            self.set_window(window, animate=False)

    def touch_begin(self, touches: Sequence[Tuple[float, float]]) -> InputMode:
        if len(touches) >= 2:
            self.mode = InputMode.PINCHING
            self._touch_origin = None
            return self.mode
        if not touches:
            return self.mode
        x, y = touches[0]
        self._touch_origin = (x, y)
        self._touch_moved = 0.0
        self._press_window = self.window_domain()
        self.mode = InputMode.PANNING if self.window is not None else InputMode.HOVERING
        return self.mode

    def touch_move(self, touches: Sequence[Tuple[float, float]]) -> InputMode:
        if len(touches) >= 2:
            self.mode = InputMode.PINCHING
            return self.mode
        if not touches or self._touch_origin is None or self.mode == InputMode.PINCHING:
            return self.mode
        x, y = touches[0]
        dx = x - self._touch_origin[0]
        self._touch_moved = max(self._touch_moved, math.hypot(dx, y - self._touch_origin[1]))
        if self.mode == InputMode.PANNING:
            self._drag_to(dx)
        return self.mode

    def touch_end(self, remaining: Sequence[Tuple[float, float]] = ()) -> Optional[str]:
        """'tap', 'pinch_end' once both fingers lift, or 'pan_end'."""
        mode = self.mode
        if mode == InputMode.PINCHING:
            if remaining:
                return None
            self.mode = InputMode.NONE
            return "pinch_end"
        moved = self._touch_moved
        self._touch_origin = None
        self._touch_moved = 0.0
        self._press_window = None
        self.mode = InputMode.NONE
        if moved < self.config.tap_slop_px:
            return "tap"
        if mode == InputMode.PANNING:
            self._request_resolution()
            return "pan_end"
        return None

    # -- resolution escalation -----------------------------------------------------

    def _request_resolution(self) -> None:
        if self.on_resolution_request is None or self.time_based or len(self._times) < 2:
            return
        natural = natural_level(self.period)
        if self.window is None:
            start, end = self._times[0], self._times[-1]
            level = natural
        else:
            start, end = self.window.start_ms, self.window.end_ms
            level = resolution_level(end - start, self.config)
            if LEVEL_RANK[level] > LEVEL_RANK[natural]:
                level = natural
        if level == natural and (self._last_request is None or self._last_request[0] == natural):
            return
        request = (level, float(start), float(end))
        if request == self._last_request:
            return
        self._last_request = request
        try:
            self.on_resolution_request(level, request[1], request[2])
        except Exception as exc:
            report_error(self.error_sink, f"resolution request failed: {exc}")

    def _now(self, now_ms: Optional[float]) -> float:
        return float(now_ms) if now_ms is not None else float(self._clock())


class PriceScale:
    """
    Vertical price range that does not jump under pointer input.

    1D keeps at least a fixed fraction of the reference price visible and only grows
    within a session; other periods fit the visible samples.
    """

    def __init__(self, config: ChartConfig = ChartConfig()) -> None:
        self.config = config
        self.lo = 0.0
        self.hi = 1.0
        self._session = None
        self._raw: Optional[Tuple[float, float]] = None

    def reset(self) -> None:
        self._session = None
        self._raw = None

    def fit(self, prices: Sequence[float], reference: Optional[float], period: str, session=None) -> Tuple[float, float]:
        values = [float(p) for p in prices if p is not None and math.isfinite(p)]
        if reference is not None and math.isfinite(reference):
            values.append(float(reference))
        if not values:
            return (self.lo, self.hi)
        lo, hi = min(values), max(values)
        if normalize_period(period) == "1D":
            if reference:
                floor = abs(reference) * self.config.min_range_fraction_1d
                if hi - lo < floor:
                    mid = (hi + lo) / 2.0
                    lo, hi = mid - floor / 2.0, mid + floor / 2.0
            if self._raw is not None and session is not None and session == self._session:
                lo = min(lo, self._raw[0])
                hi = max(hi, self._raw[1])
            self._session = session
            self._raw = (lo, hi)
        else:
            self._session = None
            self._raw = None
        if hi - lo <= 0:
            pad = abs(hi) * 0.01 or 1.0
            lo, hi = lo - pad, hi + pad
        pad = (hi - lo) * self.config.y_padding
        self.lo, self.hi = lo - pad, hi + pad
        return (self.lo, self.hi)

    def y_for_price(self, price: float) -> float:
        cfg = self.config
        span = self.hi - self.lo
        if span <= 0:
            return cfg.pad_top + cfg.plot_height / 2.0
        return cfg.pad_top + (self.hi - price) / span * cfg.plot_height

    def price_at_y(self, y: float) -> float:
        cfg = self.config
        if cfg.plot_height <= 0:
            return self.lo
        return self.hi - (y - cfg.pad_top) / cfg.plot_height * (self.hi - self.lo)
