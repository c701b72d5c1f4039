from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
import json
import os
from typing import Any, Dict, Mapping, Tuple


@dataclass(frozen=True)
class ChartConfig:
    # Plot geometry (pixels).
    width: float = 800.0
    height: float = 280.0
    pad_top: float = 20.0
    pad_bottom: float = 30.0
    pad_left: float = 0.0
    pad_right: float = 0.0

    market_tz: str = "America/New_York"

    # Point builder.
    bridge_gap_ms: int = 90_000
    bridge_step_ms: int = 30_000
    extend_to_now_ms: int = 5_000

    # Moving averages and signals.
    ma_periods: Tuple[int, ...] = (5, 10, 50, 100, 200)
    short_ma_max: int = 10
    signal_ma_periods: Tuple[int, ...] = (50, 100, 200)
    breach_cluster_gap: int = 5
    cross_epsilon: float = 0.0001

    # Event correlator.
    event_cluster_gap_px: float = 16.0
    event_fallback_days: int = 3

    # Viewport.
    animation_ms: int = 200
    history_limit: int = 20
    min_visible_samples: int = 20
    elastic_zone: float = 2.0
    wheel_base: float = 1.15
    wheel_delta_cap: float = 480.0
    wheel_gesture_gap_ms: int = 400
    snap_zoom_stops: bool = False
    snap_threshold: float = 0.03
    keyboard_zoom_factor: float = 1.25
    keyboard_pan_fraction: float = 0.10
    pan_deadzone_px: float = 5.0
    tap_slop_px: float = 10.0
    intraday_max_days: float = 2.0
    hourly_max_days: float = 35.0

    # Price scale.
    min_range_fraction_1d: float = 0.03
    y_padding: float = 0.08

    strict_invariants: bool = field(default=__debug__)

    @property
    def plot_width(self) -> float:
        return self.width - self.pad_left - self.pad_right

    @property
    def plot_height(self) -> float:
        return self.height - self.pad_top - self.pad_bottom

    def contains(self, x: float, y: float) -> bool:
        return (
            self.pad_left <= x <= self.width - self.pad_right
            and self.pad_top <= y <= self.height - self.pad_bottom
        )

    def with_size(self, width: float, height: float) -> "ChartConfig":
        return replace(self, width=float(width), height=float(height))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ChartConfig":
        if not isinstance(values, Mapping):
            raise ValueError(f"Chart config must be a mapping, got {type(values).__name__}")
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(k for k in values if k not in known)
        if unknown:
            raise ValueError(f"Unknown chart config keys: {', '.join(unknown)}")
        kwargs: Dict[str, Any] = {}
        defaults = cls()
        for key, raw in values.items():
            current = getattr(defaults, key)
            if isinstance(current, tuple):
                kwargs[key] = tuple(int(v) for v in raw)
            elif isinstance(current, bool):
                kwargs[key] = bool(raw)
            elif isinstance(current, int):
                kwargs[key] = int(raw)
            elif isinstance(current, float):
                kwargs[key] = float(raw)
            else:
                kwargs[key] = str(raw)
        return cls(**kwargs)


def load_config(path: str) -> ChartConfig:
    if not path or not os.path.exists(path):
        return ChartConfig()
    with open(path, "r", encoding="utf-8") as handle:
        return ChartConfig.from_mapping(json.load(handle))
