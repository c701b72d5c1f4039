import math
import os
import sys
import unittest
from datetime import date

# Allow `import core.*` like the app does when running `python app/main.py`.
REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
APP_DIR = os.path.join(REPO_ROOT, "app")
if APP_DIR not in sys.path:
    sys.path.insert(0, APP_DIR)

from core.config import ChartConfig
from core.feeds import DailyCandles
from core.models import DataPoint
from core.point_builder import build_points
from core.sessions import local_ms
from core.signals import (
    MA_COLORS,
    cluster_breaches,
    cluster_color,
    cluster_pill_size,
    detect_breaches,
    detect_crosses,
    signal_series,
)
from core.smoothing import (
    compute_moving_averages,
    interpolate_daily_to_intraday,
    sma,
    to_optional,
)

TZ = "America/New_York"


class SmoothingTests(unittest.TestCase):
    def test_sma_warmup_is_undefined(self):
        self.assertEqual(to_optional(sma([1, 2, 3, 4, 5], 3)), [None, None, 2.0, 3.0, 4.0])
        self.assertTrue(all(math.isnan(v) for v in sma([1, 2], 3)))

    def test_long_window_is_flat_on_1d(self):
        daily = DailyCandles(
            dates=["2024-02-28", "2024-02-29", "2024-03-01", "2024-03-04", "2024-03-05"],
            closes=[1.0, 2.0, 3.0, 4.0, 100.0],
            volumes=[0.0] * 5,
        )
        day = date(2024, 3, 5)
        points = [DataPoint(local_ms(day, 10, m, TZ), "", 50.0 + m) for m in range(5)]
        config = ChartConfig(short_ma_max=2)
        series = compute_moving_averages("1D", points, daily, [3], config)[3]
        # Last completed session is 03-04: (2 + 3 + 4) / 3; today's close is excluded.
        self.assertEqual(series.values, [3.0] * 5)

    def test_short_window_runs_over_samples(self):
        points = [DataPoint(i, "", float(i)) for i in range(6)]
        series = compute_moving_averages("1D", points, None, [5], ChartConfig())[5]
        self.assertEqual(series.values[:4], [None] * 4)
        self.assertEqual(series.values[4], 2.0)
        self.assertIsNone(series.value_at(99))

    def test_daily_interpolation_is_continuous(self):
        d1, d2 = date(2024, 3, 4), date(2024, 3, 5)
        points = [DataPoint(local_ms(d, h, 0, TZ), "", 0.0) for d in (d1, d2) for h in (10, 12, 14)]
        values = interpolate_daily_to_intraday(points, {d1: 10.0, d2: 20.0}, TZ)
        self.assertEqual(values, [10.0, 10.0, 15.0, 15.0, 20.0, 20.0])

    def test_daily_period_takes_value_per_date(self):
        daily = DailyCandles(dates=["2024-03-04", "2024-03-05", "2024-03-06"], closes=[1.0, 2.0, 6.0], volumes=[0.0] * 3)
        points = [DataPoint(local_ms(date(2024, 3, d), 12, 0, TZ), "", 0.0) for d in (4, 5, 6)]
        series = compute_moving_averages("3M", points, daily, [2], ChartConfig())[2]
        self.assertEqual(series.values, [None, 1.5, 4.0])

    def test_daily_ma_follows_deduplicated_series(self):
        daily = DailyCandles(dates=["2024-03-04", "2024-03-01", "2024-03-01"], closes=[30.0, 10.0, 20.0], volumes=[0.0] * 3)
        now = local_ms(date(2024, 3, 4), 16, 0, TZ)
        points = build_points("MAX", daily, [], [], [], 0.0, 0.0, now)
        self.assertEqual([p.price for p in points], [20.0, 30.0])
        mas = compute_moving_averages("MAX", points, daily, [2, 3], ChartConfig())
        self.assertEqual(mas[2].values, [None, 25.0])
        self.assertEqual(mas[3].values, [None, None])


class SignalTests(unittest.TestCase):
    def test_single_breach_below_ma3(self):
        prices = [100, 102, 101, 105, 95, 90]
        ma = {3: to_optional(sma(prices, 3))}
        events = detect_breaches(prices, ma)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].index, 4)
        self.assertEqual(events[0].ma_periods, (3,))
        self.assertEqual(events[0].price, 95)

    def test_no_breach_when_price_stays_above(self):
        prices = [10.0, 11.0, 12.0, 13.0]
        self.assertEqual(detect_breaches(prices, {50: [5.0] * 4}), [])

    def test_first_defined_sample_only_seeds(self):
        # Below on the very first defined sample is not a breach: nothing was crossed.
        prices = [1.0, 1.0, 3.0, 1.0]
        ma = {50: [None, 2.0, 2.0, 2.0]}
        events = detect_breaches(prices, ma)
        self.assertEqual([e.index for e in events], [3])

    def test_undefined_samples_keep_state(self):
        prices = [3.0, 3.0, 1.0]
        ma = {50: [2.0, None, 2.0]}
        self.assertEqual([e.index for e in detect_breaches(prices, ma)], [2])

    def test_multi_ma_breach_in_one_event(self):
        prices = [10.0, 10.0, 4.0]
        ma = {50: [5.0, 5.0, 5.0], 200: [8.0, 8.0, 8.0]}
        events = detect_breaches(prices, ma)
        self.assertEqual(events[0].ma_periods, (50, 200))
        cluster = cluster_breaches(events)[0]
        self.assertEqual(cluster_color(cluster), MA_COLORS[200])
        self.assertEqual(cluster_pill_size(cluster), 18.0)

    def test_clusters_split_on_gap(self):
        prices = [10, 1, 10, 1, 10, 10, 10, 10, 10, 10, 1]
        ma = {50: [5.0] * len(prices)}
        events = detect_breaches(prices, ma)
        self.assertEqual([e.index for e in events], [1, 3, 10])
        clusters = cluster_breaches(events, min_gap=5)
        self.assertEqual([[e.index for e in c.events] for c in clusters], [[1, 3], [10]])

    def test_crosses_golden_then_death(self):
        fast = [0.9, 0.95, 1.1, 1.2, 0.8]
        slow = [1.0] * 5
        events = detect_crosses([0.0] * 5, fast, slow)
        self.assertEqual([(e.index, e.kind) for e in events], [(2, "golden"), (4, "death")])

    def test_crosses_ignore_noise_inside_epsilon(self):
        fast = [1.0, 1.00005, 1.0, 1.00009]
        self.assertEqual(detect_crosses([0.0] * 4, fast, [1.0] * 4), [])

    def test_cross_needs_consecutive_defined_samples(self):
        self.assertEqual(detect_crosses([0.0] * 3, [0.9, None, 1.1], [1.0] * 3), [])

    def test_visible_range_limits_scan(self):
        prices = [100, 102, 101, 105, 95, 90]
        ma = {3: to_optional(sma(prices, 3))}
        self.assertEqual(detect_breaches(prices, ma, start=0, end=4), [])

    def test_signal_series_filters_periods(self):
        series = signal_series({5: [1.0], 50: [2.0], 200: [3.0]}, (50, 100, 200))
        self.assertEqual(sorted(series), [50, 200])


if __name__ == "__main__":
    unittest.main()
