import os
import sys
import unittest
from datetime import date

# Allow `import core.*` like the app does when running `python app/main.py`.
REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
APP_DIR = os.path.join(REPO_ROOT, "app")
if APP_DIR not in sys.path:
    sys.path.insert(0, APP_DIR)

from core.events import (
    EarningsEvent,
    ExDividendEvent,
    PlacedEvent,
    TradeEvent,
    cluster_events,
    events_from_snapshot,
    place_events,
)
from core.measurement import MeasurementTool, compute_delta, nearest_index
from core.models import DAY_MS, DataPoint, MeasurePoint
from core.sessions import local_ms

TZ = "America/New_York"


class _Sink:
    def __init__(self):
        self.errors = []

    def append_error(self, message):
        self.errors.append(message)


def _weekday_points():
    # Mon 2024-03-04 .. Fri 2024-03-15, weekdays only.
    days = [date(2024, 3, d) for d in (4, 5, 6, 7, 8, 11, 12, 13, 14, 15)]
    return [DataPoint(local_ms(d, 12, 0, TZ), d.isoformat(), 100.0 + i) for i, d in enumerate(days)]


class EventCorrelatorTests(unittest.TestCase):
    def test_exact_and_fallback_placement(self):
        points = _weekday_points()
        events = [
            ExDividendEvent(local_ms(date(2024, 3, 6), 9, 0, TZ), 0.25),
            # Saturday: previous trading day (Friday) wins over the following Monday.
            EarningsEvent(local_ms(date(2024, 3, 9), 16, 0, TZ), 1.2, 1.0),
            # Far outside the series.
            TradeEvent(local_ms(date(2024, 4, 20), 10, 0, TZ), "buy", 5.0, 100.0),
        ]
        placed, dropped = place_events(points, events, TZ, fallback_days=3)
        self.assertEqual(dropped, 1)
        self.assertEqual([(p.index, p.kind) for p in placed], [(2, "ex_dividend"), (4, "earnings")])
        self.assertEqual(placed[1].color, "#00C805")

    def test_empty_series_drops_everything(self):
        placed, dropped = place_events([], [ExDividendEvent(0)], TZ)
        self.assertEqual((placed, dropped), ([], 1))

    def test_pixel_clustering(self):
        placed = [PlacedEvent(i, ExDividendEvent(i)) for i in (0, 1, 5)]
        clusters = cluster_events(placed, px_per_sample=10.0, min_gap_px=16.0)
        self.assertEqual([[p.index for p in c.events] for c in clusters], [[0, 1], [5]])
        self.assertEqual(len(cluster_events(placed, px_per_sample=20.0)), 3)

    def test_cluster_kinds_are_unique(self):
        placed = [
            PlacedEvent(3, ExDividendEvent(1)),
            PlacedEvent(3, TradeEvent(2, "sell")),
            PlacedEvent(3, ExDividendEvent(3)),
        ]
        cluster = cluster_events(placed, px_per_sample=1.0)[0]
        self.assertEqual(cluster.kinds, ["ex_dividend", "trade"])
        self.assertEqual(cluster.primary.kind, "ex_dividend")

    def test_events_from_snapshot(self):
        sink = _Sink()
        raw = {
            "earnings": [{"date": "2024-03-05", "eps_actual": 0.8, "eps_estimate": 1.0}],
            "trades": [{"date": "2024-03-04", "side": "SELL", "shares": 5}, {"shares": 1}],
            "bogus": [{"date": "2024-03-04"}],
        }
        events = events_from_snapshot(raw, TZ, sink)
        self.assertEqual([e.kind for e in events], ["trade", "earnings"])
        self.assertEqual(events[0].glyph, "S")
        self.assertEqual(events[1].color, "#FF3B30")
        self.assertEqual(len(sink.errors), 2)


class MeasurementTests(unittest.TestCase):
    def test_nearest_index_ties_go_earlier(self):
        times = [0, 10, 20]
        self.assertEqual(nearest_index(times, 5), 0)
        self.assertEqual(nearest_index(times, 6), 1)
        self.assertEqual(nearest_index(times, -50), 0)
        self.assertEqual(nearest_index(times, 500), 2)
        self.assertEqual(nearest_index([], 5), -1)

    def test_ab_is_order_independent(self):
        x = MeasurePoint(0, 100.0)
        y = MeasurePoint(3 * DAY_MS, 110.0)
        forward, backward = MeasurementTool(), MeasurementTool()
        forward.click(x)
        forward.click(y)
        backward.click(y)
        backward.click(x)
        self.assertEqual(forward.deltas()["ab"], backward.deltas()["ab"])
        delta = forward.deltas()["ab"]
        self.assertAlmostEqual(delta.change, 10.0)
        self.assertAlmostEqual(delta.percent, 10.0)
        self.assertEqual(delta.days, 3)

    def test_three_points_then_reset(self):
        tool = MeasurementTool()
        for i, price in enumerate((10.0, 20.0, 15.0)):
            tool.click(MeasurePoint(i * DAY_MS, price))
        self.assertEqual(tool.state, "ABC")
        deltas = tool.deltas()
        self.assertEqual(sorted(deltas), ["ab", "ac", "bc"])
        self.assertAlmostEqual(deltas["bc"].change, -5.0)
        self.assertAlmostEqual(deltas["ac"].change, 5.0)
        self.assertEqual(tool.click(MeasurePoint(9, 1.0)), "empty")
        self.assertTrue(tool.is_empty())

    def test_zero_start_price_has_no_percent(self):
        delta = compute_delta(MeasurePoint(0, 0.0), MeasurePoint(DAY_MS, 5.0))
        self.assertIsNone(delta.percent)
        self.assertEqual(delta.change, 5.0)

    def test_click_snaps_to_sample(self):
        points = _weekday_points()
        tool = MeasurementTool()
        tool.click_at(points, points[3].time + 3600_000)
        self.assertEqual(tool.a, MeasurePoint(points[3].time, points[3].price))
        self.assertEqual(tool.resolve_index(points, tool.a), 3)
        self.assertEqual(MeasurementTool().click_at([], 0), "empty")

    def test_persistence_round_trip_stops_at_gap(self):
        tool = MeasurementTool()
        tool.click(MeasurePoint(1, 2.0))
        tool.click(MeasurePoint(3, 4.0))
        restored = MeasurementTool()
        restored.load(tool.to_dict())
        self.assertEqual(restored.points, tool.points)
        restored.load({"a": {"time": 1, "price": 2.0}, "b": None, "c": {"time": 5, "price": 1.0}})
        self.assertEqual(restored.state, "A")
        restored.load("garbage")
        self.assertTrue(restored.is_empty())


if __name__ == "__main__":
    unittest.main()
