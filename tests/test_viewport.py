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
from core.models import DAY_MS, DataPoint, ZoomWindow
from core.sessions import local_ms
from core.viewport import (
    Animating,
    InputMode,
    PriceScale,
    ViewportController,
    ease_out_cubic,
    natural_level,
    resolution_level,
)

T0 = 1_700_000_000_000
TZ = "America/New_York"


def _points(n=100):
    return [DataPoint(T0 + i * DAY_MS, f"d{i}", 100.0 + i) for i in range(n)]


def _t(i):
    return T0 + i * DAY_MS


class _Sink:
    def __init__(self):
        self.errors = []

    def append_error(self, message):
        self.errors.append(message)


class ViewportTests(unittest.TestCase):
    def make(self):
        vp = ViewportController(ChartConfig(strict_invariants=True), clock=lambda: 0.0)
        vp.set_period("MAX", _points(), animate=False)
        return vp

    def test_reset_restores_full_extent_mapping(self):
        vp = self.make()
        before = [vp.x_for_index(i) for i in range(0, 100, 7)]
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), animate=False)
        self.assertTrue(vp.is_zoomed)
        vp.reset(animate=False)
        after = [vp.x_for_index(i) for i in range(0, 100, 7)]
        self.assertIsNone(vp.window)
        for a, b in zip(before, after):
            self.assertAlmostEqual(a, b, places=9)

    def test_wheel_keeps_anchor_under_cursor(self):
        vp = self.make()
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), animate=False)
        anchor = vp.time_at_x(400.0)
        self.assertAlmostEqual(vp.x_for_time(anchor), 400.0, places=6)
        self.assertTrue(vp.wheel(400.0, 120.0, now_ms=1000.0))
        vp.tick(now_ms=5000.0)
        self.assertFalse(vp.is_animating)
        self.assertLess(vp.window.span, 30 * DAY_MS)
        self.assertAlmostEqual(vp.x_for_time(anchor), 400.0, places=6)

    def test_off_center_anchor(self):
        vp = self.make()
        vp.zoom_to(ZoomWindow(_t(10), _t(70)), animate=False)
        anchor = vp.time_at_x(200.0)
        vp.wheel(200.0, 240.0, now_ms=1000.0)
        vp.tick(now_ms=5000.0)
        self.assertAlmostEqual(vp.x_for_time(anchor), 200.0, places=6)

    def test_zoom_in_never_passes_minimum_width(self):
        vp = self.make()
        for step in range(60):
            vp.wheel(400.0, 480.0, now_ms=step * 1000.0)
        self.assertIsNotNone(vp.window)
        self.assertGreaterEqual(vp.window.span, 20 * DAY_MS - 1)
        self.assertLess(vp.window.span, 21 * DAY_MS)

    def test_zoom_out_past_full_extent_unsets_window(self):
        vp = self.make()
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), animate=False)
        for step in range(4):
            vp.wheel(400.0, -480.0, now_ms=step * 1000.0)
        self.assertIsNone(vp.window)

    def test_pan_clamps_at_data_start(self):
        vp = self.make()
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), animate=False)
        self.assertTrue(vp.pan_fraction(-10.0, now_ms=0.0))
        self.assertAlmostEqual(vp.window.start_ms, _t(0))
        self.assertAlmostEqual(vp.window.span, 30 * DAY_MS)

    def test_pan_requires_zoom(self):
        vp = self.make()
        self.assertFalse(vp.pan_fraction(0.5))
        vp.pointer_down(100.0, 100.0)
        self.assertEqual(vp.pointer_move(200.0, 100.0), InputMode.HOVERING)
        self.assertIsNone(vp.window)

    def test_1d_window_stays_on_the_samples(self):
        vp = ViewportController(ChartConfig(strict_invariants=True), clock=lambda: 0.0)
        day = date(2024, 3, 5)
        open_ms = local_ms(day, 9, 30, TZ)
        pts = [DataPoint(open_ms + i * 60_000, "", 100.0) for i in range(150)]
        vp.set_period("1D", pts, animate=False)
        vp.zoom_to(ZoomWindow(local_ms(day, 21, 0, TZ), local_ms(day, 23, 0, TZ)), animate=False)
        self.assertEqual(vp.window, ZoomWindow(pts[29].time, pts[-1].time))
        self.assertEqual(vp.visible_indices(margin=0), (29, 149))
        self.assertIsNone(vp.key("Right", now_ms=0.0))

        vp.zoom_to(ZoomWindow(local_ms(day, 10, 0, TZ), local_ms(day, 10, 30, TZ)), animate=False)
        for _ in range(60):
            vp.key("Right", now_ms=0.0)
        self.assertLessEqual(vp.window.end_ms, pts[-1].time)
        self.assertGreaterEqual(vp.window.start_ms, pts[0].time)
        self.assertEqual(vp.visible_indices(margin=0)[1], 149)

        vp.zoom_to(ZoomWindow(local_ms(day, 4, 0, TZ), local_ms(day, 12, 0, TZ)), animate=False)
        self.assertIsNone(vp.window)

    def test_drag_pans_and_click_measures(self):
        vp = self.make()
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), animate=False)
        self.assertEqual(vp.pointer_down(400.0, 100.0), InputMode.MEASURING)
        self.assertEqual(vp.pointer_move(402.0, 100.0), InputMode.MEASURING)
        self.assertEqual(vp.pointer_move(500.0, 100.0), InputMode.PANNING)
        # Dragging right reveals earlier data.
        self.assertAlmostEqual(vp.window.start_ms, _t(6.25))
        self.assertEqual(vp.pointer_up(500.0, 100.0), "pan_end")
        vp.pointer_down(300.0, 100.0)
        self.assertEqual(vp.pointer_up(302.0, 100.0), "click")
        self.assertEqual(vp.mode, InputMode.HOVERING)

    def test_keyboard_zoom_and_back(self):
        vp = self.make()
        self.assertEqual(vp.key("+", now_ms=0.0), "zoom_in")
        self.assertIsNotNone(vp.window)
        self.assertEqual(vp.key("Right", now_ms=0.0), "pan")
        self.assertEqual(vp.key("Backspace", now_ms=0.0), "back")
        self.assertEqual(vp.key("Backspace", now_ms=0.0), "back")
        self.assertIsNone(vp.window)
        self.assertIsNone(vp.key("Backspace", now_ms=0.0))
        self.assertEqual(vp.key("Escape"), "clear")
        self.assertIsNone(vp.key("q"))

    def test_history_is_capped(self):
        vp = self.make()
        for _ in range(30):
            vp.key("+", now_ms=0.0)
            vp.key("Left", now_ms=0.0)
        self.assertLessEqual(len(vp.history), 20)

    def test_wheel_burst_is_one_history_entry(self):
        vp = self.make()
        for now in (0.0, 100.0, 200.0):
            vp.wheel(400.0, 120.0, now_ms=now)
        self.assertEqual(vp.history, [None])
        vp.wheel(400.0, 120.0, now_ms=1000.0)
        self.assertEqual(len(vp.history), 2)

    def test_animation_eases_to_target(self):
        vp = self.make()
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), now_ms=0.0)
        self.assertTrue(vp.is_animating)
        self.assertTrue(vp.tick(now_ms=100.0))
        lo, hi = vp.view_domain()
        self.assertTrue(0.0 < lo < 10.0)
        self.assertTrue(40.0 < hi < 99.0)
        self.assertFalse(vp.tick(now_ms=250.0))
        lo, hi = vp.view_domain()
        self.assertAlmostEqual(lo, 10.0)
        self.assertAlmostEqual(hi, 40.0)

    def test_new_zoom_starts_from_current_frame(self):
        vp = self.make()
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), now_ms=0.0)
        vp.tick(now_ms=100.0)
        frame = vp.view_domain()
        vp.zoom_to(ZoomWindow(_t(50), _t(80)), now_ms=100.0)
        self.assertIsInstance(vp.animation, Animating)
        self.assertEqual(vp.animation.started_ms, 100.0)
        self.assertAlmostEqual(vp.domain_of_time(vp.animation.start[0]), frame[0])
        self.assertAlmostEqual(vp.domain_of_time(vp.animation.start[1]), frame[1])

    def test_ease_out_cubic(self):
        self.assertEqual(ease_out_cubic(0.0), 0.0)
        self.assertEqual(ease_out_cubic(1.0), 1.0)
        self.assertAlmostEqual(ease_out_cubic(0.5), 0.875)

    def test_touch_sessions(self):
        vp = self.make()
        self.assertEqual(vp.touch_begin([(100.0, 100.0)]), InputMode.HOVERING)
        self.assertEqual(vp.touch_end([]), "tap")
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), animate=False)
        self.assertEqual(vp.touch_begin([(400.0, 100.0)]), InputMode.PANNING)
        vp.touch_move([(500.0, 100.0)])
        self.assertAlmostEqual(vp.window.start_ms, _t(6.25))
        self.assertEqual(vp.touch_end([]), "pan_end")
        self.assertEqual(vp.touch_begin([(1.0, 1.0), (2.0, 2.0)]), InputMode.PINCHING)
        self.assertIsNone(vp.touch_end([(1.0, 1.0)]))
        self.assertEqual(vp.touch_end([]), "pinch_end")

    def test_daily_period_opens_on_its_window(self):
        vp = self.make()
        vp.set_period("3M", _points(), animate=False)
        self.assertIsNotNone(vp.window)
        self.assertAlmostEqual(vp.window.end_ms, _t(99))
        self.assertGreater(vp.window.start_ms, _t(0))


class ResolutionEscalationTests(unittest.TestCase):
    def make(self, calls, sink=None, callback=None):
        vp = ViewportController(
            ChartConfig(strict_invariants=True),
            on_resolution_request=callback or (lambda *args: calls.append(args)),
            error_sink=sink,
            clock=lambda: 0.0,
        )
        vp.set_period("MAX", _points(), animate=False)
        return vp

    def test_levels(self):
        config = ChartConfig()
        self.assertEqual(resolution_level(1 * DAY_MS, config), "intraday")
        self.assertEqual(resolution_level(30 * DAY_MS, config), "hourly")
        self.assertEqual(resolution_level(90 * DAY_MS, config), "daily")
        self.assertEqual(natural_level("1D"), "intraday")
        self.assertEqual(natural_level("1M"), "hourly")
        self.assertEqual(natural_level("MAX"), "daily")

    def test_escalate_then_return_to_natural(self):
        calls = []
        vp = self.make(calls)
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), animate=False)
        self.assertEqual(calls, [("hourly", float(_t(10)), float(_t(40)))])
        vp.zoom_to(ZoomWindow(_t(10), _t(80)), animate=False)
        self.assertEqual(calls[-1][0], "daily")
        vp.zoom_to(ZoomWindow(_t(10), _t(85)), animate=False)
        self.assertEqual(len(calls), 2)

    def test_request_deferred_until_pan_ends(self):
        calls = []
        vp = self.make(calls)
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), animate=False)
        vp.pointer_down(400.0, 100.0)
        vp.pointer_move(450.0, 100.0)
        vp.pointer_move(500.0, 100.0)
        self.assertEqual(len(calls), 1)
        vp.pointer_up(500.0, 100.0)
        self.assertEqual(len(calls), 2)
        self.assertAlmostEqual(calls[-1][1], _t(6.25))

    def test_callback_failure_is_reported(self):
        sink = _Sink()

        def boom(*_args):
            raise RuntimeError("offline")

        vp = self.make([], sink=sink, callback=boom)
        vp.zoom_to(ZoomWindow(_t(10), _t(40)), animate=False)
        self.assertEqual(len(sink.errors), 1)
        self.assertIn("offline", sink.errors[0])

    def test_no_requests_on_1d(self):
        calls = []
        vp = self.make(calls)
        day = date(2024, 3, 5)
        pts = [DataPoint(local_ms(day, 9, 30, TZ) + i * 1_800_000, "", 100.0) for i in range(14)]
        vp.set_period("1D", pts, animate=False)
        self.assertEqual(vp.x_for_time(local_ms(day, 12, 0, TZ)), 400.0)
        vp.wheel(400.0, 480.0, now_ms=0.0)
        self.assertEqual(calls, [])


class PriceScaleTests(unittest.TestCase):
    def test_1d_minimum_range_and_growth(self):
        scale = PriceScale(ChartConfig())
        session = date(2024, 3, 5)
        lo1, hi1 = scale.fit([100.0, 100.1], 100.0, "1D", session)
        self.assertGreaterEqual(hi1 - lo1, 3.0)
        self.assertAlmostEqual(scale.y_for_price(hi1), 20.0)
        lo2, hi2 = scale.fit([100.05], 100.0, "1D", session)
        self.assertLessEqual(lo2, lo1)
        self.assertGreaterEqual(hi2, hi1)

    def test_daily_fit_pads_visible_range(self):
        scale = PriceScale(ChartConfig())
        lo, hi = scale.fit([10.0, 20.0], None, "1Y")
        self.assertAlmostEqual(lo, 10.0 - 0.8)
        self.assertAlmostEqual(hi, 20.0 + 0.8)
        self.assertAlmostEqual(scale.price_at_y(scale.y_for_price(15.0)), 15.0)


if __name__ == "__main__":
    unittest.main()
