import json
import os
import sys
import tempfile
import unittest


# Allow `import core.*` like the app does when running `python app/main.py`.
REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
APP_DIR = os.path.join(REPO_ROOT, "app")
if APP_DIR not in sys.path:
    sys.path.insert(0, APP_DIR)


from core.config import ChartConfig, load_config
from core.errors import ChartInvariantError, check_invariant
from core.preferences import ChartPreferences, PreferenceStore


class _Sink:
    def __init__(self):
        self.errors = []

    def append_error(self, message):
        self.errors.append(message)


class ChartConfigTests(unittest.TestCase):
    def test_unknown_key_rejected(self):
        with self.assertRaises(ValueError):
            ChartConfig.from_mapping({"animation_ms": 100, "zoom_speed": 2})

    def test_values_are_coerced(self):
        cfg = ChartConfig.from_mapping({"ma_periods": [20, "50"], "snap_zoom_stops": 1, "wheel_base": 2, "history_limit": "5"})
        self.assertEqual(cfg.ma_periods, (20, 50))
        self.assertIs(cfg.snap_zoom_stops, True)
        self.assertEqual(cfg.wheel_base, 2.0)
        self.assertEqual(cfg.history_limit, 5)

    def test_load_config_file_and_defaults(self):
        self.assertEqual(load_config(""), ChartConfig())
        self.assertEqual(load_config("/nonexistent/chart_config.json"), ChartConfig())
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "chart_config.json")
            with open(path, "w", encoding="utf-8") as handle:
                json.dump({"width": 640, "market_tz": "Europe/London"}, handle)
            cfg = load_config(path)
        self.assertEqual(cfg.width, 640.0)
        self.assertEqual(cfg.market_tz, "Europe/London")

    def test_plot_geometry(self):
        cfg = ChartConfig().with_size(400, 200)
        self.assertEqual(cfg.plot_width, 400.0)
        self.assertEqual(cfg.plot_height, 150.0)
        self.assertTrue(cfg.contains(10, 100))
        self.assertFalse(cfg.contains(10, 190))


class InvariantTests(unittest.TestCase):
    def test_strict_raises(self):
        with self.assertRaises(ChartInvariantError):
            check_invariant(False, "start >= end", strict=True)

    def test_lenient_reports(self):
        sink = _Sink()
        self.assertFalse(check_invariant(False, "start >= end", strict=False, error_sink=sink))
        self.assertTrue(check_invariant(True, "fine", strict=True, error_sink=sink))
        self.assertEqual(sink.errors, ["invariant violated: start >= end"])


class ChartPreferencesTests(unittest.TestCase):
    def test_tolerant_decode(self):
        prefs = ChartPreferences.from_dict(
            {"enabled_mas": [50, "200", "x", 7], "last_period": "all", "volume_enabled": 1, "extra": True},
            allowed_mas=(5, 10, 50, 100, 200),
        )
        self.assertEqual(prefs.enabled_mas, (50, 200))
        self.assertEqual(prefs.last_period, "MAX")
        self.assertTrue(prefs.volume_enabled)
        self.assertEqual(ChartPreferences.from_json("{not json"), ChartPreferences())
        self.assertEqual(ChartPreferences.from_dict({"last_period": "2Y"}).last_period, "1D")
        self.assertEqual(ChartPreferences.from_dict({"last_period": None}).last_period, "1D")
        self.assertEqual(ChartPreferences.from_dict({"last_period": "1w"}).last_period, "1W")

    def test_with_ma(self):
        prefs = ChartPreferences().with_ma(200, True).with_ma(50, True).with_ma(200, False)
        self.assertEqual(prefs.enabled_mas, (50,))


class PreferenceStoreTests(unittest.TestCase):
    def _make_db(self):
        tmp = tempfile.NamedTemporaryFile(prefix="chart_prefs_", suffix=".sqlite", delete=False)
        tmp.close()
        return tmp.name, PreferenceStore(tmp.name)

    def _cleanup_db_files(self, path):
        for p in (path, path + "-wal", path + "-shm"):
            try:
                os.remove(p)
            except Exception:
                pass

    def test_preferences_round_trip(self):
        path, store = self._make_db()
        try:
            self.assertEqual(store.load_preferences("aapl"), ChartPreferences())
            prefs = ChartPreferences(enabled_mas=(50, 200), signals_enabled=True, last_period="1Y")
            store.save_preferences("aapl", prefs, updated_at=1)
            self.assertEqual(store.load_preferences("AAPL"), prefs)
            self.assertEqual(store.load_preferences("AAPL", allowed_mas=(50,)).enabled_mas, (50,))
        finally:
            self._cleanup_db_files(path)

    def test_measurements_round_trip_and_clear(self):
        path, store = self._make_db()
        try:
            points = {"a": {"time": 1, "price": 2.0}, "b": {"time": 3, "price": 4.0}, "c": None}
            store.save_measurements("msft", points, updated_at=1)
            self.assertEqual(store.load_measurements("MSFT"), points)
            store.save_measurements("msft", {"a": None, "b": None, "c": None}, updated_at=2)
            self.assertEqual(store.load_measurements("MSFT"), {})
        finally:
            self._cleanup_db_files(path)


if __name__ == "__main__":
    unittest.main()
