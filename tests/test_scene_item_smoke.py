import os
import sys
import unittest
from datetime import date

# Allow `import core.*` like the app does when running `python app/main.py`.
REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
APP_DIR = os.path.join(REPO_ROOT, "app")
if APP_DIR not in sys.path:
    sys.path.insert(0, APP_DIR)

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")


class TestSceneItemSmoke(unittest.TestCase):
    def test_paint_does_not_crash(self) -> None:
        # Minimal smoke test: render an engine scene into an image twice.
        from PyQt6.QtCore import QRectF
        from PyQt6.QtGui import QImage, QPainter
        from PyQt6.QtWidgets import QApplication, QStyleOptionGraphicsItem

        from core.chart_engine import ChartEngine
        from core.cli import synthetic_snapshot
        from core.config import ChartConfig
        from core.preferences import ChartPreferences
        from core.sessions import local_ms
        from ui.charts.scene_item import SceneItem, painter_path

        app = QApplication.instance() or QApplication([])

        _ = app  # keep reference for the duration of the test

        tz = "America/New_York"
        engine = ChartEngine(
            config=ChartConfig(width=320.0, height=160.0),
            preferences=ChartPreferences(enabled_mas=(50,), volume_enabled=True, last_period="MAX"),
        )
        engine.set_snapshot(synthetic_snapshot(120, local_ms(date(2024, 6, 14), 16, 0, tz), tz))
        engine.pointer_down(100.0, 60.0)
        engine.pointer_up(100.0, 60.0)
        item = SceneItem(engine.build_scene())

        img = QImage(320, 160, QImage.Format.Format_ARGB32_Premultiplied)
        img.fill(0)
        painter = QPainter(img)
        try:
            opt = QStyleOptionGraphicsItem()
            opt.exposedRect = QRectF(0.0, 0.0, 320.0, 160.0)
            item.paint(painter, opt, None)
            item.paint(painter, opt, None)
        finally:
            painter.end()

        # The scene is recorded once and replayed.
        self.assertIsNotNone(getattr(item, "_picture", None))
        self.assertEqual(item.boundingRect(), QRectF(0.0, 0.0, 320.0, 160.0))

        path = painter_path([("M", 0.0, 0.0), ("C", 1.0, 1.0, 2.0, 2.0, 3.0, 3.0), ("L", 3.0, 0.0), ("Z",)])
        self.assertFalse(path.isEmpty())


if __name__ == "__main__":
    unittest.main()
