import contextlib
import io
import os
import sys
import tempfile
import unittest

# Allow `import core.*` like the app does when running `python app/main.py`.
REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
APP_DIR = os.path.join(REPO_ROOT, "app")
if APP_DIR not in sys.path:
    sys.path.insert(0, APP_DIR)

from core.cli import main


class HeadlessCliTests(unittest.TestCase):
    def test_synthetic_render_with_zoom_and_measure(self):
        with tempfile.TemporaryDirectory() as tmp:
            svg_path = os.path.join(tmp, "chart.svg")
            out = io.StringIO()
            with contextlib.redirect_stdout(out):
                code = main([
                    "--synthetic", "400",
                    "--period", "MAX",
                    "--signals",
                    "--zoom-start", "2024-01-02",
                    "--zoom-end", "2024-01-26",
                    "--measure", "2024-01-08",
                    "--measure", "2024-01-19",
                    "--svg", svg_path,
                ])
            self.assertEqual(code, 0)
            with open(svg_path, "r", encoding="utf-8") as handle:
                self.assertTrue(handle.read().startswith("<svg"))
        text = out.getvalue()
        self.assertIn("symbol=SYNTH period=MAX points=400", text)
        self.assertIn("measure ab", text)
        self.assertIn("resolution_request level=hourly", text)

    def test_requires_input(self):
        with self.assertRaises(SystemExit):
            main(["--period", "1Y"])


if __name__ == "__main__":
    unittest.main()
