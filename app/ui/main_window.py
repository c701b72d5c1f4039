import os
from typing import Optional

from PyQt6.QtWidgets import QMainWindow, QDockWidget, QTabWidget, QFileDialog, QStyle
from PyQt6.QtGui import QAction
from PyQt6.QtCore import Qt, QSettings

from core.config import ChartConfig
from core.preferences import PreferenceStore
from .chart_view import ChartView
from .error_dock import ErrorDock
from .debug_dock import DebugDock


class MainWindow(QMainWindow):
    def __init__(self, config: Optional[ChartConfig] = None, prefs_path: Optional[str] = None) -> None:
        super().__init__()
        self.setWindowTitle('Price Chart')
        self.resize(1200, 640)

        self.error_dock = ErrorDock()
        self.debug_dock = DebugDock()
        store = None
        if prefs_path:
            try:
                os.makedirs(os.path.dirname(prefs_path) or '.', exist_ok=True)
                store = PreferenceStore(prefs_path)
            except Exception as exc:
                self.error_dock.append_error(f'Preferences disabled: {exc}')
        self.chart_view = ChartView(
            config=config,
            store=store,
            error_sink=self.error_dock,
            debug_sink=self.debug_dock,
        )
        self.setCentralWidget(self.chart_view)

        self.addDockWidget(Qt.DockWidgetArea.RightDockWidgetArea, self.error_dock)
        self.addDockWidget(Qt.DockWidgetArea.RightDockWidgetArea, self.debug_dock)
        self.tabifyDockWidget(self.error_dock, self.debug_dock)
        self.setTabPosition(Qt.DockWidgetArea.RightDockWidgetArea, QTabWidget.TabPosition.East)
        self.error_dock.raise_()
        self._set_dock_icons()

        self._settings = QSettings('PriceChart', 'PriceChart')
        self._setup_menu()
        self._restore_layout()

    def _set_dock_icons(self) -> None:
        try:
            style = self.style()
            self.error_dock.setWindowIcon(style.standardIcon(QStyle.StandardPixmap.SP_MessageBoxCritical))
            self.debug_dock.setWindowIcon(style.standardIcon(QStyle.StandardPixmap.SP_ComputerIcon))
        except Exception:
            pass

    def open_snapshot(self, path: str) -> None:
        self.chart_view.load_snapshot_file(path)
        symbol = self.chart_view.engine.symbol
        if symbol:
            self.setWindowTitle(f'{symbol} - Price Chart')

    def closeEvent(self, event) -> None:
        self._save_layout()
        try:
            self.chart_view.shutdown()
        except Exception as exc:
            self.error_dock.append_error(f'Shutdown failed: {exc}')
        super().closeEvent(event)

    def _setup_menu(self) -> None:
        menu_bar = self.menuBar()
        file_menu = menu_bar.addMenu('File')
        window_menu = menu_bar.addMenu('Window')

        open_action = QAction('Open Snapshot...', self)
        open_action.triggered.connect(self._open_snapshot_dialog)
        file_menu.addAction(open_action)

        export_action = QAction('Export Chart as PNG...', self)
        export_action.triggered.connect(self._export_chart_png)
        file_menu.addAction(export_action)

        self._dock_actions = []
        for dock in (self.error_dock, self.debug_dock):
            action = QAction(dock.windowTitle(), self)
            action.setCheckable(True)
            action.setChecked(not dock.isHidden())
            action.triggered.connect(lambda checked, d=dock: self._toggle_dock(d, checked))
            dock.visibilityChanged.connect(lambda visible, a=action: a.setChecked(visible))
            window_menu.addAction(action)
            self._dock_actions.append(action)

    def _toggle_dock(self, dock: QDockWidget, visible: bool) -> None:
        if visible:
            dock.show()
            dock.raise_()
        else:
            dock.hide()

    def _open_snapshot_dialog(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, 'Open Feed Snapshot', os.path.expanduser('~'), 'JSON (*.json)')
        if path:
            self.open_snapshot(path)

    def _export_chart_png(self) -> None:
        symbol = self.chart_view.engine.symbol or 'chart'
        default_path = os.path.join(os.path.expanduser('~'), f'{symbol.lower()}.png')
        path, _ = QFileDialog.getSaveFileName(
            self,
            'Export Chart as PNG',
            default_path,
            'PNG Image (*.png)',
        )
        if not path:
            return
        if not path.lower().endswith('.png'):
            path = f'{path}.png'
        try:
            self.chart_view.export_chart_png(path)
        except Exception as exc:
            self.error_dock.append_error(f'Export failed: {exc}')

    def _save_layout(self) -> None:
        self._settings.setValue('geometry', self.saveGeometry())
        self._settings.setValue('windowState', self.saveState())

    def _restore_layout(self) -> None:
        geometry = self._settings.value('geometry')
        window_state = self._settings.value('windowState')
        if geometry is not None:
            self.restoreGeometry(geometry)
        if window_state is not None:
            self.restoreState(window_state)
