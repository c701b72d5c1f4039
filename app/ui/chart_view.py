import os
import time
from typing import Dict, Optional

from PyQt6.QtWidgets import QWidget, QVBoxLayout, QHBoxLayout, QPushButton, QLabel, QButtonGroup
from PyQt6.QtCore import QTimer

from core.chart_engine import ChartEngine
from core.config import ChartConfig
from core.feeds import FeedSnapshot, load_snapshot
from core.models import PERIODS
from core.preferences import ChartPreferences, PreferenceStore
from core.signals import MA_COLORS
from .chart_canvas import ChartCanvas


class ChartView(QWidget):
    def __init__(
        self,
        config: Optional[ChartConfig] = None,
        store: Optional[PreferenceStore] = None,
        error_sink=None,
        debug_sink=None,
    ) -> None:
        super().__init__()
        self.config = config or ChartConfig()
        self.store = store
        self.error_sink = error_sink
        self.debug_sink = debug_sink
        self.snapshot: Optional[FeedSnapshot] = None
        self._saved_measure: Dict = {}

        self.engine = ChartEngine(
            config=self.config,
            error_sink=error_sink,
            debug_sink=debug_sink,
            on_hover=self._on_hover,
            on_resolution_request=self._on_resolution_request,
            on_period_change=self._on_period_change,
        )

        layout = QVBoxLayout(self)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.setSpacing(6)

        header = QHBoxLayout()
        self.symbol_label = QLabel('-')
        self.symbol_label.setObjectName('SymbolLabel')
        self.price_label = QLabel('')
        self.price_label.setObjectName('PriceLabel')
        self.change_label = QLabel('')
        header.addWidget(self.symbol_label)
        header.addWidget(self.price_label)
        header.addWidget(self.change_label)
        header.addStretch(1)
        layout.addLayout(header)

        self.canvas = ChartCanvas(self.engine)
        self.canvas.interaction.connect(self._persist_measurements)
        layout.addWidget(self.canvas, 1)

        controls = QHBoxLayout()
        self.period_group = QButtonGroup(self)
        self.period_group.setExclusive(True)
        self.period_buttons: Dict[str, QPushButton] = {}
        for period in PERIODS:
            btn = QPushButton(period)
            btn.setCheckable(True)
            btn.setObjectName('PeriodButton')
            btn.clicked.connect(lambda _checked, p=period: self.set_period(p))
            self.period_group.addButton(btn)
            self.period_buttons[period] = btn
            controls.addWidget(btn)
        controls.addStretch(1)

        self.ma_buttons: Dict[int, QPushButton] = {}
        for length in self.config.ma_periods:
            btn = QPushButton(f'MA{length}')
            btn.setCheckable(True)
            btn.setStyleSheet(f'QPushButton:checked {{ color: {MA_COLORS.get(length, "#9CA3AF")}; }}')
            btn.toggled.connect(lambda checked, n=length: self._toggle_ma(n, checked))
            self.ma_buttons[length] = btn
            controls.addWidget(btn)

        self.signals_btn = self._toggle_button('Signals', 'signals_enabled')
        self.events_btn = self._toggle_button('Events', 'events_enabled')
        self.volume_btn = self._toggle_button('Volume', 'volume_enabled')
        for btn in (self.signals_btn, self.events_btn, self.volume_btn):
            controls.addWidget(btn)
        layout.addLayout(controls)

        self._sync_controls()

    def _toggle_button(self, text: str, field_name: str) -> QPushButton:
        btn = QPushButton(text)
        btn.setCheckable(True)
        btn.toggled.connect(lambda checked, f=field_name: self._toggle_flag(f, checked))
        return btn

    # -- data -----------------------------------------------------------------

    def load_snapshot_file(self, path: str) -> None:
        try:
            snapshot = load_snapshot(path, self.config.market_tz, self.error_sink)
        except (OSError, ValueError) as exc:
            if self.error_sink is not None:
                self.error_sink.append_error(f'Failed to load snapshot {os.path.basename(path)}: {exc}')
            return
        self.set_snapshot(snapshot)

    def set_snapshot(self, snapshot: FeedSnapshot) -> None:
        symbol_changed = snapshot.symbol.upper() != self.engine.symbol
        self.snapshot = snapshot
        if symbol_changed and self.store is not None and snapshot.symbol:
            prefs = self.store.load_preferences(snapshot.symbol, self.config.ma_periods)
            self.engine.set_preferences(prefs)
            self.engine.period = prefs.last_period
        self.engine.set_snapshot(snapshot)
        if symbol_changed and self.store is not None and snapshot.symbol:
            self.engine.measurement.load(self.store.load_measurements(snapshot.symbol))
            self._saved_measure = self.engine.measurement.to_dict()
        self.symbol_label.setText(snapshot.symbol or '-')
        self._sync_controls()
        self._show_price(None)
        self.canvas.refresh()

    def set_period(self, period: str) -> None:
        self.engine.set_period(period)
        self.canvas.refresh()

    # -- engine callbacks ---------------------------------------------------------

    def _on_hover(self, price: Optional[float], label: str, reference: Optional[float]) -> None:
        self._show_price(price, label, reference)

    def _on_period_change(self, period: str) -> None:
        btn = self.period_buttons.get(period)
        if btn is not None and not btn.isChecked():
            btn.setChecked(True)
        self._save_preferences()

    def _on_resolution_request(self, level: str, start_ms: float, end_ms: float) -> None:
        if self.debug_sink is not None:
            self.debug_sink.append(f'resolution request: {level} {int(start_ms)}..{int(end_ms)}')
        # Fire-and-forget: the engine keeps rendering what it has until data arrives.
        QTimer.singleShot(0, lambda: self._serve_resolution(level, start_ms, end_ms))

    def _serve_resolution(self, level: str, start_ms: float, end_ms: float) -> None:
        snap = self.snapshot
        if snap is None:
            return
        if level == 'intraday':
            source = snap.intraday
        elif level == 'hourly':
            source = snap.hourly
        else:
            source = []
        candles = [c for c in source if start_ms <= c.time <= end_ms]
        if level != 'daily' and not candles:
            return
        self.engine.apply_resolution(level, candles, start_ms, end_ms)
        self.canvas.refresh()

    # -- controls -----------------------------------------------------------------

    def _toggle_ma(self, length: int, checked: bool) -> None:
        prefs = self.engine.preferences
        if (length in prefs.enabled_mas) == checked:
            return
        self.engine.set_preferences(prefs.with_ma(length, checked))
        self._save_preferences()
        self.canvas.refresh()

    def _toggle_flag(self, field_name: str, checked: bool) -> None:
        prefs = self.engine.preferences
        if getattr(prefs, field_name) == checked:
            return
        values = prefs.to_dict()
        values[field_name] = checked
        self.engine.set_preferences(ChartPreferences.from_dict(values))
        self._save_preferences()
        self.canvas.refresh()

    def _sync_controls(self) -> None:
        prefs = self.engine.preferences
        btn = self.period_buttons.get(self.engine.period)
        if btn is not None:
            btn.setChecked(True)
        for length, button in self.ma_buttons.items():
            button.blockSignals(True)
            button.setChecked(length in prefs.enabled_mas)
            button.blockSignals(False)
        for button, flag in ((self.signals_btn, prefs.signals_enabled), (self.events_btn, prefs.events_enabled), (self.volume_btn, prefs.volume_enabled)):
            button.blockSignals(True)
            button.setChecked(flag)
            button.blockSignals(False)

    def _show_price(self, price: Optional[float], label: str = '', reference: Optional[float] = None) -> None:
        snap = self.snapshot
        if price is None:
            price = snap.current_price if snap is not None else None
            reference = self.engine.reference_price()
            label = 'Today' if self.engine.period == '1D' else ''
        if price is None:
            self.price_label.setText('')
            self.change_label.setText('')
            return
        self.price_label.setText(f'${price:,.2f}')
        if reference:
            change = price - reference
            pct = change / reference * 100.0
            color = '#00C805' if change >= 0 else '#FF3B30'
            sign = '+' if change >= 0 else '-'
            self.change_label.setText(f'{sign}${abs(change):,.2f} ({sign}{abs(pct):.2f}%) {label}')
            self.change_label.setStyleSheet(f'color: {color};')
        else:
            self.change_label.setText(label)

    # -- persistence ------------------------------------------------------------------

    def _save_preferences(self) -> None:
        if self.store is None or not self.engine.symbol:
            return
        try:
            self.store.save_preferences(self.engine.symbol, self.engine.preferences, int(time.time() * 1000))
        except Exception as exc:
            if self.error_sink is not None:
                self.error_sink.append_error(f'Failed to save chart preferences: {exc}')

    def _persist_measurements(self) -> None:
        current = self.engine.measurement.to_dict()
        if current == self._saved_measure:
            return
        self._saved_measure = current
        if self.store is None or not self.engine.symbol:
            return
        try:
            self.store.save_measurements(self.engine.symbol, current, int(time.time() * 1000))
        except Exception as exc:
            if self.error_sink is not None:
                self.error_sink.append_error(f'Failed to save measure points: {exc}')

    def export_chart_png(self, path: str) -> None:
        pixmap = self.canvas.grab()
        if not pixmap.save(path, 'PNG'):
            raise OSError(f'Could not write {path}')

    def shutdown(self) -> None:
        self._save_preferences()
        self._persist_measurements()
