from typing import List, Optional, Tuple

import pyqtgraph as pg
from PyQt6.QtCore import QEvent, Qt, QTimer, pyqtSignal
from PyQt6.QtGui import QEventPoint

from core.chart_engine import ChartEngine
from core.viewport import InputMode
from .charts.scene_item import SceneItem


_KEYS = {
    Qt.Key.Key_Plus: '+',
    Qt.Key.Key_Equal: '=',
    Qt.Key.Key_Minus: '-',
    Qt.Key.Key_Underscore: '_',
    Qt.Key.Key_Left: 'Left',
    Qt.Key.Key_Right: 'Right',
    Qt.Key.Key_Home: 'Home',
    Qt.Key.Key_Backspace: 'Backspace',
    Qt.Key.Key_Escape: 'Escape',
}


class ChartCanvas(pg.GraphicsView):
    """Pixel-space view that forwards raw input to a ChartEngine and repaints its scene."""

    interaction = pyqtSignal()

    def __init__(self, engine: ChartEngine, parent=None) -> None:
        super().__init__(parent, background='#0B0F14')
        self.engine = engine
        self.item = SceneItem()
        self.addItem(self.item)
        self.setMouseTracking(True)
        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self.viewport().setAttribute(Qt.WidgetAttribute.WA_AcceptTouchEvents, True)
        self._last_touch: Optional[Tuple[float, float]] = None

        self._anim_timer = QTimer(self)
        self._anim_timer.setInterval(16)
        self._anim_timer.timeout.connect(self._on_anim_tick)

    def refresh(self) -> None:
        try:
            self.item.set_scene(self.engine.build_scene())
        except Exception as exc:
            sink = self.engine.error_sink
            if sink is not None:
                sink.append_error(f'render failed: {exc}')
            return
        if self.engine.viewport.is_animating and not self._anim_timer.isActive():
            self._anim_timer.start()

    def _on_anim_tick(self) -> None:
        running = self.engine.tick()
        if not running:
            self._anim_timer.stop()
        self.refresh()

    def _after_input(self) -> None:
        self.refresh()
        self.interaction.emit()

    def resizeEvent(self, ev) -> None:
        super().resizeEvent(ev)
        size = self.viewport().size()
        self.engine.resize(max(1, size.width()), max(1, size.height()))
        self.refresh()

    def mousePressEvent(self, ev) -> None:
        if ev.button() != Qt.MouseButton.LeftButton:
            super().mousePressEvent(ev)
            return
        pos = ev.position()
        self.engine.pointer_down(pos.x(), pos.y())
        self._after_input()
        ev.accept()

    def mouseMoveEvent(self, ev) -> None:
        pos = ev.position()
        self.engine.pointer_move(pos.x(), pos.y())
        self.refresh()
        ev.accept()

    def mouseReleaseEvent(self, ev) -> None:
        if ev.button() != Qt.MouseButton.LeftButton:
            super().mouseReleaseEvent(ev)
            return
        pos = ev.position()
        self.engine.pointer_up(pos.x(), pos.y())
        self._after_input()
        ev.accept()

    def leaveEvent(self, ev) -> None:
        self.engine.pointer_leave()
        self.refresh()
        super().leaveEvent(ev)

    def wheelEvent(self, ev) -> None:
        if ev is None:
            return
        try:
            delta = ev.angleDelta().y()
        except Exception:
            delta = 0
        if delta == 0:
            return
        self.engine.wheel(ev.position().x(), float(delta))
        self._after_input()
        ev.accept()

    def keyPressEvent(self, ev) -> None:
        name = _KEYS.get(Qt.Key(ev.key()))
        if name is None:
            super().keyPressEvent(ev)
            return
        self.engine.key(name)
        self._after_input()
        ev.accept()

    def viewportEvent(self, ev) -> bool:
        kind = ev.type()
        if kind in (QEvent.Type.TouchBegin, QEvent.Type.TouchUpdate, QEvent.Type.TouchEnd, QEvent.Type.TouchCancel):
            self._handle_touch(ev)
            ev.accept()
            return True
        return super().viewportEvent(ev)

    def _handle_touch(self, ev) -> None:
        kind = ev.type()
        pts = list(ev.points())
        active: List[Tuple[float, float]] = [
            (p.position().x(), p.position().y())
            for p in pts
            if p.state() != QEventPoint.State.Released
        ]
        if kind == QEvent.Type.TouchBegin:
            self.engine.touch_begin(active)
        elif kind == QEvent.Type.TouchUpdate:
            if len(active) >= 2 and self.engine.viewport.mode != InputMode.PINCHING:
                self.engine.touch_begin(active)
            else:
                self.engine.touch_move(active)
            released = [p for p in pts if p.state() == QEventPoint.State.Released]
            if released and active:
                self.engine.touch_end((released[0].position().x(), released[0].position().y()), active)
        else:
            last = pts[0].position() if pts else None
            point = (last.x(), last.y()) if last is not None else (self._last_touch or (0.0, 0.0))
            self.engine.touch_end(point, [])
        if active:
            self._last_touch = active[0]
        self._after_input()
