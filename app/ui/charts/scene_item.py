from __future__ import annotations

from typing import Optional

import pyqtgraph as pg
from PyQt6.QtCore import QPointF, QRectF, Qt
from PyQt6.QtGui import QColor, QFont, QFontMetricsF, QPainter, QPainterPath, QPicture

from core.scene import CircleShape, LineShape, PathShape, RectShape, Scene, TextShape


def _pen(color: Optional[str], width: float = 1.0, dashed: bool = False):
    if not color:
        return pg.mkPen(None)
    pen = pg.mkPen(QColor(color), width=width)
    if dashed:
        pen.setStyle(Qt.PenStyle.DashLine)
    return pen


def _brush(color: Optional[str]):
    if not color:
        return pg.mkBrush(None)
    return pg.mkBrush(QColor(color))


def painter_path(commands) -> QPainterPath:
    path = QPainterPath()
    for cmd in commands:
        op = cmd[0]
        if op == 'M':
            path.moveTo(cmd[1], cmd[2])
        elif op == 'L':
            path.lineTo(cmd[1], cmd[2])
        elif op == 'C':
            path.cubicTo(cmd[1], cmd[2], cmd[3], cmd[4], cmd[5], cmd[6])
        elif op == 'Z':
            path.closeSubpath()
    return path


class SceneItem(pg.GraphicsObject):
    """
    Paints a chart Scene in widget pixel coordinates.

    Paint stays "dumb draw": the scene is recorded into a QPicture once per
    set_scene() and replayed on every paint.
    """

    def __init__(self, scene: Optional[Scene] = None) -> None:
        super().__init__()
        self._scene: Optional[Scene] = None
        self._picture: Optional[QPicture] = None
        self._bounds = QRectF()
        if scene is not None:
            self.set_scene(scene)

    @property
    def scene_model(self) -> Optional[Scene]:
        return self._scene

    def set_scene(self, scene: Scene) -> None:
        self._scene = scene
        self._picture = None
        self.prepareGeometryChange()
        self._bounds = QRectF(0.0, 0.0, float(scene.width), float(scene.height))
        self.update()

    def paint(self, painter: QPainter, option, widget) -> None:
        if self._scene is None:
            return
        if self._picture is None:
            self._picture = self._render(self._scene)
        painter.drawPicture(0, 0, self._picture)

    def boundingRect(self):
        return self._bounds if not self._bounds.isNull() else super().boundingRect()

    def _render(self, scene: Scene) -> QPicture:
        picture = QPicture()
        painter = QPainter(picture)
        try:
            painter.setRenderHint(QPainter.RenderHint.Antialiasing, True)
            clip = None
            if scene.clip is not None:
                c = scene.clip
                clip = QRectF(c.x, c.y, c.width, c.height)
            for shape in scene.shapes:
                painter.save()
                try:
                    if clip is not None and shape.layer != 'axis':
                        painter.setClipRect(clip)
                    self._draw(painter, shape)
                finally:
                    painter.restore()
        finally:
            painter.end()
        return picture

    def _draw(self, painter: QPainter, shape) -> None:
        if isinstance(shape, PathShape):
            painter.setOpacity(shape.opacity)
            painter.setPen(_pen(shape.stroke, shape.width, shape.dashed))
            painter.setBrush(_brush(shape.fill))
            painter.drawPath(painter_path(shape.commands))
        elif isinstance(shape, LineShape):
            painter.setOpacity(shape.opacity)
            painter.setPen(_pen(shape.stroke, shape.width, shape.dashed))
            painter.drawLine(QPointF(shape.x1, shape.y1), QPointF(shape.x2, shape.y2))
        elif isinstance(shape, CircleShape):
            painter.setOpacity(shape.opacity)
            painter.setPen(_pen(shape.stroke, shape.width))
            painter.setBrush(_brush(shape.fill))
            painter.drawEllipse(QPointF(shape.cx, shape.cy), shape.r, shape.r)
        elif isinstance(shape, RectShape):
            painter.setOpacity(shape.opacity)
            painter.setPen(_pen(shape.stroke))
            painter.setBrush(_brush(shape.fill))
            rect = QRectF(shape.x, shape.y, shape.width, shape.height)
            if shape.radius > 0:
                painter.drawRoundedRect(rect, shape.radius, shape.radius)
            else:
                painter.drawRect(rect)
        elif isinstance(shape, TextShape):
            font = QFont()
            font.setPointSizeF(max(1.0, shape.size))
            font.setBold(shape.bold)
            painter.setFont(font)
            painter.setPen(_pen(shape.color))
            advance = QFontMetricsF(font).horizontalAdvance(shape.text)
            x = shape.x
            if shape.anchor == 'middle':
                x -= advance / 2.0
            elif shape.anchor == 'end':
                x -= advance
            painter.drawText(QPointF(x, shape.y), shape.text)
