from __future__ import annotations

from dataclasses import dataclass, field
from html import escape
from typing import List, Optional, Sequence, Tuple, Union

from .curve import PathCommand, to_svg


@dataclass(frozen=True)
class ClipRegion:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class PathShape:
    commands: Tuple[PathCommand, ...]
    stroke: Optional[str] = None
    width: float = 1.5
    fill: Optional[str] = None
    opacity: float = 1.0
    dashed: bool = False
    layer: str = "price"


@dataclass(frozen=True)
class LineShape:
    x1: float
    y1: float
    x2: float
    y2: float
    stroke: str = "#6B7280"
    width: float = 1.0
    opacity: float = 1.0
    dashed: bool = False
    layer: str = "grid"


@dataclass(frozen=True)
class CircleShape:
    cx: float
    cy: float
    r: float
    fill: Optional[str] = None
    stroke: Optional[str] = None
    width: float = 1.0
    opacity: float = 1.0
    layer: str = "marker"


@dataclass(frozen=True)
class RectShape:
    x: float
    y: float
    width: float
    height: float
    fill: Optional[str] = None
    stroke: Optional[str] = None
    radius: float = 0.0
    opacity: float = 1.0
    layer: str = "background"


@dataclass(frozen=True)
class TextShape:
    x: float
    y: float
    text: str
    color: str = "#E5E7EB"
    size: float = 10.0
    anchor: str = "middle"  # start | middle | end
    bold: bool = False
    layer: str = "label"


Shape = Union[PathShape, LineShape, CircleShape, RectShape, TextShape]


@dataclass
class Scene:
    width: float
    height: float
    clip: Optional[ClipRegion] = None
    shapes: List[Shape] = field(default_factory=list)

    def add(self, shape: Shape) -> Shape:
        self.shapes.append(shape)
        return shape

    def extend(self, shapes: Sequence[Shape]) -> None:
        self.shapes.extend(shapes)

    def layer(self, name: str) -> List[Shape]:
        return [s for s in self.shapes if s.layer == name]

    def of_type(self, kind: type) -> List[Shape]:
        return [s for s in self.shapes if isinstance(s, kind)]


def _svg_style(fill: Optional[str], stroke: Optional[str], width: float, opacity: float, dashed: bool = False) -> str:
    parts = [f'fill="{fill or "none"}"']
    if stroke:
        parts.append(f'stroke="{stroke}" stroke-width="{width:.1f}"')
    if dashed:
        parts.append('stroke-dasharray="4,3"')
    if opacity < 1.0:
        parts.append(f'opacity="{opacity:.2f}"')
    return " ".join(parts)


def render_svg(scene: Scene) -> str:
    """Serialize a scene as a standalone SVG document."""
    out = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{scene.width:.0f}" height="{scene.height:.0f}" '
        f'viewBox="0 0 {scene.width:.0f} {scene.height:.0f}">'
    ]
    if scene.clip is not None:
        c = scene.clip
        out.append(f'<defs><clipPath id="plot"><rect x="{c.x:.1f}" y="{c.y:.1f}" width="{c.width:.1f}" height="{c.height:.1f}"/></clipPath></defs>')
    clip_attr = ' clip-path="url(#plot)"' if scene.clip is not None else ""
    for shape in scene.shapes:
        clip = "" if shape.layer == "axis" else clip_attr
        if isinstance(shape, PathShape):
            style = _svg_style(shape.fill, shape.stroke, shape.width, shape.opacity, shape.dashed)
            out.append(f'<path d="{to_svg(shape.commands)}" {style}{clip}/>')
        elif isinstance(shape, LineShape):
            style = _svg_style(None, shape.stroke, shape.width, shape.opacity, shape.dashed)
            out.append(f'<line x1="{shape.x1:.1f}" y1="{shape.y1:.1f}" x2="{shape.x2:.1f}" y2="{shape.y2:.1f}" {style}{clip}/>')
        elif isinstance(shape, CircleShape):
            style = _svg_style(shape.fill, shape.stroke, shape.width, shape.opacity)
            out.append(f'<circle cx="{shape.cx:.1f}" cy="{shape.cy:.1f}" r="{shape.r:.1f}" {style}{clip}/>')
        elif isinstance(shape, RectShape):
            style = _svg_style(shape.fill, shape.stroke, 1.0, shape.opacity)
            out.append(
                f'<rect x="{shape.x:.1f}" y="{shape.y:.1f}" width="{shape.width:.1f}" height="{shape.height:.1f}" '
                f'rx="{shape.radius:.1f}" {style}{clip}/>'
            )
        elif isinstance(shape, TextShape):
            weight = ' font-weight="bold"' if shape.bold else ""
            out.append(
                f'<text x="{shape.x:.1f}" y="{shape.y:.1f}" fill="{shape.color}" font-size="{shape.size:.1f}" '
                f'text-anchor="{shape.anchor}"{weight}{clip}>{escape(shape.text)}</text>'
            )
    out.append("</svg>")
    return "\n".join(out)
