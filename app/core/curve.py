from __future__ import annotations

import math
from typing import List, Sequence, Tuple


Point = Tuple[float, float]
# ("M", x, y) | ("L", x, y) | ("C", c1x, c1y, c2x, c2y, x, y)
PathCommand = Tuple


def monotone_tangents(xs: Sequence[float], ys: Sequence[float]) -> List[float]:
    """Fritsch-Carlson tangents: no overshoot between consecutive samples."""
    n = len(xs)
    if n < 2:
        return [0.0] * n
    secants = []
    for k in range(n - 1):
        dx = xs[k + 1] - xs[k]
        secants.append((ys[k + 1] - ys[k]) / dx if dx != 0 else 0.0)

    tangents = [0.0] * n
    tangents[0] = secants[0]
    tangents[-1] = secants[-1]
    for k in range(1, n - 1):
        if secants[k - 1] * secants[k] <= 0:
            tangents[k] = 0.0
        else:
            tangents[k] = (secants[k - 1] + secants[k]) / 2.0

    for k in range(n - 1):
        d = secants[k]
        if d == 0:
            tangents[k] = 0.0
            tangents[k + 1] = 0.0
            continue
        a = tangents[k] / d
        b = tangents[k + 1] / d
        s = a * a + b * b
        if s > 9.0:
            tau = 3.0 / math.sqrt(s)
            tangents[k] = tau * a * d
            tangents[k + 1] = tau * b * d
    return tangents


def monotone_path(points: Sequence[Point]) -> List[PathCommand]:
    if not points:
        return []
    xs = [float(p[0]) for p in points]
    ys = [float(p[1]) for p in points]
    commands: List[PathCommand] = [("M", xs[0], ys[0])]
    if len(points) == 1:
        return commands
    if len(points) == 2:
        commands.append(("L", xs[1], ys[1]))
        return commands
    tangents = monotone_tangents(xs, ys)
    for k in range(len(points) - 1):
        third = (xs[k + 1] - xs[k]) / 3.0
        commands.append((
            "C",
            xs[k] + third, ys[k] + tangents[k] * third,
            xs[k + 1] - third, ys[k + 1] - tangents[k + 1] * third,
            xs[k + 1], ys[k + 1],
        ))
    return commands


def linear_path(points: Sequence[Point]) -> List[PathCommand]:
    commands: List[PathCommand] = []
    for i, (x, y) in enumerate(points):
        commands.append(("M" if i == 0 else "L", float(x), float(y)))
    return commands


def to_svg(commands: Sequence[PathCommand]) -> str:
    parts = []
    for cmd in commands:
        coords = ",".join(f"{v:.1f}" for v in cmd[1:])
        parts.append(f"{cmd[0]}{coords}")
    return " ".join(parts)


def bezier_point(p0: Point, c1: Point, c2: Point, p1: Point, t: float) -> Point:
    u = 1.0 - t
    a = u * u * u
    b = 3 * u * u * t
    c = 3 * u * t * t
    d = t * t * t
    return (
        a * p0[0] + b * c1[0] + c * c2[0] + d * p1[0],
        a * p0[1] + b * c1[1] + c * c2[1] + d * p1[1],
    )


def segments(commands: Sequence[PathCommand]) -> List[Tuple[Point, Point, Point, Point]]:
    """Cubic segments of a path; straight lines become degenerate cubics."""
    out = []
    pen: Point = (0.0, 0.0)
    for cmd in commands:
        if cmd[0] == "M":
            pen = (cmd[1], cmd[2])
        elif cmd[0] == "L":
            end = (cmd[1], cmd[2])
            out.append((pen, pen, end, end))
            pen = end
        elif cmd[0] == "C":
            end = (cmd[5], cmd[6])
            out.append((pen, (cmd[1], cmd[2]), (cmd[3], cmd[4]), end))
            pen = end
    return out
