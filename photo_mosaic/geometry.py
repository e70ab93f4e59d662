"""Region shapes, contain-fit placement and point-in-polygon tests."""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import cached_property

import numpy as np

SQRT3 = math.sqrt(3.0)


@dataclass(frozen=True)
class Placement:
    """An axis-aligned box (x, y, width, height) in container pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def shrunk(self, amount: float) -> Placement:
        """Return the box inset by *amount* on every side (never negative)."""
        w = max(0.0, self.width - 2 * amount)
        h = max(0.0, self.height - 2 * amount)
        return Placement(self.x + (self.width - w) / 2, self.y + (self.height - h) / 2, w, h)

    def scaled_about_center(self, factor: float) -> Placement:
        w = self.width * factor
        h = self.height * factor
        return Placement(self.x + (self.width - w) / 2, self.y + (self.height - h) / 2, w, h)

    def scaled(self, factor: float) -> Placement:
        return Placement(self.x * factor, self.y * factor, self.width * factor, self.height * factor)


def fit_contain(
    image_width: float,
    image_height: float,
    container_width: float,
    container_height: float,
) -> Placement:
    """Aspect-preserving "contain" placement of an image inside a container.

    The image is centred on the axis that has spare room.
    """
    if image_width <= 0 or image_height <= 0 or container_width <= 0 or container_height <= 0:
        return Placement(0.0, 0.0, 0.0, 0.0)

    img_aspect = image_width / image_height
    container_aspect = container_width / container_height
    if img_aspect > container_aspect:
        w = float(container_width)
        h = w / img_aspect
        return Placement(0.0, (container_height - h) / 2, w, h)
    h = float(container_height)
    w = h * img_aspect
    return Placement((container_width - w) / 2, 0.0, w, h)


def points_in_polygon(
    xs: np.ndarray,
    ys: np.ndarray,
    vertices: np.ndarray,
) -> np.ndarray:
    """Vectorised even-odd ray-casting test.

    Args:
        xs, ys:   Point coordinates (any matching shape).
        vertices: (K, 2) polygon vertices in order.

    Returns:
        Boolean array shaped like *xs*.
    """
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    inside = np.zeros(xs.shape, dtype=bool)
    k = len(vertices)
    j = k - 1
    for i in range(k):
        xi, yi = vertices[i]
        xj, yj = vertices[j]
        crosses = (yi > ys) != (yj > ys)
        if yj != yi:
            x_cross = (xj - xi) * (ys - yi) / (yj - yi) + xi
            inside ^= crosses & (xs < x_cross)
        j = i
    return inside


@dataclass(frozen=True)
class RectShape:
    """Axis-aligned rectangular cell."""

    x: float
    y: float
    width: float
    height: float

    kind = "rect"

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.width, self.y + self.height

    @property
    def size(self) -> float:
        """Geometric mean side, used as the cell size for opacity ramps."""
        return math.sqrt(max(self.width, 0.0) * max(self.height, 0.0))

    def contains(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        x0, y0, x1, y1 = self.bounds
        return (xs >= x0) & (xs < x1) & (ys >= y0) & (ys < y1)

    def mapped(self, dx: float, dy: float, sx: float, sy: float) -> RectShape:
        """Return ``(p + (dx, dy)) * (sx, sy)`` applied to the rectangle."""
        return RectShape((self.x + dx) * sx, (self.y + dy) * sy, self.width * sx, self.height * sy)


@dataclass(frozen=True)
class PolygonShape:
    """Arbitrary polygon, used for hexagons mapped into raster space."""

    points: tuple[tuple[float, float], ...]

    kind = "polygon"

    @cached_property
    def vertices(self) -> np.ndarray:
        return np.asarray(self.points, dtype=np.float64)

    @property
    def center(self) -> tuple[float, float]:
        c = self.vertices.mean(axis=0)
        return float(c[0]), float(c[1])

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        v = self.vertices
        return float(v[:, 0].min()), float(v[:, 1].min()), float(v[:, 0].max()), float(v[:, 1].max())

    def contains(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        return points_in_polygon(xs, ys, self.vertices)

    def mapped(self, dx: float, dy: float, sx: float, sy: float) -> PolygonShape:
        return PolygonShape(tuple(((x + dx) * sx, (y + dy) * sy) for x, y in self.points))


@dataclass(frozen=True)
class HexShape:
    """Regular pointy-top hexagon given by its center and side length.

    Vertices sit at angles ``60°·i − 30°`` around the center.
    """

    cx: float
    cy: float
    side: float

    kind = "hexagon"

    @property
    def center(self) -> tuple[float, float]:
        return self.cx, self.cy

    @property
    def inscribed_diameter(self) -> float:
        return self.side * SQRT3

    @property
    def circumscribed_diameter(self) -> float:
        return 2.0 * self.side

    @property
    def size(self) -> float:
        return self.inscribed_diameter

    @property
    def top(self) -> float:
        return self.cy - self.side

    @cached_property
    def points(self) -> tuple[tuple[float, float], ...]:
        pts = []
        for i in range(6):
            angle = math.radians(60.0 * i - 30.0)
            pts.append((self.cx + self.side * math.cos(angle), self.cy + self.side * math.sin(angle)))
        return tuple(pts)

    @property
    def vertices(self) -> np.ndarray:
        return np.asarray(self.points, dtype=np.float64)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        half_w = self.inscribed_diameter / 2
        return self.cx - half_w, self.cy - self.side, self.cx + half_w, self.cy + self.side

    def contains(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        return points_in_polygon(xs, ys, self.vertices)

    def mapped(self, dx: float, dy: float, sx: float, sy: float) -> PolygonShape:
        return PolygonShape(self.points).mapped(dx, dy, sx, sy)
