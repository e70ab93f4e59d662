"""Uniform hexagonal grid sized from a target cell count."""

from __future__ import annotations

import logging
import math

from photo_mosaic.geometry import SQRT3, HexShape

logger = logging.getLogger(__name__)


def hexagon_side(
    cell_count: int,
    area: float,
    min_side: float = 8.0,
    max_side: float | None = None,
) -> float:
    """Side length giving *cell_count* regular hexagons over *area*.

    From ``S_cell = (3·sqrt(3)/2)·a²``, clamped to ``[min_side, max_side]``.
    """
    if cell_count <= 0 or area <= 0:
        return min_side
    a = math.sqrt(2.0 * (area / cell_count) / (3.0 * SQRT3))
    if max_side is not None:
        a = min(a, max_side)
    return max(a, min_side)


def hexagon_centers(
    width: float,
    height: float,
    side: float,
    limit: int | None = None,
    spacing_epsilon: float = 0.01,
    row_spacing: float = 1.55,
) -> list[tuple[float, float]]:
    """Row-major centers of an offset honeycomb lattice.

    The first row's top vertex sits on ``y = 0``; rows continue while the
    row's top vertex lies inside *height*. Odd rows shift by half a column
    pitch. Only centers with ``0 <= x < width`` are kept. At most *limit*
    centers are returned.
    """
    if width <= 0 or height <= 0 or side <= 0:
        return []

    dx = (SQRT3 + spacing_epsilon) * side
    dy = row_spacing * side
    centers: list[tuple[float, float]] = []
    row = 0
    while True:
        cy = side + row * dy
        if cy - side >= height:
            break
        cx = dx / 2 if row % 2 else 0.0
        while cx < width:
            if limit is not None and len(centers) >= limit:
                return centers
            centers.append((cx, cy))
            cx += dx
        row += 1
    return centers


def hexagon_grid(
    width: float,
    height: float,
    cell_count: int,
    min_side: float = 8.0,
    max_side: float | None = None,
    spacing_epsilon: float = 0.01,
    row_spacing: float = 1.55,
) -> list[HexShape]:
    """Hexagons tiling a ``width × height`` container.

    Args:
        width, height: Container size in pixels.
        cell_count:    Target number of cells (usable candidate tiles).
        min_side:      Side floor.
        max_side:      Side ceiling; ``None`` = a quarter of the short side.
    """
    if max_side is None:
        max_side = min(width, height) / 4
    side = hexagon_side(cell_count, width * height, min_side, max(max_side, min_side))
    centers = hexagon_centers(
        width, height, side,
        limit=cell_count,
        spacing_epsilon=spacing_epsilon,
        row_spacing=row_spacing,
    )
    logger.info(
        "Hex grid: side=%.2f px  cells=%d (target %d)  container=%.0fx%.0f",
        side, len(centers), cell_count, width, height,
    )
    return [HexShape(cx, cy, side) for cx, cy in centers]
