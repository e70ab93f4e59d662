"""Adaptive quadtree partitioning driven by colour variance.

The tree is built breadth-first from an explicit worklist so the depth and
node caps hold regardless of the input. Each leaf is a rectangle clipped to
the raster; together the leaves partition the raster exactly.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass

import numpy as np

from photo_mosaic.geometry import RectShape
from photo_mosaic.sampler import average_color, color_variance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuadLeaf:
    """A finished quadtree cell in analysis-raster pixels."""

    shape: RectShape
    color: tuple[float, float, float]
    depth: int


def next_power_of_two(n: float) -> int:
    p = 1
    while p < n:
        p <<= 1
    return p


def leaf_size_bounds(
    raster_width: int,
    raster_height: int,
    min_leaf_size: float | None = None,
    max_leaf_size: float | None = None,
    min_tiles_per_dimension: int = 10,
    max_tiles_per_dimension: int = 20,
) -> tuple[float, float]:
    """Resolve the (min, max) leaf sizes, deriving missing ones from the raster."""
    short = min(raster_width, raster_height)
    lo = min_leaf_size if min_leaf_size is not None else short / max_tiles_per_dimension
    hi = max_leaf_size if max_leaf_size is not None else short / min_tiles_per_dimension
    return lo, max(lo, hi)


def build_quadtree(
    raster: np.ndarray,
    min_leaf_size: float,
    max_leaf_size: float,
    variance_threshold: float = 800.0,
    max_depth: int = 12,
    max_nodes: int = 50_000,
) -> list[QuadLeaf]:
    """Partition *raster* into variance-adaptive square cells.

    Args:
        raster:             (H, W, 3) analysis raster.
        min_leaf_size:      Nodes at or below this never split on variance.
        max_leaf_size:      Nodes above this always split.
        variance_threshold: Summed channel variance that triggers a split.
        max_depth:          Nodes at this depth become leaves.
        max_nodes:          Once this many nodes were processed, every
                            remaining node becomes a leaf.

    Returns:
        Leaves in breadth-first order.
    """
    h, w = raster.shape[:2]
    if w <= 0 or h <= 0:
        return []

    t0 = time.perf_counter()
    root = next_power_of_two(max(w, h))
    queue: deque[tuple[float, float, float, int]] = deque([(0.0, 0.0, float(root), 0)])
    leaves: list[QuadLeaf] = []
    processed = 0
    capped = 0

    while queue:
        x, y, size, depth = queue.popleft()
        if x >= w or y >= h:
            continue

        cw = min(size, w - x)
        ch = min(size, h - y)
        if cw <= 0 or ch <= 0:
            continue
        processed += 1
        effective = max(cw, ch)
        cell = RectShape(x, y, cw, ch)

        at_cap = depth >= max_depth or processed >= max_nodes
        split = False
        if not at_cap:
            if effective > max_leaf_size:
                split = True
            elif effective > min_leaf_size:
                split = color_variance(raster, cell) > variance_threshold
        elif effective > max_leaf_size:
            capped += 1

        if split:
            half = size / 2
            queue.extend([
                (x, y, half, depth + 1),
                (x + half, y, half, depth + 1),
                (x, y + half, half, depth + 1),
                (x + half, y + half, half, depth + 1),
            ])
            continue

        leaves.append(QuadLeaf(cell, average_color(raster, cell), depth))

    if capped:
        logger.warning("Quadtree caps forced %d oversized leaves", capped)
    logger.info(
        "Quadtree: %d leaves from %d nodes  (%.2f s)",
        len(leaves), processed, time.perf_counter() - t0,
    )
    return leaves
