"""Colour statistics over rectangular or polygonal raster regions."""

from __future__ import annotations

import math

import numpy as np

from photo_mosaic.color_utils import NEUTRAL_GRAY
from photo_mosaic.geometry import RectShape

# (start, length) spans along an edge, as fractions of its length
EDGE_SPANS = ((0.1, 0.8), (0.3, 0.4), (0.5, 0.2))


def region_pixels(raster: np.ndarray, shape) -> np.ndarray:
    """Collect the raster pixels covered by *shape*.

    Rectangles take every pixel whose integer coordinates fall in
    ``[floor(x), floor(x + w))`` × ``[floor(y), floor(y + h))``. Polygons
    test pixel centres against the polygon inside its bounding box.

    Args:
        raster: (H, W, 3) array (any numeric dtype).
        shape:  ``RectShape``, ``HexShape`` or ``PolygonShape`` in raster px.

    Returns:
        (N, 3) float64 pixels, possibly empty.
    """
    h, w = raster.shape[:2]
    x0, y0, x1, y1 = shape.bounds
    if not all(math.isfinite(v) for v in (x0, y0, x1, y1)):
        return np.empty((0, 3), dtype=np.float64)

    if isinstance(shape, RectShape):
        sx = max(0, math.floor(x0))
        sy = max(0, math.floor(y0))
        ex = min(w, math.floor(x1))
        ey = min(h, math.floor(y1))
        if ex <= sx or ey <= sy:
            return np.empty((0, 3), dtype=np.float64)
        return raster[sy:ey, sx:ex, :3].reshape(-1, 3).astype(np.float64)

    sx = max(0, math.floor(x0))
    sy = max(0, math.floor(y0))
    ex = min(w, math.ceil(x1))
    ey = min(h, math.ceil(y1))
    if ex <= sx or ey <= sy:
        return np.empty((0, 3), dtype=np.float64)
    ys, xs = np.mgrid[sy:ey, sx:ex]
    inside = shape.contains(xs + 0.5, ys + 0.5)
    return raster[sy:ey, sx:ex, :3][inside].astype(np.float64)


def _valid(pixels: np.ndarray) -> np.ndarray:
    return pixels[np.all(np.isfinite(pixels), axis=1)]


def average_color(raster: np.ndarray, shape) -> tuple[float, float, float]:
    """Mean RGB over the region, skipping non-finite pixels.

    Returns neutral gray when the region holds no valid pixel.
    """
    pixels = _valid(region_pixels(raster, shape))
    if len(pixels) == 0:
        return NEUTRAL_GRAY
    mean = pixels.mean(axis=0)
    return float(mean[0]), float(mean[1]), float(mean[2])


def color_variance(raster: np.ndarray, shape) -> float:
    """Sum of per-channel population variance ``E[x²] − E[x]²``."""
    pixels = _valid(region_pixels(raster, shape))
    if len(pixels) == 0:
        return 0.0
    mean = pixels.mean(axis=0)
    mean_sq = (pixels ** 2).mean(axis=0)
    return float(np.sum(mean_sq - mean ** 2))


def edge_color_samples(raster: np.ndarray, band: int = 20) -> list[tuple[float, float, float]]:
    """Average colours of strips along the four raster edges.

    Three spans per edge (10-90 %, 30-70 %, 50-70 %), each strip *band*
    pixels thick, ordered top, bottom, left, right.
    """
    h, w = raster.shape[:2]
    bx = max(1, min(band, w))
    by = max(1, min(band, h))
    samples = []
    for start, length in EDGE_SPANS:
        samples.append(average_color(raster, RectShape(w * start, 0, w * length, by)))
    for start, length in EDGE_SPANS:
        samples.append(average_color(raster, RectShape(w * start, h - by, w * length, by)))
    for start, length in EDGE_SPANS:
        samples.append(average_color(raster, RectShape(0, h * start, bx, h * length)))
    for start, length in EDGE_SPANS:
        samples.append(average_color(raster, RectShape(w - bx, h * start, bx, h * length)))
    return samples
