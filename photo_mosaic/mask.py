"""Alpha mask field and mask-driven tile opacity.

The mask is rasterised at the hero's displayed size, so coordinates are
container pixels relative to the hero box origin. Transparent mask pixels
(alpha at or below the threshold) mark the subject: tiles over them are
drawn at minimum opacity and fade in with distance.
"""

from __future__ import annotations

import math

import numpy as np
from PIL import Image
from scipy.spatial import cKDTree

from photo_mosaic.geometry import Placement

# Fraction of the longer mask side that bounds any distance search
SEARCH_CAP_FRACTION = 0.3


class MaskField:
    """Immutable alpha buffer with transparency and distance queries."""

    def __init__(self, alpha: np.ndarray, threshold: int = 128) -> None:
        alpha = np.asarray(alpha)
        if alpha.ndim != 2:
            msg = f"Mask alpha must be 2-D, got shape {alpha.shape}"
            raise ValueError(msg)
        self.alpha = alpha.astype(np.uint8, copy=True)
        self.alpha.setflags(write=False)
        self.threshold = threshold
        self.height, self.width = self.alpha.shape
        self.transparent = self.alpha <= threshold
        self.transparent.setflags(write=False)

        rows, cols = np.nonzero(self.transparent)
        self._points = np.column_stack([cols, rows]).astype(np.float64)
        self._tree = cKDTree(self._points) if len(self._points) else None

    @classmethod
    def from_image(
        cls,
        image: Image.Image,
        size: tuple[int, int],
        threshold: int = 128,
    ) -> MaskField:
        """Scale a mask image to *size* (w, h) and keep its alpha channel."""
        w, h = max(1, size[0]), max(1, size[1])
        rgba = image.convert("RGBA").resize((w, h), Image.BILINEAR)
        return cls(np.array(rgba, dtype=np.uint8)[:, :, 3], threshold)

    @property
    def transparent_count(self) -> int:
        return len(self._points)

    def _pixel(self, x: float, y: float) -> tuple[int, int] | None:
        if not (math.isfinite(x) and math.isfinite(y)):
            return None
        px, py = math.floor(x), math.floor(y)
        if px < 0 or py < 0 or px >= self.width or py >= self.height:
            return None
        return px, py

    def alpha_at(self, x: float, y: float) -> int | None:
        """Alpha at (x, y); ``None`` outside the mask."""
        p = self._pixel(x, y)
        if p is None:
            return None
        return int(self.alpha[p[1], p[0]])

    def is_transparent(self, x: float, y: float) -> bool:
        """True inside the subject; out-of-bounds points never are."""
        p = self._pixel(x, y)
        return p is not None and bool(self.transparent[p[1], p[0]])

    def distance_to_transparent(self, x: float, y: float, max_search: float = 200.0) -> float:
        """Distance to the nearest transparent pixel, ``inf`` if none is close.

        The search radius is ``min(max_search, 0.3 * max(width, height))``.
        """
        if not (math.isfinite(x) and math.isfinite(y)):
            return math.inf
        if self.is_transparent(x, y):
            return 0.0
        if self._tree is None:
            return math.inf

        radius = min(max_search, max(self.width, self.height) * SEARCH_CAP_FRACTION)
        if radius <= 0:
            return math.inf
        dist, _ = self._tree.query(
            (math.floor(x), math.floor(y)), k=1, distance_upper_bound=radius + 1e-9,
        )
        return float(dist) if math.isfinite(dist) else math.inf


def tile_opacity(
    x: float,
    y: float,
    mask: MaskField | None,
    avg_cell_size: float,
    min_opacity: float = 0.25,
    max_opacity: float = 1.0,
    transition_cells: float = 1.0,
    search_multiplier: float = 3.0,
) -> float:
    """Opacity of a tile centred at (x, y) in mask coordinates.

    Minimum over the subject, ramping linearly to maximum over one
    transition width (``avg_cell_size * transition_cells``).
    """
    if mask is None:
        return max_opacity
    if mask.is_transparent(x, y):
        return min_opacity

    transition = avg_cell_size * transition_cells
    if not math.isfinite(transition) or transition <= 0:
        return max_opacity
    distance = mask.distance_to_transparent(x, y, transition * search_multiplier)
    if math.isinf(distance):
        return max_opacity

    t = min(distance / transition, 1.0)
    opacity = min_opacity + (max_opacity - min_opacity) * t
    return max(min_opacity, min(max_opacity, opacity))


def border_fade(
    x: float,
    y: float,
    box: Placement,
    gradient_width: float,
    shrink: float = 0.0,
) -> float:
    """Multiplier fading tiles to zero at the edge of the hero box.

    Centers inside the (shrunk) box within *gradient_width* of its nearest
    edge scale linearly from 0 at the edge to 1; everything else is 1.
    """
    inner = box.shrunk(shrink)
    if gradient_width <= 0 or inner.width <= 0 or inner.height <= 0:
        return 1.0
    if not (inner.x <= x <= inner.right and inner.y <= y <= inner.bottom):
        return 1.0
    d = min(x - inner.x, inner.right - x, y - inner.y, inner.bottom - y)
    return max(0.0, min(1.0, d / gradient_width))
