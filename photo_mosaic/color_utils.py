"""Colour-space conversion and candidate distance computation."""

from __future__ import annotations

import numpy as np
from skimage.color import rgb2lab

NEUTRAL_GRAY = (128.0, 128.0, 128.0)


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert flat (N, 3) RGB in 0..255 → (N, 3) float64 CIELAB.

    Non-finite rows are carried through as NaN.
    """
    rgb = np.asarray(rgb, dtype=np.float64).reshape(-1, 3)
    finite = np.all(np.isfinite(rgb), axis=1)
    lab = np.full(rgb.shape, np.nan, dtype=np.float64)
    if finite.any():
        clipped = np.clip(rgb[finite], 0.0, 255.0) / 255.0
        lab[finite] = rgb2lab(clipped.reshape(1, -1, 3)).reshape(-1, 3)
    return lab


def color_distances(
    target: tuple[float, float, float] | np.ndarray,
    colors: np.ndarray,
    color_space: str = "rgb",
) -> np.ndarray:
    """Euclidean distance from one target colour to every row of *colors*.

    Args:
        target: (3,) RGB colour.
        colors: (N, 3) RGB colours.
        color_space: ``"rgb"`` or ``"lab"``.

    Returns:
        (N,) float64 distances. A non-finite colour on either side yields
        ``inf`` so it is never preferred.
    """
    t = np.asarray(target, dtype=np.float64).reshape(1, 3)
    c = np.asarray(colors, dtype=np.float64).reshape(-1, 3)
    if color_space == "lab":
        t = rgb_to_lab(t)
        c = rgb_to_lab(c)
    elif color_space != "rgb":
        msg = f"Unknown color space {color_space!r}"
        raise ValueError(msg)

    with np.errstate(invalid="ignore"):
        dist = np.sqrt(np.sum((c - t) ** 2, axis=1))
    dist[~np.isfinite(dist)] = np.inf
    return dist


def color_distance(
    a: tuple[float, float, float],
    b: tuple[float, float, float],
    color_space: str = "rgb",
) -> float:
    """Distance between two single colours (``inf`` if either is non-finite)."""
    return float(color_distances(a, np.asarray([b], dtype=np.float64), color_space)[0])
