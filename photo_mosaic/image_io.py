"""Image loading, analysis-raster downsampling and tile fitting."""

from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image, ImageEnhance, ImageOps


def compute_target_size(
    original_width: int,
    original_height: int,
    max_side: int,
) -> tuple[int, int]:
    """Compute downscaled (w, h) preserving aspect ratio.

    The longest side becomes *max_side*; the other is scaled
    proportionally (rounded to the nearest integer, minimum 1).
    """
    if original_width >= original_height:
        w = max_side
        h = max(1, round(original_height * max_side / original_width))
    else:
        h = max_side
        w = max(1, round(original_width * max_side / original_height))
    return w, h


def open_image(path: str | Path) -> Image.Image:
    """Open an image fully decoded, with its EXIF orientation applied."""
    with Image.open(path) as img:
        img.load()
        return ImageOps.exif_transpose(img)


def analysis_raster(image: Image.Image, max_side: int = 512) -> np.ndarray:
    """Downsample a hero image into a bounded analysis raster.

    The longest side becomes *max_side* so sampling cost does not depend on
    the source resolution.

    Returns:
        (H, W, 3) uint8 array.
    """
    w, h = compute_target_size(image.width, image.height, max_side)
    img = image.convert("RGB").resize((w, h), Image.LANCZOS)
    return np.array(img, dtype=np.uint8)


def fit_cover(image: Image.Image, size: tuple[int, int]) -> Image.Image:
    """Scale and centre-crop *image* to fill *size* exactly."""
    w, h = max(1, size[0]), max(1, size[1])
    return ImageOps.fit(image.convert("RGB"), (w, h), Image.LANCZOS)


def enhance_tile(image: Image.Image, brightness: float = 1.0, saturation: float = 1.0) -> Image.Image:
    """Apply the tile brightness / saturation treatment."""
    if brightness != 1.0:
        image = ImageEnhance.Brightness(image).enhance(brightness)
    if saturation != 1.0:
        image = ImageEnhance.Color(image).enhance(saturation)
    return image
