"""High-resolution re-render of a placed layout.

Rendering replays :class:`~photo_mosaic.engine.MosaicLayout` exactly: it never
partitions or matches again, so an export matches the on-screen mosaic in
placement and tile choice and differs only in resolution.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from PIL import Image, ImageDraw

from photo_mosaic.engine import MosaicLayout, Region
from photo_mosaic.errors import ExportError
from photo_mosaic.geometry import HexShape
from photo_mosaic.image_io import enhance_tile, fit_cover

logger = logging.getLogger(__name__)

TileLoader = Callable[[int], "Image.Image | None"]


def _load_tiles(
    tile_ids: set[int],
    load_tile: TileLoader,
    max_workers: int,
) -> dict[int, Image.Image]:
    """Fan out tile loads and keep the ones that succeeded."""
    ordered = sorted(tile_ids)
    with ThreadPoolExecutor(max_workers=max_workers) as ex:
        images = list(ex.map(load_tile, ordered))
    return {pid: img for pid, img in zip(ordered, images, strict=True) if img is not None}


def _cell_box(region: Region, scale: float) -> tuple[int, int, int, int]:
    """Integer pixel box (x0, y0, x1, y1) covering the scaled cell."""
    x0, y0, x1, y1 = region.shape.bounds
    return (
        math.floor(x0 * scale),
        math.floor(y0 * scale),
        math.ceil(x1 * scale),
        math.ceil(y1 * scale),
    )


def _cell_mask(region: Region, scale: float, box: tuple[int, int, int, int]) -> Image.Image:
    """Alpha mask for a cell: its opacity, clipped to the hexagon if any."""
    x0, y0, x1, y1 = box
    size = (x1 - x0, y1 - y0)
    alpha = max(0, min(255, round(region.opacity * 255)))
    if not isinstance(region.shape, HexShape):
        return Image.new("L", size, alpha)
    mask = Image.new("L", size, 0)
    points = [(px * scale - x0, py * scale - y0) for px, py in region.shape.points]
    ImageDraw.Draw(mask).polygon(points, fill=alpha)
    return mask


def render_layout(
    layout: MosaicLayout,
    hero_image: Image.Image | None,
    load_tile: TileLoader,
    scale: int = 1,
    tile_brightness: float = 1.0,
    tile_saturation: float = 1.0,
    max_workers: int = 8,
    background: tuple[int, int, int] = (0, 0, 0),
) -> Image.Image:
    """Composite the hero and every region's tile at ``scale ×`` resolution.

    Args:
        layout:          Placed layout to replay.
        hero_image:      Hero photo drawn under the tiles (``None`` skips it).
        load_tile:       Callable returning the tile image for a candidate id,
                         or ``None`` when it is unavailable.
        scale:           Integer factor applied to the container size.
        tile_brightness: Brightness factor for tiles.
        tile_saturation: Saturation factor for tiles.
        max_workers:     Concurrent tile loads.

    Returns:
        RGB image of ``layout.export_size(scale)``.
    """
    if scale < 1:
        msg = f"Scale must be a positive integer, got {scale}"
        raise ValueError(msg)

    t0 = time.perf_counter()
    width, height = layout.export_size(scale)
    canvas = Image.new("RGB", (max(1, width), max(1, height)), background)

    if hero_image is not None:
        hb = layout.hero_box.scaled(scale)
        hero_size = (max(1, round(hb.width)), max(1, round(hb.height)))
        canvas.paste(hero_image.convert("RGB").resize(hero_size, Image.LANCZOS), (round(hb.x), round(hb.y)))

    tiles = _load_tiles({r.tile_id for r in layout.regions}, load_tile, max_workers)
    missing = 0
    for region in layout.regions:
        tile = tiles.get(region.tile_id)
        if tile is None:
            missing += 1
            continue
        box = _cell_box(region, scale)
        size = (box[2] - box[0], box[3] - box[1])
        if size[0] <= 0 or size[1] <= 0:
            continue
        cell = enhance_tile(fit_cover(tile, size), tile_brightness, tile_saturation)
        canvas.paste(cell, box[:2], _cell_mask(region, scale, box))

    if missing:
        logger.warning("%d regions skipped: tile image unavailable", missing)
    logger.info(
        "Rendered %d regions at %dx  → %dx%d  (%.1f s)",
        len(layout.regions) - missing, scale, width, height, time.perf_counter() - t0,
    )
    return canvas


def export_layout(
    layout: MosaicLayout,
    hero_image: Image.Image | None,
    load_tile: TileLoader,
    output_dir: str | Path,
    scale: int = 4,
    tile_brightness: float = 0.85,
    tile_saturation: float = 1.15,
    max_workers: int = 8,
    output_format: str = "png",
) -> Path:
    """Render at ``scale ×`` and save as ``mosaic-<hero>-<W>x<H>.<fmt>``.

    Raises:
        ExportError: rendering or saving failed; the live layout is untouched.
    """
    output_dir = Path(output_dir)
    path = output_dir / layout.export_name(scale, output_format)
    try:
        image = render_layout(
            layout, hero_image, load_tile, scale,
            tile_brightness=tile_brightness,
            tile_saturation=tile_saturation,
            max_workers=max_workers,
        )
        output_dir.mkdir(parents=True, exist_ok=True)
        image.save(path)
    except (OSError, ValueError) as exc:
        msg = f"Export to {path} failed: {exc}"
        raise ExportError(msg) from exc
    logger.info("Exported %s", path)
    return path
