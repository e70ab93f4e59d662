"""
Photo Mosaic Engine
===================

Cover a hero photograph with a grid of small photographs whose average
colours approximate the hero, fading tiles over the subject so it stays
legible. Ships two partitioners:

- **Adaptive quadtree** (variance-driven rectangles)
- **Hexagonal grid** (uniform cells sized from the pool)

and a deterministic high-resolution re-render for export.
"""

__version__ = "1.0.0"

from photo_mosaic.assets import DirectoryAssets, check_tiles, detect_heroes
from photo_mosaic.catalog import CandidatePhoto, CandidatePool, load_catalog
from photo_mosaic.config import MosaicConfig
from photo_mosaic.engine import EngineState, MosaicEngine, MosaicLayout, Region
from photo_mosaic.errors import (
    AssetError,
    CatalogError,
    DegenerateGeometryError,
    ExportError,
    HeroLoadError,
    MosaicError,
)
from photo_mosaic.mask import MaskField, border_fade, tile_opacity
from photo_mosaic.matcher import UsageLedger, select_tile
from photo_mosaic.partition_hexagon import hexagon_grid, hexagon_side
from photo_mosaic.partition_quadtree import build_quadtree
from photo_mosaic.render import export_layout, render_layout
from photo_mosaic.sampler import average_color, color_variance

__all__ = [
    "AssetError",
    "CandidatePhoto",
    "CandidatePool",
    "CatalogError",
    "DegenerateGeometryError",
    "DirectoryAssets",
    "EngineState",
    "ExportError",
    "HeroLoadError",
    "MaskField",
    "MosaicConfig",
    "MosaicEngine",
    "MosaicError",
    "MosaicLayout",
    "Region",
    "UsageLedger",
    "average_color",
    "border_fade",
    "build_quadtree",
    "check_tiles",
    "color_variance",
    "detect_heroes",
    "export_layout",
    "hexagon_grid",
    "hexagon_side",
    "load_catalog",
    "render_layout",
    "select_tile",
    "tile_opacity",
]
