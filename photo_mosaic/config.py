"""Centralised configuration via a frozen, validated dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

STRATEGIES = ("quadtree", "hexagon")
COLOR_SPACES = ("rgb", "lab")


@dataclass(frozen=True)
class MosaicConfig:
    """All tuneable parameters for a mosaic run.

    Attributes:
        strategy:          Region partitioner - "quadtree" or "hexagon".
        analysis_max_side: Longest side of the hero analysis raster.
        min_leaf_size:     Quadtree leaves never split below this (raster px).
                           None = min(w, h) / max_tiles_per_dimension.
        max_leaf_size:     Quadtree nodes above this always split (raster px).
                           None = min(w, h) / min_tiles_per_dimension.
        variance_threshold: Summed per-channel variance that triggers a split.
        max_depth:         Quadtree depth cap; deeper nodes become leaves.
        max_nodes:         Total quadtree nodes processed before forcing leaves.
        hex_min_side:      Hexagon side floor (container px).
        hex_max_side:      Hexagon side ceiling. None = 1/4 of the short side.
        hex_spacing_epsilon: Added to sqrt(3) for the column pitch.
        hex_row_spacing:   Row pitch in multiples of the side.
        hero_inset:        Hexagon mode scales the contained hero footprint.
        border_shrink:     Hero box shrink (px) before measuring border fade.
        border_gradient_multiplier: Border fade width in circumscribed diameters.
        min_opacity:       Opacity over transparent (subject) mask pixels.
        max_opacity:       Opacity away from the subject.
        opacity_transition_cells: Opacity ramp length in average cell sizes.
        mask_search_multiplier: Mask search radius in transition widths.
        mask_alpha_threshold: Alpha at or below this counts as transparent.
        usage_cap:         Maximum placements of one candidate per pass.
        diversity_bonus:   Score penalty / bonus magnitude driving diversity.
        edge_diversity_bonus: Bonus used for cells in the outer hero band.
        edge_band_fraction: Width of that outer band as a raster fraction.
        color_space:       Matcher distance metric - "rgb" or "lab".
        edge_sample_band:  Strip thickness (raster px) for edge colour samples.
        background_min_fraction: Background cells smaller than this fraction
                           of the base cell size are skipped.
        export_scale:      Integer scale factor for the high-res export.
        tile_brightness:   Brightness factor applied to tiles when rendering.
        tile_saturation:   Saturation factor applied to tiles when rendering.
        seed:              Seed for the background colour draw (None = random).
        max_workers:       Thread pool size for asset checks and tile loading.
    """

    # Partitioning
    strategy: str = "quadtree"  # "quadtree" | "hexagon"
    analysis_max_side: int = 512

    # Quadtree
    min_leaf_size: float | None = None
    max_leaf_size: float | None = None
    min_tiles_per_dimension: int = 10
    max_tiles_per_dimension: int = 20
    variance_threshold: float = 800.0
    max_depth: int = 12
    max_nodes: int = 50_000

    # Hexagon grid
    hex_min_side: float = 8.0
    hex_max_side: float | None = None
    hex_spacing_epsilon: float = 0.01
    hex_row_spacing: float = 1.55
    hero_inset: float = 0.9
    border_shrink: float = 2.0
    border_gradient_multiplier: float = 1.0

    # Opacity
    min_opacity: float = 0.25
    max_opacity: float = 1.0
    opacity_transition_cells: float = 1.0
    mask_search_multiplier: float = 3.0
    mask_alpha_threshold: int = 128

    # Matching
    usage_cap: int = 4
    diversity_bonus: float = 5000.0
    edge_diversity_bonus: float = 10000.0
    edge_band_fraction: float = 0.1
    color_space: str = "rgb"

    # Background fill
    edge_sample_band: int = 20
    background_min_fraction: float = 0.2

    # Output
    export_scale: int = 4
    tile_brightness: float = 0.85
    tile_saturation: float = 1.15
    output_format: str = "png"

    seed: int | None = None
    max_workers: int = 8

    # Paths
    catalog_path: Path = field(default_factory=lambda: Path("photos/index.json"))
    photos_dir: Path = field(default_factory=lambda: Path("photos"))
    tiles_dir: Path = field(default_factory=lambda: Path("tiles"))
    output_dir: Path = field(default_factory=lambda: Path("output"))

    HERO_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg"})
    MASK_EXTENSION: str = ".png"

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGIES:
            msg = f"Unknown strategy {self.strategy!r} (expected one of {STRATEGIES})"
            raise ValueError(msg)
        if self.color_space not in COLOR_SPACES:
            msg = f"Unknown color space {self.color_space!r}"
            raise ValueError(msg)
        if self.analysis_max_side < 1:
            raise ValueError("analysis_max_side must be positive")
        if not 0.0 <= self.min_opacity <= self.max_opacity <= 1.0:
            msg = (
                "Opacity bounds must satisfy 0 <= min_opacity <= max_opacity <= 1, "
                f"got {self.min_opacity} / {self.max_opacity}"
            )
            raise ValueError(msg)
        if (
            self.min_leaf_size is not None
            and self.max_leaf_size is not None
            and self.min_leaf_size > self.max_leaf_size
        ):
            raise ValueError("min_leaf_size must not exceed max_leaf_size")
        if self.min_tiles_per_dimension > self.max_tiles_per_dimension:
            raise ValueError("min_tiles_per_dimension must not exceed max_tiles_per_dimension")
        if self.hex_min_side <= 0:
            raise ValueError("hex_min_side must be positive")
        if self.hex_max_side is not None and self.hex_max_side < self.hex_min_side:
            raise ValueError("hex_max_side must not be below hex_min_side")
        if not 0.0 < self.hero_inset <= 1.0:
            raise ValueError("hero_inset must be in (0, 1]")
        if self.usage_cap < 1:
            raise ValueError("usage_cap must be at least 1")
        if self.diversity_bonus < 0 or self.edge_diversity_bonus < 0:
            raise ValueError("Diversity bonuses must be non-negative")
        if self.opacity_transition_cells <= 0:
            raise ValueError("opacity_transition_cells must be positive")
        if self.max_depth < 0 or self.max_nodes < 1:
            raise ValueError("Quadtree caps must be positive")
        if self.export_scale < 1:
            raise ValueError("export_scale must be a positive integer")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
