"""Generation orchestrator: one pass from hero photo to placed regions.

A pass loads the hero, downsamples it into the analysis raster, fits it
into the container, partitions, then samples, matches and shades every
region in partition order. The usage ledger is an immutable value threaded
through that loop. Every pass carries an epoch; only the pass holding the
current epoch may commit its layout, so a slow stale pass never overwrites
a newer result.
"""

from __future__ import annotations

import enum
import logging
import math
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field

import numpy as np

from photo_mosaic.assets import AssetSource, check_tiles, detect_heroes
from photo_mosaic.catalog import CandidatePhoto, CandidatePool
from photo_mosaic.config import MosaicConfig
from photo_mosaic.errors import DegenerateGeometryError, HeroLoadError, MosaicError
from photo_mosaic.geometry import HexShape, Placement, RectShape, fit_contain
from photo_mosaic.image_io import analysis_raster
from photo_mosaic.mask import MaskField, border_fade, tile_opacity
from photo_mosaic.matcher import UsageLedger, select_tile
from photo_mosaic.partition_hexagon import hexagon_grid
from photo_mosaic.partition_quadtree import build_quadtree, leaf_size_bounds
from photo_mosaic.sampler import average_color, edge_color_samples

logger = logging.getLogger(__name__)

DEBUG_SAMPLE_EVERY = 100


class EngineState(enum.Enum):
    IDLE = "idle"
    POOL_READY = "pool_ready"
    SIZED = "sized"
    GENERATING = "generating"
    PLACED = "placed"


@dataclass(frozen=True)
class Region:
    """One resolved mosaic cell in container pixels."""

    shape: RectShape | HexShape
    sampled_color: tuple[float, float, float]
    tile_id: int
    opacity: float
    background: bool = False

    @property
    def center(self) -> tuple[float, float]:
        return self.shape.center


@dataclass(frozen=True)
class MosaicLayout:
    """The placed result of a pass; replayed as-is by the renderer."""

    hero_id: int
    hero_filename: str
    container: tuple[int, int]
    hero_box: Placement
    strategy: str
    regions: tuple[Region, ...]
    epoch: int
    masked: bool = False
    fallbacks: int = 0
    usage: UsageLedger = field(default_factory=UsageLedger, compare=False)

    def __len__(self) -> int:
        return len(self.regions)

    def export_name(self, scale: int, fmt: str = "png") -> str:
        w, h = self.export_size(scale)
        stem = self.hero_filename.rsplit(".", 1)[0] if "." in self.hero_filename else self.hero_filename
        return f"mosaic-{stem}-{w}x{h}.{fmt}"

    def export_size(self, scale: int) -> tuple[int, int]:
        return round(self.container[0] * scale), round(self.container[1] * scale)


@dataclass
class _PassContext:
    pool: CandidatePool
    hero: CandidatePhoto
    excluded: frozenset[int]
    allowed: frozenset[int] | None
    raster: np.ndarray
    box: Placement
    mask: MaskField | None
    container: tuple[int, int]
    ledger: UsageLedger = field(default_factory=UsageLedger)
    fallbacks: int = 0
    dropped: int = 0
    decisions: int = 0


class MosaicEngine:
    """Drives partitioning, sampling, matching and shading per hero/viewport.

    States move ``IDLE → POOL_READY → SIZED → GENERATING → PLACED``. Changing
    the pool, the container size or the hero invalidates the current pass
    and, once the engine has everything it needs, starts a fresh one. A
    failed pass leaves the previously placed layout in :attr:`layout`.
    """

    def __init__(self, config: MosaicConfig, assets: AssetSource) -> None:
        self.config = config
        self.assets = assets
        self.state = EngineState.IDLE
        self.pool: CandidatePool | None = None
        self.allowed: frozenset[int] | None = None
        self.container: tuple[int, int] | None = None
        self.hero_id: int | None = None
        self.layout: MosaicLayout | None = None
        self._epoch = 0
        self._lock = threading.Lock()

    # -- inputs ---------------------------------------------------------

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def ready(self) -> bool:
        return self.pool is not None and self.container is not None and self.hero_id is not None

    def _invalidate(self) -> None:
        with self._lock:
            self._epoch += 1

    def prepare_pool(self, pool: CandidatePool) -> MosaicLayout | None:
        """Detect heroes, probe tile assets concurrently, then install the pool."""
        pool = detect_heroes(pool, self.assets, self.config.max_workers)
        allowed = check_tiles(pool, self.assets, self.config.max_workers)
        return self.set_pool(pool, allowed)

    def set_pool(self, pool: CandidatePool, allowed: Iterable[int] | None = None) -> MosaicLayout | None:
        self.pool = pool
        self.allowed = frozenset(allowed) if allowed is not None else None
        self._invalidate()
        if self.state in (EngineState.IDLE, EngineState.POOL_READY):
            self.state = EngineState.SIZED if self.container else EngineState.POOL_READY
        return self.generate() if self.ready else None

    def resize(self, width: int, height: int) -> MosaicLayout | None:
        self.container = (int(width), int(height))
        self._invalidate()
        if self.state is EngineState.POOL_READY:
            self.state = EngineState.SIZED
        return self.generate() if self.ready else None

    def set_hero(self, hero_id: int) -> MosaicLayout | None:
        if self.pool is not None and hero_id not in self.pool:
            msg = f"Unknown hero id {hero_id}"
            raise KeyError(msg)
        self.hero_id = hero_id
        self._invalidate()
        return self.generate() if self.ready else None

    # -- pass -----------------------------------------------------------

    def generate(self) -> MosaicLayout | None:
        """Run one generation pass.

        Returns:
            The committed layout, or ``None`` when a newer pass superseded
            this one before it finished.

        Raises:
            HeroLoadError: the hero could not be loaded or is not in the pool.
            DegenerateGeometryError: the pass produced no usable geometry.
        """
        if not self.ready:
            raise MosaicError("Engine needs a pool, a container size and a hero")

        with self._lock:
            self._epoch += 1
            epoch = self._epoch
            self.state = EngineState.GENERATING
        pool, allowed, container, hero_id = self.pool, self.allowed, self.container, self.hero_id

        t0 = time.perf_counter()
        try:
            layout = self._run_pass(epoch, pool, allowed, container, hero_id)
        except MosaicError as exc:
            logger.error("Pass %d aborted: %s", epoch, exc)
            self._restore_state(epoch)
            raise
        except Exception:
            logger.exception("Pass %d failed", epoch)
            self._restore_state(epoch)
            raise

        with self._lock:
            if epoch != self._epoch:
                logger.info("Pass %d superseded by pass %d, result discarded", epoch, self._epoch)
                return None
            self.layout = layout
            self.state = EngineState.PLACED
        logger.info(
            "Pass %d placed %d regions (%s, %d fallbacks)  (%.2f s)",
            epoch, len(layout), layout.strategy, layout.fallbacks, time.perf_counter() - t0,
        )
        return layout

    def _restore_state(self, epoch: int) -> None:
        """Leave GENERATING after a failed pass, keeping any placed layout."""
        with self._lock:
            if epoch == self._epoch:
                self.state = EngineState.PLACED if self.layout else EngineState.SIZED

    def _run_pass(
        self,
        epoch: int,
        pool: CandidatePool,
        allowed: frozenset[int] | None,
        container: tuple[int, int],
        hero_id: int,
    ) -> MosaicLayout:
        cfg = self.config
        if hero_id not in pool:
            msg = f"Hero id {hero_id} is not in the current pool"
            raise HeroLoadError(msg)
        hero = pool[hero_id]

        t0 = time.perf_counter()
        try:
            image = self.assets.load_hero(hero)
        except HeroLoadError:
            raise
        except OSError as exc:
            msg = f"Cannot load hero photo {hero.filename}: {exc}"
            raise HeroLoadError(msg) from exc
        raster = analysis_raster(image, cfg.analysis_max_side)
        logger.info(
            "Hero %s: %dx%d → raster %dx%d  (%.2f s)",
            hero.filename, image.width, image.height, raster.shape[1], raster.shape[0],
            time.perf_counter() - t0,
        )

        cw, ch = container
        if cw <= 0 or ch <= 0:
            msg = f"Container {cw}x{ch} has no area"
            raise DegenerateGeometryError(msg)
        box = fit_contain(image.width, image.height, cw, ch)
        if cfg.strategy == "hexagon":
            box = box.scaled_about_center(cfg.hero_inset)
        if box.width <= 0 or box.height <= 0:
            raise DegenerateGeometryError("Hero placement has no area")

        mask = None
        mask_image = self.assets.load_mask(hero)
        if mask_image is not None:
            mask = MaskField.from_image(
                mask_image, (round(box.width), round(box.height)), cfg.mask_alpha_threshold,
            )
            logger.debug("Mask %dx%d, %d transparent px", mask.width, mask.height, mask.transparent_count)
        else:
            logger.info("No mask for %s, full opacity everywhere", hero.filename)

        ctx = _PassContext(
            pool=pool,
            hero=hero,
            excluded=frozenset({hero.id}),
            allowed=allowed,
            raster=raster,
            box=box,
            mask=mask,
            container=(cw, ch),
        )

        if cfg.strategy == "hexagon":
            regions = self._place_hexagons(ctx)
        else:
            regions = self._place_quadtree(ctx)
            regions += self._fill_background(ctx, regions)

        if not regions:
            raise DegenerateGeometryError("Pass produced no regions")
        if ctx.fallbacks:
            logger.warning(
                "%d placeholder matches (pool %d, usage cap %d): pool too small or cap too low",
                ctx.fallbacks, len(pool), cfg.usage_cap,
            )
        if ctx.dropped:
            logger.warning("Dropped %d unresolved regions", ctx.dropped)

        return MosaicLayout(
            hero_id=hero.id,
            hero_filename=hero.filename,
            container=(cw, ch),
            hero_box=box,
            strategy=cfg.strategy,
            regions=tuple(regions),
            epoch=epoch,
            masked=mask is not None,
            fallbacks=ctx.fallbacks,
            usage=ctx.ledger,
        )

    # -- matching -------------------------------------------------------

    def _match(self, ctx: _PassContext, color: tuple[float, float, float], bonus: float) -> int | None:
        """Select a tile, record it in the ledger; ``None`` if unresolved."""
        cfg = self.config
        pid = select_tile(
            color, ctx.pool, ctx.ledger,
            excluded=ctx.excluded,
            allowed=ctx.allowed,
            usage_cap=cfg.usage_cap,
            diversity_bonus=bonus,
            color_space=cfg.color_space,
        )
        unresolved = (
            pid not in ctx.pool
            or pid in ctx.excluded
            or (ctx.allowed is not None and pid not in ctx.allowed)
        )
        if unresolved or ctx.ledger[pid] >= cfg.usage_cap:
            ctx.fallbacks += 1
        if ctx.decisions % DEBUG_SAMPLE_EVERY == 0:
            logger.debug(
                "match #%d target=(%.0f, %.0f, %.0f) → %d (usage %d)",
                ctx.decisions, *color, pid, ctx.ledger[pid],
            )
        ctx.decisions += 1
        if unresolved:
            ctx.dropped += 1
            return None
        ctx.ledger = ctx.ledger.record(pid)
        return pid

    # -- quadtree -------------------------------------------------------

    def _place_quadtree(self, ctx: _PassContext) -> list[Region]:
        cfg = self.config
        rh, rw = ctx.raster.shape[:2]
        lo, hi = leaf_size_bounds(
            rw, rh, cfg.min_leaf_size, cfg.max_leaf_size,
            cfg.min_tiles_per_dimension, cfg.max_tiles_per_dimension,
        )
        leaves = [
            leaf for leaf in build_quadtree(
                ctx.raster, lo, hi, cfg.variance_threshold, cfg.max_depth, cfg.max_nodes,
            )
            if all(math.isfinite(c) for c in leaf.color)
        ]
        if not leaves:
            raise DegenerateGeometryError("Quadtree produced no leaves")

        box = ctx.box
        sx = box.width / rw
        sy = box.height / rh
        avg_cell = float(np.mean([max(l.shape.width, l.shape.height) for l in leaves])) * max(sx, sy)
        band = cfg.edge_band_fraction

        regions = []
        for leaf in leaves:
            s = leaf.shape
            on_edge = (
                s.x < rw * band or s.x + s.width > rw * (1 - band)
                or s.y < rh * band or s.y + s.height > rh * (1 - band)
            )
            bonus = cfg.edge_diversity_bonus if on_edge else cfg.diversity_bonus
            pid = self._match(ctx, leaf.color, bonus)
            if pid is None:
                continue
            cell = RectShape(box.x + s.x * sx, box.y + s.y * sy, s.width * sx, s.height * sy)
            cx, cy = cell.center
            opacity = tile_opacity(
                cx - box.x, cy - box.y, ctx.mask, avg_cell,
                min_opacity=cfg.min_opacity,
                max_opacity=cfg.max_opacity,
                transition_cells=cfg.opacity_transition_cells,
                search_multiplier=cfg.mask_search_multiplier,
            )
            regions.append(Region(cell, leaf.color, pid, opacity))
        return regions

    def _fill_background(self, ctx: _PassContext, hero_regions: list[Region]) -> list[Region]:
        """Tile the container area left outside the hero box.

        Each cell's target colour is a random draw from the hero's edge
        colours, the only non-deterministic step of a pass.
        """
        cfg = self.config
        cw, ch = ctx.container
        box = ctx.box
        areas = []
        if box.y > 0:
            areas.append(Placement(0.0, 0.0, cw, box.y))
        if box.bottom < ch:
            areas.append(Placement(0.0, box.bottom, cw, ch - box.bottom))
        if box.x > 0:
            areas.append(Placement(0.0, box.y, box.x, box.height))
        if box.right < cw:
            areas.append(Placement(box.right, box.y, cw - box.right, box.height))
        areas = [a for a in areas if a.width > 1e-6 and a.height > 1e-6]
        if not areas or not hero_regions:
            return []

        base = float(np.mean([r.shape.size for r in hero_regions]))
        if base <= 0:
            return []
        samples = edge_color_samples(ctx.raster, cfg.edge_sample_band)
        rng = np.random.default_rng(cfg.seed)
        min_side = base * cfg.background_min_fraction

        regions = []
        for area in areas:
            nx = math.ceil(area.width / base)
            ny = math.ceil(area.height / base)
            tw = area.width / nx
            th = area.height / ny
            for ty in range(ny):
                for tx in range(nx):
                    x = area.x + tx * tw
                    y = area.y + ty * th
                    w = area.right - x if tx == nx - 1 else tw
                    h = area.bottom - y if ty == ny - 1 else th
                    if w < min_side or h < min_side:
                        continue
                    color = samples[int(rng.integers(len(samples)))]
                    pid = self._match(ctx, color, cfg.diversity_bonus)
                    if pid is None:
                        continue
                    regions.append(
                        Region(RectShape(x, y, w, h), color, pid, cfg.max_opacity, background=True),
                    )
        logger.info("Background fill: %d cells in %d areas (base %.1f px)", len(regions), len(areas), base)
        return regions

    # -- hexagons -------------------------------------------------------

    def _place_hexagons(self, ctx: _PassContext) -> list[Region]:
        cfg = self.config
        cw, ch = ctx.container
        usable = [
            int(pid) for pid in ctx.pool.ids
            if pid not in ctx.excluded and (ctx.allowed is None or pid in ctx.allowed)
        ]
        if not usable:
            raise DegenerateGeometryError("No usable candidate tiles for the hex grid")

        cells = hexagon_grid(
            cw, ch, len(usable),
            min_side=cfg.hex_min_side,
            max_side=cfg.hex_max_side,
            spacing_epsilon=cfg.hex_spacing_epsilon,
            row_spacing=cfg.hex_row_spacing,
        )
        if not cells:
            raise DegenerateGeometryError("Hex grid produced no cells")

        box = ctx.box
        rh, rw = ctx.raster.shape[:2]
        sx = rw / box.width
        sy = rh / box.height
        avg_cell = cells[0].inscribed_diameter
        gradient = cfg.border_gradient_multiplier * cells[0].circumscribed_diameter

        regions = []
        for cell in cells:
            color = average_color(ctx.raster, cell.mapped(-box.x, -box.y, sx, sy))
            pid = self._match(ctx, color, cfg.diversity_bonus)
            if pid is None:
                continue
            cx, cy = cell.center
            opacity = tile_opacity(
                cx - box.x, cy - box.y, ctx.mask, avg_cell,
                min_opacity=cfg.min_opacity,
                max_opacity=cfg.max_opacity,
                transition_cells=cfg.opacity_transition_cells,
                search_multiplier=cfg.mask_search_multiplier,
            )
            opacity *= border_fade(cx, cy, box, gradient, cfg.border_shrink)
            regions.append(Region(cell, color, pid, opacity))
        return regions
