"""Tests for the generation pass, the re-renderer and the CLI."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest
from PIL import Image
from typer.testing import CliRunner

from photo_mosaic.catalog import CandidatePhoto, CandidatePool
from photo_mosaic.cli import _assets, app
from photo_mosaic.config import MosaicConfig
from photo_mosaic.engine import EngineState, MosaicEngine, MosaicLayout, Region
from photo_mosaic.errors import DegenerateGeometryError, ExportError, HeroLoadError, MosaicError
from photo_mosaic.geometry import HexShape, Placement, RectShape
from photo_mosaic.render import export_layout, render_layout

# -- Fixtures ----------------------------------------------------------


class FakeAssets:
    """In-memory asset source with switchable failures."""

    def __init__(self, pool: CandidatePool, hero_size: tuple[int, int] = (400, 300)) -> None:
        self.pool = pool
        rng = np.random.default_rng(11)
        w, h = hero_size
        gradient = np.zeros((h, w, 3), dtype=np.uint8)
        gradient[..., 0] = np.linspace(0, 255, w, dtype=np.uint8)[np.newaxis, :]
        gradient[..., 2] = np.linspace(255, 0, h, dtype=np.uint8)[:, np.newaxis]
        gradient[: h // 3, : w // 3] = rng.integers(0, 256, (h // 3, w // 3, 3))
        self.hero_image = Image.fromarray(gradient)
        self.masks: dict[int, Image.Image] = {}
        self.broken_heroes: set[int] = set()
        self.missing_tiles: set[int] = set()
        self.on_load_hero: dict[int, Callable[[], object]] = {}
        self.tile_loads: list[int] = []

    def load_hero(self, photo: CandidatePhoto) -> Image.Image:
        hook = self.on_load_hero.pop(photo.id, None)
        if hook is not None:
            hook()
        if photo.id in self.broken_heroes:
            raise HeroLoadError(f"cannot load {photo.filename}")
        return self.hero_image

    def load_mask(self, photo: CandidatePhoto) -> Image.Image | None:
        return self.masks.get(photo.id)

    def load_tile(self, photo: CandidatePhoto) -> Image.Image | None:
        self.tile_loads.append(photo.id)
        if photo.id in self.missing_tiles:
            return None
        color = tuple(int(c) for c in photo.avg_color)
        return Image.new("RGB", (30, 20), color)

    def tile_exists(self, photo: CandidatePhoto) -> bool:
        return photo.id not in self.missing_tiles

    def mask_exists(self, photo: CandidatePhoto) -> bool:
        return photo.id in self.masks


def make_pool(n: int, hero_ids=(0,)) -> CandidatePool:
    rng = np.random.default_rng(5)
    colors = rng.integers(0, 256, size=(n, 3))
    return CandidatePool(
        CandidatePhoto(i, f"p{i:03d}.jpg", 400, 300, tuple(float(c) for c in colors[i]), i in hero_ids)
        for i in range(n)
    )


@pytest.fixture
def pool() -> CandidatePool:
    return make_pool(80, hero_ids=(0, 1))


@pytest.fixture
def assets(pool: CandidatePool) -> FakeAssets:
    return FakeAssets(pool)


def make_engine(pool: CandidatePool, assets: FakeAssets, **overrides) -> MosaicEngine:
    cfg = MosaicConfig(**{"usage_cap": 10, "seed": 1, **overrides})
    engine = MosaicEngine(cfg, assets)
    engine.set_pool(pool)
    return engine


# -- Quadtree pass -----------------------------------------------------

class TestQuadtreePass:
    def test_state_machine(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = MosaicEngine(MosaicConfig(usage_cap=10), assets)
        assert engine.state is EngineState.IDLE
        engine.set_pool(pool)
        assert engine.state is EngineState.POOL_READY
        engine.resize(800, 500)
        assert engine.state is EngineState.SIZED
        layout = engine.set_hero(0)
        assert engine.state is EngineState.PLACED
        assert engine.layout is layout

    def test_places_regions(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(800, 500)
        layout = engine.set_hero(0)
        assert layout is not None
        assert len(layout) > 0
        assert all(r.tile_id != 0 for r in layout.regions)
        assert all(r.tile_id in pool for r in layout.regions)
        assert sum(layout.usage.values()) == len(layout.regions)
        assert max(layout.usage.values()) <= 10

    def test_hero_regions_cover_hero_box(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(800, 500)
        layout = engine.set_hero(0)
        hero_cells = [r for r in layout.regions if not r.background]
        area = sum(r.shape.width * r.shape.height for r in hero_cells)
        assert area == pytest.approx(layout.hero_box.area, rel=1e-6)

    def test_background_fill(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(800, 500)  # 4:3 hero in 8:5 container leaves side bands
        layout = engine.set_hero(0)
        background = [r for r in layout.regions if r.background]
        assert background
        box = layout.hero_box
        for r in background:
            assert r.opacity == 1.0
            cx, _ = r.center
            assert cx < box.x or cx > box.right

    def test_background_draw_seeded(self, pool: CandidatePool) -> None:
        first = make_engine(pool, FakeAssets(pool)).resize(800, 500)
        engine = make_engine(pool, FakeAssets(pool))
        engine.resize(800, 500)
        second = engine.set_hero(0)
        engine2 = make_engine(pool, FakeAssets(pool))
        engine2.resize(800, 500)
        third = engine2.set_hero(0)
        assert first is None
        assert second.regions == third.regions

    def test_usage_is_read_only(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(640, 480)
        layout = engine.set_hero(0)
        with pytest.raises(TypeError):
            layout.usage[2] = 99  # type: ignore[index]
        assert layout.usage.total == len(layout.regions)

    def test_no_mask_full_opacity(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(640, 480)
        layout = engine.set_hero(0)
        assert not layout.masked
        assert {r.opacity for r in layout.regions} == {1.0}

    def test_transparent_mask_min_opacity(self, pool: CandidatePool, assets: FakeAssets) -> None:
        assets.masks[0] = Image.new("RGBA", (400, 300), (0, 0, 0, 0))
        engine = make_engine(pool, assets)
        engine.resize(640, 480)
        layout = engine.set_hero(0)
        assert layout.masked
        assert all(r.opacity == 0.25 for r in layout.regions if not r.background)

    def test_allow_list(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets, usage_cap=50)
        allowed = set(range(2, 40))
        engine.set_pool(pool, allowed)
        engine.resize(640, 480)
        layout = engine.set_hero(0)
        assert {r.tile_id for r in layout.regions} <= allowed

    def test_prepare_pool_skips_missing_tiles(self, pool: CandidatePool, assets: FakeAssets) -> None:
        assets.missing_tiles = set(range(40, 80))
        engine = MosaicEngine(MosaicConfig(usage_cap=50, max_workers=4), assets)
        engine.prepare_pool(pool)
        assert engine.allowed == frozenset(range(0, 40))
        engine.resize(640, 480)
        layout = engine.set_hero(1)
        assert all(r.tile_id < 40 and r.tile_id != 1 for r in layout.regions)


# -- Hexagon pass --------------------------------------------------------

class TestHexagonPass:
    def test_fifty_tiles_scenario(self) -> None:
        pool = make_pool(51, hero_ids=(50,))
        engine = make_engine(pool, FakeAssets(pool), strategy="hexagon", usage_cap=2)
        engine.resize(800, 600)
        layout = engine.set_hero(50)
        assert len(layout.regions) == 50
        assert {r.tile_id for r in layout.regions} == set(range(50))
        side = layout.regions[0].shape.side
        assert side == pytest.approx(np.sqrt(2 * (480000 / 50) / (3 * np.sqrt(3))))

    def test_cells_within_container(self) -> None:
        pool = make_pool(120)
        engine = make_engine(pool, FakeAssets(pool), strategy="hexagon")
        engine.resize(700, 400)
        layout = engine.set_hero(0)
        for r in layout.regions:
            assert isinstance(r.shape, HexShape)
            assert 0 <= r.shape.top < 400
            assert 0 <= r.shape.cx < 700

    def test_hero_inset(self) -> None:
        pool = make_pool(60)
        engine = make_engine(pool, FakeAssets(pool), strategy="hexagon", hero_inset=0.5)
        engine.resize(800, 600)
        layout = engine.set_hero(0)
        assert layout.hero_box.width == pytest.approx(400)
        assert layout.hero_box.x == pytest.approx(200)

    def test_border_fade_applied(self) -> None:
        pool = make_pool(300)
        engine = make_engine(pool, FakeAssets(pool), strategy="hexagon", usage_cap=2)
        engine.resize(800, 600)
        layout = engine.set_hero(0)
        assert min(r.opacity for r in layout.regions) < 1.0
        assert max(r.opacity for r in layout.regions) == 1.0


# -- Failures and superseded passes --------------------------------------

class TestPassLifecycle:
    def test_hero_failure_keeps_layout(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(640, 480)
        placed = engine.set_hero(0)
        assets.broken_heroes.add(1)
        with pytest.raises(HeroLoadError):
            engine.set_hero(1)
        assert engine.layout is placed
        assert engine.state is EngineState.PLACED

    def test_zero_area_container(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(640, 480)
        placed = engine.set_hero(0)
        with pytest.raises(DegenerateGeometryError):
            engine.resize(0, 480)
        assert engine.layout is placed

    def test_hex_without_usable_tiles(self) -> None:
        pool = make_pool(3)
        engine = make_engine(pool, FakeAssets(pool), strategy="hexagon")
        engine.set_pool(pool, allowed={0})
        engine.resize(640, 480)
        with pytest.raises(DegenerateGeometryError):
            engine.set_hero(0)

    def test_not_ready(self, assets: FakeAssets) -> None:
        with pytest.raises(MosaicError):
            MosaicEngine(MosaicConfig(), assets).generate()

    def test_stale_pass_discarded(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(640, 480)
        # while hero 0 is loading, the user switches to hero 1
        assets.on_load_hero[0] = lambda: engine.set_hero(1)
        result = engine.set_hero(0)
        assert result is None
        assert engine.layout.hero_id == 1
        assert engine.state is EngineState.PLACED

    def test_pool_without_current_hero(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(640, 480)
        placed = engine.set_hero(30)
        with pytest.raises(MosaicError):
            engine.set_pool(make_pool(20))
        assert engine.state is EngineState.PLACED
        assert engine.layout is placed

    def test_unexpected_error_restores_state(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(640, 480)
        placed = engine.set_hero(0)

        def explode() -> None:
            raise RuntimeError("decoder crashed")

        assets.on_load_hero[1] = explode
        with pytest.raises(RuntimeError):
            engine.set_hero(1)
        assert engine.state is EngineState.PLACED
        assert engine.layout is placed

    def test_failure_before_first_layout(self, pool: CandidatePool, assets: FakeAssets) -> None:
        assets.broken_heroes.add(0)
        engine = make_engine(pool, assets)
        engine.resize(640, 480)
        with pytest.raises(HeroLoadError):
            engine.set_hero(0)
        assert engine.state is EngineState.SIZED
        assert engine.layout is None

    def test_each_change_bumps_epoch(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        before = engine.epoch
        engine.resize(640, 480)
        assert engine.epoch > before
        layout = engine.set_hero(0)
        assert layout.epoch == engine.epoch


# -- Re-render -----------------------------------------------------------

def _layout(regions, container=(100, 50)) -> MosaicLayout:
    return MosaicLayout(
        hero_id=9,
        hero_filename="hero.jpg",
        container=container,
        hero_box=Placement(0, 0, container[0], container[1]),
        strategy="quadtree",
        regions=tuple(regions),
        epoch=1,
    )


def _solid_loader(colors: dict[int, tuple[int, int, int]], calls: list[int] | None = None):
    def load(pid: int) -> Image.Image | None:
        if calls is not None:
            calls.append(pid)
        if pid not in colors:
            return None
        return Image.new("RGB", (40, 30), colors[pid])
    return load


class TestRender:
    def test_scaled_size_and_colour(self) -> None:
        layout = _layout([Region(RectShape(0, 0, 50, 50), (255, 0, 0), 1, 1.0)])
        img = render_layout(layout, None, _solid_loader({1: (255, 0, 0)}), scale=2)
        assert img.size == (200, 100)
        r, g, b = img.getpixel((50, 50))
        assert r >= 250 and g <= 5 and b <= 5
        assert img.getpixel((150, 50)) == (0, 0, 0)

    def test_opacity_blends_over_hero(self) -> None:
        layout = _layout([Region(RectShape(0, 0, 100, 50), (255, 255, 255), 1, 0.5)])
        hero = Image.new("RGB", (10, 5), (0, 0, 0))
        img = render_layout(layout, hero, _solid_loader({1: (255, 255, 255)}), scale=1)
        r, _, _ = img.getpixel((50, 25))
        assert 120 <= r <= 135

    def test_hexagon_clipped(self) -> None:
        hexagon = HexShape(50, 25, 20)
        layout = _layout([Region(hexagon, (0, 255, 0), 3, 1.0)])
        img = render_layout(layout, None, _solid_loader({3: (0, 255, 0)}), scale=1)
        assert img.getpixel((50, 25))[1] >= 250
        x0, y0, _, _ = hexagon.bounds
        # bounding-box corner lies outside the polygon
        assert img.getpixel((int(x0) + 1, int(y0) + 1)) == (0, 0, 0)

    def test_missing_tile_skipped(self) -> None:
        layout = _layout([Region(RectShape(0, 0, 50, 50), (255, 0, 0), 1, 1.0)])
        img = render_layout(layout, None, _solid_loader({}), scale=1)
        assert img.getpixel((25, 25)) == (0, 0, 0)

    def test_replays_layout_only(self, pool: CandidatePool, assets: FakeAssets) -> None:
        engine = make_engine(pool, assets)
        engine.resize(320, 240)
        layout = engine.set_hero(0)
        calls: list[int] = []
        colors = {p.id: tuple(int(c) for c in p.avg_color) for p in pool}
        a = render_layout(layout, assets.hero_image, _solid_loader(colors, calls), scale=2)
        b = render_layout(layout, assets.hero_image, _solid_loader(colors), scale=2)
        assert sorted(calls) == sorted({r.tile_id for r in layout.regions})
        assert np.array_equal(np.asarray(a), np.asarray(b))
        assert engine.layout is layout

    def test_invalid_scale(self) -> None:
        with pytest.raises(ValueError):
            render_layout(_layout([]), None, _solid_loader({}), scale=0)

    def test_export_filename(self, tmp_path: Path) -> None:
        layout = _layout([Region(RectShape(0, 0, 50, 50), (255, 0, 0), 1, 1.0)])
        path = export_layout(layout, None, _solid_loader({1: (255, 0, 0)}), tmp_path, scale=2)
        assert path.name == "mosaic-hero-200x100.png"
        assert Image.open(path).size == (200, 100)

    def test_export_failure(self, tmp_path: Path) -> None:
        blocked = tmp_path / "blocked"
        blocked.write_text("not a directory")
        layout = _layout([Region(RectShape(0, 0, 50, 50), (255, 0, 0), 1, 1.0)])
        with pytest.raises(ExportError):
            export_layout(layout, None, _solid_loader({1: (255, 0, 0)}), blocked, scale=1)


# -- CLI -----------------------------------------------------------------

@pytest.fixture
def photo_library(tmp_path: Path) -> Path:
    photos = tmp_path / "photos"
    tiles = tmp_path / "tiles"
    photos.mkdir()
    tiles.mkdir()
    entries = []
    rng = np.random.default_rng(2)
    Image.new("RGB", (64, 48), (200, 120, 40)).save(photos / "hero.jpg")
    mask = Image.new("RGBA", (64, 48), (0, 0, 0, 255))
    mask.paste((0, 0, 0, 0), (20, 12, 44, 36))
    mask.save(photos / "hero.png")
    entries.append({"filename": "hero.jpg", "width": 64, "height": 48,
                    "avgColor": {"r": 200, "g": 120, "b": 40}})
    for i in range(12):
        color = tuple(int(c) for c in rng.integers(0, 256, 3))
        Image.new("RGB", (16, 12), color).save(tiles / f"t{i:02d}.jpg")
        entries.append({"filename": f"t{i:02d}.jpg", "width": 16, "height": 12,
                        "avgColor": {"r": color[0], "g": color[1], "b": color[2]}})
    (photos / "index.json").write_text(json.dumps({"photos": entries}), encoding="utf-8")
    return tmp_path


class TestCli:
    def test_heroes(self, photo_library: Path) -> None:
        result = CliRunner().invoke(app, [
            "heroes",
            "--catalog", str(photo_library / "photos" / "index.json"),
            "--photos", str(photo_library / "photos"),
            "--tiles", str(photo_library / "tiles"),
        ])
        assert result.exit_code == 0, result.output
        assert "hero.jpg" in result.output

    def test_single(self, photo_library: Path) -> None:
        out = photo_library / "out"
        result = CliRunner().invoke(app, [
            "single", "hero.jpg",
            "--catalog", str(photo_library / "photos" / "index.json"),
            "--photos", str(photo_library / "photos"),
            "--tiles", str(photo_library / "tiles"),
            "--output", str(out),
            "--width", "120", "--height", "80",
            "--scale", "1",
            "--usage-cap", "100",
            "--seed", "3",
        ])
        assert result.exit_code == 0, result.output
        assert (out / "mosaic-hero-120x80.png").exists()

    def test_single_unknown_catalog(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(app, ["single", "x.jpg", "--catalog", str(tmp_path / "none.json")])
        assert result.exit_code == 1

    def test_batch_color_space(self, photo_library: Path) -> None:
        out = photo_library / "out"
        result = CliRunner().invoke(app, [
            "batch",
            "--catalog", str(photo_library / "photos" / "index.json"),
            "--photos", str(photo_library / "photos"),
            "--tiles", str(photo_library / "tiles"),
            "--output", str(out),
            "--width", "120", "--height", "80",
            "--scale", "1",
            "--usage-cap", "100",
            "--color-space", "lab",
        ])
        assert result.exit_code == 0, result.output
        assert (out / "mosaic-hero-120x80.png").exists()

    def test_bad_color_space_rejected(self, photo_library: Path) -> None:
        result = CliRunner().invoke(app, [
            "batch",
            "--catalog", str(photo_library / "photos" / "index.json"),
            "--color-space", "hsv",
        ])
        assert result.exit_code != 0

    def test_assets_follow_config(self, tmp_path: Path) -> None:
        cfg = MosaicConfig(
            photos_dir=tmp_path,
            tiles_dir=tmp_path / "tiles",
            HERO_EXTENSIONS=frozenset({".webp"}),
            MASK_EXTENSION=".mask.png",
        )
        assets = _assets(cfg)
        jpeg = CandidatePhoto(0, "a.jpg", 10, 10, (0.0, 0.0, 0.0))
        webp = CandidatePhoto(1, "b.webp", 10, 10, (0.0, 0.0, 0.0))
        assert assets.mask_path(jpeg) is None
        assert assets.mask_path(webp) == tmp_path / "b.mask.png"
        assert assets.tile_path(webp) == tmp_path / "tiles" / "b.webp"
