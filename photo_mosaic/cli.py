"""Rich command-line interface powered by Typer."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from photo_mosaic.assets import DirectoryAssets, detect_heroes
from photo_mosaic.catalog import CandidatePhoto, CandidatePool, load_catalog
from photo_mosaic.config import MosaicConfig
from photo_mosaic.engine import MosaicEngine, MosaicLayout
from photo_mosaic.errors import MosaicError
from photo_mosaic.render import export_layout

app = typer.Typer(
    name="photo-mosaic",
    help="Cover a hero photo with a mosaic of your other photos.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=True)],
    )


def _assets(cfg: MosaicConfig) -> DirectoryAssets:
    return DirectoryAssets(
        cfg.photos_dir,
        cfg.tiles_dir,
        hero_extensions=cfg.HERO_EXTENSIONS,
        mask_extension=cfg.MASK_EXTENSION,
    )


def _resolve_hero(pool: CandidatePool, hero: str) -> CandidatePhoto:
    """Accept a catalog filename or a position in the hero list."""
    photo = pool.find(hero)
    if photo is not None:
        return photo
    heroes = pool.heroes()
    if hero.isdigit() and int(hero) < len(heroes):
        return heroes[int(hero)]
    msg = f"No hero photo {hero!r} (filename or index 0..{len(heroes) - 1})"
    raise typer.BadParameter(msg)


def _export(engine: MosaicEngine, layout: MosaicLayout, cfg: MosaicConfig) -> Path:
    pool = engine.pool
    assets = engine.assets
    hero_image = assets.load_hero(pool[layout.hero_id])
    return export_layout(
        layout,
        hero_image,
        lambda pid: assets.load_tile(pool[pid]),
        cfg.output_dir,
        scale=cfg.export_scale,
        tile_brightness=cfg.tile_brightness,
        tile_saturation=cfg.tile_saturation,
        max_workers=cfg.max_workers,
        output_format=cfg.output_format,
    )


def _summary(layout: MosaicLayout) -> str:
    opacities = [r.opacity for r in layout.regions]
    distinct = len({r.tile_id for r in layout.regions})
    return (
        f"{len(layout)} regions  {distinct} distinct tiles  "
        f"opacity {min(opacities):.2f}-{max(opacities):.2f}  "
        f"mask={'yes' if layout.masked else 'no'}"
    )


def _build_config(**overrides) -> MosaicConfig:
    try:
        return MosaicConfig(**overrides)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


# Defaults come from MosaicConfig - single source of truth
_DEFAULTS = MosaicConfig()


# -- heroes command ----------------------------------------------------

@app.command()
def heroes(
    catalog: Path = typer.Option(_DEFAULTS.catalog_path, "--catalog", "-c", help="Catalog index.json"),
    photos_dir: Path = typer.Option(_DEFAULTS.photos_dir, "--photos", help="Photos + masks folder"),
    tiles_dir: Path = typer.Option(_DEFAULTS.tiles_dir, "--tiles", help="Tile thumbnails folder"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """List the hero-eligible photos of a catalog."""
    _setup_logging(verbose)
    cfg = _build_config(catalog_path=catalog, photos_dir=photos_dir, tiles_dir=tiles_dir)
    try:
        pool = detect_heroes(load_catalog(catalog), _assets(cfg), cfg.max_workers)
    except MosaicError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1) from exc

    table = Table(title=f"Heroes in {catalog}")
    table.add_column("#", justify="right")
    table.add_column("Id", justify="right")
    table.add_column("Filename")
    table.add_column("Size", justify="right")
    table.add_column("Avg colour")
    for idx, photo in enumerate(pool.heroes()):
        r, g, b = photo.avg_color
        table.add_row(
            str(idx), str(photo.id), photo.filename,
            f"{photo.width}x{photo.height}", f"({r:.0f}, {g:.0f}, {b:.0f})",
        )
    console.print(table)


# -- single-hero command -----------------------------------------------

@app.command()
def single(
    hero: str = typer.Argument(..., help="Hero filename, or index in the hero list"),
    catalog: Path = typer.Option(_DEFAULTS.catalog_path, "--catalog", "-c"),
    photos_dir: Path = typer.Option(_DEFAULTS.photos_dir, "--photos"),
    tiles_dir: Path = typer.Option(_DEFAULTS.tiles_dir, "--tiles"),
    output_dir: Path = typer.Option(_DEFAULTS.output_dir, "--output", "-o"),
    width: int = typer.Option(1280, "--width", "-W", help="Container width (px)"),
    height: int = typer.Option(800, "--height", "-H", help="Container height (px)"),
    strategy: str = typer.Option(_DEFAULTS.strategy, "--strategy", help="'quadtree' or 'hexagon'"),
    scale: int = typer.Option(_DEFAULTS.export_scale, "--scale", "-s", help="Export scale factor"),
    usage_cap: int = typer.Option(_DEFAULTS.usage_cap, "--usage-cap", help="Max uses per tile"),
    color_space: str = typer.Option(_DEFAULTS.color_space, "--color-space", help="'rgb' or 'lab'"),
    seed: int | None = typer.Option(_DEFAULTS.seed, "--seed", help="Background fill seed"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Generate and export the mosaic of one hero photo."""
    _setup_logging(verbose)
    cfg = _build_config(
        strategy=strategy,
        export_scale=scale,
        usage_cap=usage_cap,
        color_space=color_space,
        seed=seed,
        catalog_path=catalog,
        photos_dir=photos_dir,
        tiles_dir=tiles_dir,
        output_dir=output_dir,
    )
    engine = MosaicEngine(cfg, _assets(cfg))

    try:
        engine.prepare_pool(load_catalog(catalog))
        photo = _resolve_hero(engine.pool, hero)
        engine.resize(width, height)
        layout = engine.set_hero(photo.id)
        if layout is None:
            raise MosaicError("Generation was superseded")
        path = _export(engine, layout, cfg)
    except MosaicError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1) from exc

    console.print(f"[green]✓[/green] Saved to {path}  [dim]{_summary(layout)}[/dim]")


# -- batch command -----------------------------------------------------

@app.command()
def batch(
    catalog: Path = typer.Option(_DEFAULTS.catalog_path, "--catalog", "-c", help="Catalog index.json"),
    photos_dir: Path = typer.Option(_DEFAULTS.photos_dir, "--photos", help="Photos + masks folder"),
    tiles_dir: Path = typer.Option(_DEFAULTS.tiles_dir, "--tiles", help="Tile thumbnails folder"),
    output_dir: Path = typer.Option(_DEFAULTS.output_dir, "--output", "-o", help="Results folder"),
    width: int = typer.Option(1280, "--width", "-W", help="Container width (px)"),
    height: int = typer.Option(800, "--height", "-H", help="Container height (px)"),
    strategy: str = typer.Option(_DEFAULTS.strategy, "--strategy", help="'quadtree' or 'hexagon'"),
    scale: int = typer.Option(_DEFAULTS.export_scale, "--scale", "-s", help="Export scale factor"),
    usage_cap: int = typer.Option(_DEFAULTS.usage_cap, "--usage-cap", help="Max uses per tile"),
    color_space: str = typer.Option(_DEFAULTS.color_space, "--color-space", help="'rgb' or 'lab'"),
    seed: int | None = typer.Option(_DEFAULTS.seed, "--seed", help="Background fill seed"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Generate and export a mosaic for every hero photo in the catalog."""
    _setup_logging(verbose)
    cfg = _build_config(
        strategy=strategy,
        export_scale=scale,
        usage_cap=usage_cap,
        color_space=color_space,
        seed=seed,
        catalog_path=catalog,
        photos_dir=photos_dir,
        tiles_dir=tiles_dir,
        output_dir=output_dir,
    )
    engine = MosaicEngine(cfg, _assets(cfg))

    try:
        engine.prepare_pool(load_catalog(catalog))
        engine.resize(width, height)
    except MosaicError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1) from exc

    hero_list = engine.pool.heroes()
    if not hero_list:
        console.print(f"\n[yellow]No hero photos (with masks) in {photos_dir}/[/yellow]\n")
        raise typer.Exit(0)

    console.print(Panel.fit(
        f"[bold]PHOTO MOSAIC[/bold]\n"
        f"Container: {width}x{height}  |  Strategy: {cfg.strategy}\n"
        f"Pool: {len(engine.pool)}  |  Tiles available: {len(engine.allowed or ())}\n"
        f"Heroes: {len(hero_list)}  |  Export scale: {cfg.export_scale}x",
        border_style="cyan",
    ))

    failures = 0
    for idx, photo in enumerate(hero_list, 1):
        console.rule(f"[bold cyan][{idx}/{len(hero_list)}] {photo.filename}[/bold cyan]")
        t0 = time.perf_counter()
        try:
            layout = engine.set_hero(photo.id)
            if layout is None:
                continue
            path = _export(engine, layout, cfg)
        except MosaicError as exc:
            failures += 1
            console.print(f"  [red]✗[/red] {exc}")
            continue
        console.print(
            f"  [green]✓[/green] {path.name}  "
            f"[dim]{_summary(layout)}  time={time.perf_counter() - t0:.1f}s[/dim]"
        )

    style = "green" if not failures else "yellow"
    console.print(Panel.fit(
        f"[bold {style}]DONE[/bold {style}] - {len(hero_list) - failures}/{len(hero_list)} "
        f"mosaics in [bold]{output_dir}/[/bold]",
        border_style=style,
    ))


if __name__ == "__main__":
    app()
