"""Asset acquisition: hero photos, masks and tile thumbnails.

The engine only talks to an object with the :class:`AssetSource` methods.
:class:`DirectoryAssets` serves them from a photos folder (heroes and their
``<stem>.png`` masks) and a tiles folder (compressed thumbnails named like
the photo).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from photo_mosaic.catalog import CandidatePhoto, CandidatePool
from photo_mosaic.errors import HeroLoadError
from photo_mosaic.image_io import open_image

logger = logging.getLogger(__name__)


class AssetSource(Protocol):
    def load_hero(self, photo: CandidatePhoto) -> Image.Image: ...

    def load_mask(self, photo: CandidatePhoto) -> Image.Image | None: ...

    def load_tile(self, photo: CandidatePhoto) -> Image.Image | None: ...

    def tile_exists(self, photo: CandidatePhoto) -> bool: ...

    def mask_exists(self, photo: CandidatePhoto) -> bool: ...


class DirectoryAssets:
    """Assets laid out on disk the way the offline tooling writes them."""

    def __init__(
        self,
        photos_dir: str | Path,
        tiles_dir: str | Path,
        hero_extensions: Iterable[str] = (".jpg", ".jpeg"),
        mask_extension: str = ".png",
    ) -> None:
        self.photos_dir = Path(photos_dir)
        self.tiles_dir = Path(tiles_dir)
        self.hero_extensions = frozenset(e.lower() for e in hero_extensions)
        self.mask_extension = mask_extension

    def hero_path(self, photo: CandidatePhoto) -> Path:
        return self.photos_dir / photo.filename

    def mask_path(self, photo: CandidatePhoto) -> Path | None:
        if Path(photo.filename).suffix.lower() not in self.hero_extensions:
            return None
        return self.photos_dir / f"{photo.stem}{self.mask_extension}"

    def tile_path(self, photo: CandidatePhoto) -> Path:
        return self.tiles_dir / photo.filename

    def load_hero(self, photo: CandidatePhoto) -> Image.Image:
        path = self.hero_path(photo)
        try:
            return open_image(path)
        except (OSError, UnidentifiedImageError) as exc:
            msg = f"Cannot load hero photo {path}: {exc}"
            raise HeroLoadError(msg) from exc

    def load_mask(self, photo: CandidatePhoto) -> Image.Image | None:
        path = self.mask_path(photo)
        if path is None or not path.is_file():
            return None
        try:
            return open_image(path)
        except (OSError, UnidentifiedImageError) as exc:
            logger.warning("Mask %s unreadable, masking disabled: %s", path, exc)
            return None

    def load_tile(self, photo: CandidatePhoto) -> Image.Image | None:
        path = self.tile_path(photo)
        try:
            return open_image(path)
        except (OSError, UnidentifiedImageError) as exc:
            logger.warning("Tile %s unavailable: %s", path, exc)
            return None

    def tile_exists(self, photo: CandidatePhoto) -> bool:
        return self.tile_path(photo).is_file()

    def mask_exists(self, photo: CandidatePhoto) -> bool:
        path = self.mask_path(photo)
        return path is not None and path.is_file()


def _probe(
    photos: Iterable[CandidatePhoto],
    predicate: Callable[[CandidatePhoto], bool],
    max_workers: int,
    label: str,
) -> set[int]:
    photos = list(photos)
    t0 = time.perf_counter()
    found: set[int] = set()
    with ThreadPoolExecutor(max_workers=max_workers) as ex:
        futures = {ex.submit(predicate, p): p for p in photos}
        for fut in as_completed(futures):
            photo = futures[fut]
            try:
                ok = fut.result()
            except OSError as exc:
                logger.debug("%s probe failed for %s: %s", label, photo.filename, exc)
                continue
            if ok:
                found.add(photo.id)
    logger.info(
        "%s check: %d/%d present  (%.2f s)",
        label, len(found), len(photos), time.perf_counter() - t0,
    )
    return found


def check_tiles(pool: CandidatePool, assets: AssetSource, max_workers: int = 8) -> set[int]:
    """Ids of candidates whose tile asset exists, probed concurrently."""
    return _probe(pool, assets.tile_exists, max_workers, "Tile")


def detect_heroes(pool: CandidatePool, assets: AssetSource, max_workers: int = 8) -> CandidatePool:
    """Flag as heroes the photos that ship an alpha mask.

    Pools whose catalog already carries hero flags are returned unchanged.
    """
    if pool.heroes():
        return pool
    return pool.with_heroes(_probe(pool, assets.mask_exists, max_workers, "Mask"))
