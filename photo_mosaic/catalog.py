"""Candidate photo catalog produced by the offline indexer."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from photo_mosaic.errors import CatalogError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidatePhoto:
    """One indexed photograph.

    Attributes:
        id:        Stable integer index (position in the catalog).
        filename:  Asset filename, shared by the photo and its tile.
        width:     Source width in pixels.
        height:    Source height in pixels.
        avg_color: Average (r, g, b) computed by the indexer.
        hero:      True when the photo has an alpha mask and may be a hero.
    """

    id: int
    filename: str
    width: int
    height: int
    avg_color: tuple[float, float, float]
    hero: bool = False

    @property
    def stem(self) -> str:
        return Path(self.filename).stem


class CandidatePool:
    """Append-only, read-only collection of candidate photos.

    Colours are held as an (N, 3) float64 array so the matcher can score
    the whole pool at once.
    """

    def __init__(self, photos: Iterable[CandidatePhoto] = ()) -> None:
        self._photos = tuple(photos)
        self._by_id = {p.id: p for p in self._photos}
        if len(self._by_id) != len(self._photos):
            raise CatalogError("Duplicate candidate ids in pool")
        self.ids = np.array([p.id for p in self._photos], dtype=np.int64)
        self.colors = np.array(
            [p.avg_color for p in self._photos], dtype=np.float64,
        ).reshape(-1, 3)
        self.ids.setflags(write=False)
        self.colors.setflags(write=False)

    def __len__(self) -> int:
        return len(self._photos)

    def __iter__(self) -> Iterator[CandidatePhoto]:
        return iter(self._photos)

    def __getitem__(self, photo_id: int) -> CandidatePhoto:
        return self._by_id[photo_id]

    def __contains__(self, photo_id: object) -> bool:
        return photo_id in self._by_id

    def heroes(self) -> list[CandidatePhoto]:
        return [p for p in self._photos if p.hero]

    def find(self, filename: str) -> CandidatePhoto | None:
        for p in self._photos:
            if p.filename == filename:
                return p
        return None

    def extended(self, photos: Iterable[CandidatePhoto]) -> CandidatePool:
        """Return a new pool with *photos* appended."""
        return CandidatePool((*self._photos, *photos))

    def with_heroes(self, hero_ids: Iterable[int]) -> CandidatePool:
        """Return a copy whose hero flags are exactly *hero_ids*."""
        flags = set(hero_ids)
        return CandidatePool(
            CandidatePhoto(p.id, p.filename, p.width, p.height, p.avg_color, p.id in flags)
            for p in self._photos
        )


def _parse_color(raw: object, filename: str) -> tuple[float, float, float]:
    try:
        if isinstance(raw, dict):
            color = (float(raw["r"]), float(raw["g"]), float(raw["b"]))
        else:
            r, g, b = raw  # type: ignore[misc]
            color = (float(r), float(g), float(b))
    except (KeyError, TypeError, ValueError) as exc:
        msg = f"Invalid avgColor for {filename!r}: {raw!r}"
        raise CatalogError(msg) from exc
    if not all(math.isfinite(c) for c in color):
        # kept in the pool; the matcher never prefers a non-finite colour
        logger.warning("Non-finite average colour for %s", filename)
    return color


def parse_catalog(data: dict) -> CandidatePool:
    """Build a pool from the decoded catalog JSON.

    Ids are list positions. An explicit ``"hero"`` flag marks hero-eligible
    entries; entries without one are plain tiles until
    :meth:`CandidatePool.with_heroes` is applied.
    """
    if not isinstance(data, dict) or not isinstance(data.get("photos"), list):
        raise CatalogError("Catalog must be an object with a 'photos' list")

    photos = []
    for idx, entry in enumerate(data["photos"]):
        try:
            filename = str(entry["filename"])
            width = int(entry["width"])
            height = int(entry["height"])
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"Malformed catalog entry #{idx}: {entry!r}"
            raise CatalogError(msg) from exc
        color = _parse_color(entry.get("avgColor"), filename)
        photos.append(
            CandidatePhoto(idx, filename, width, height, color, bool(entry.get("hero", False))),
        )
    return CandidatePool(photos)


def load_catalog(path: str | Path) -> CandidatePool:
    """Read ``index.json`` written by the photo indexer."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        msg = f"Catalog not found: {path}"
        raise CatalogError(msg) from exc
    except json.JSONDecodeError as exc:
        msg = f"Catalog is not valid JSON: {path} ({exc})"
        raise CatalogError(msg) from exc

    pool = parse_catalog(data)
    logger.info("Catalog %s: %d photos, %d flagged heroes", path, len(pool), len(pool.heroes()))
    return pool
