"""Exception hierarchy for the mosaic engine."""

from __future__ import annotations


class MosaicError(Exception):
    """Base class for every error raised by the engine."""


class CatalogError(MosaicError, ValueError):
    """The photo catalog is missing or malformed."""


class AssetError(MosaicError, OSError):
    """An image asset could not be fetched or decoded."""


class HeroLoadError(AssetError):
    """The hero photograph could not be loaded; the pass is aborted."""


class DegenerateGeometryError(MosaicError, ValueError):
    """A pass produced no usable geometry (zero-area container, no regions)."""


class ExportError(MosaicError, OSError):
    """The high-resolution export could not be written."""
