#!/usr/bin/env python3
"""
main.py: quick-start entry point.

Put photos, masks and ``index.json`` into ``photos/``, tile thumbnails into
``tiles/``, and run:

    python main.py batch

Or use the full CLI:

    python -m photo_mosaic.cli single IMG_0042.jpg --strategy hexagon
    python -m photo_mosaic.cli heroes
"""

from photo_mosaic.cli import app

if __name__ == "__main__":
    app()
