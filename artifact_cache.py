#!/usr/bin/env python3
"""
Local store of generated product images.

One PNG per product, named after the product ID. A file's existence means the
image was generated on an earlier run (not necessarily uploaded), which is
what lets an interrupted run pick up where it left off.

Entries are never invalidated: if a product description changes, the cached
image is reused until it is regenerated explicitly.
"""

import logging
import os
from pathlib import Path


class ArtifactCache:
    """Generated images keyed by product ID."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        # Left over when a previous run died mid-write
        for stale in self.root.glob("*.png.part"):
            logging.warning("Removing incomplete cache file: %s", stale)
            stale.unlink()

    def path_for(self, item_id: str) -> Path:
        """Path of the cache entry for a product."""
        if not item_id or Path(item_id).name != item_id or item_id in (".", ".."):
            raise ValueError(f"Invalid product ID for cache: {item_id!r}")
        return self.root / f"{item_id}.png"

    def has(self, item_id: str) -> bool:
        return self.path_for(item_id).is_file()

    def read(self, item_id: str) -> bytes:
        return self.path_for(item_id).read_bytes()

    def write(self, item_id: str, data: bytes) -> Path:
        """Store image bytes for a product, replacing any previous entry."""
        path = self.path_for(item_id)
        tmp_path = path.parent / f"{path.name}.part"
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        logging.info("Cached image: %s", path)
        return path
