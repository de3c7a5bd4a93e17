"""Durable store for original image bytes."""

from __future__ import annotations

import asyncio
from pathlib import Path

from imagesync.images.formats import ImageFormat
from imagesync.utils.helpers import safe_segment, write_bytes_atomic


class OriginalImageStore:
    """File-based store holding each asset's original at ``<asset_id>.<ext>``.

    Paths handed out are relative to ``root_dir`` so records survive a moved
    data directory.
    """

    def __init__(self, root_dir: str | Path) -> None:
        self.root_dir = Path(root_dir).expanduser()
        self.root_dir.mkdir(parents=True, exist_ok=True)

    async def persist(self, asset_id: str, data: bytes, *, fmt: ImageFormat) -> str:
        rel = f"{safe_segment(asset_id, fallback='asset')}.{fmt.extension}"
        await asyncio.to_thread(write_bytes_atomic, self.root_dir / rel, data)
        return rel

    async def load(self, rel_path: str) -> bytes | None:
        path = self.resolve(rel_path)
        if path is None:
            return None
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None

    async def delete(self, rel_path: str) -> None:
        path = self.resolve(rel_path)
        if path is not None:
            await asyncio.to_thread(path.unlink, missing_ok=True)

    def resolve(self, rel_path: str) -> Path | None:
        text = str(rel_path or "").strip()
        if not text:
            return None
        path = (self.root_dir / text).resolve()
        # Reject paths that escape the originals directory.
        if self.root_dir.resolve() not in path.parents:
            return None
        return path
