"""Memory + disk cache for derivative bytes."""

from __future__ import annotations

import asyncio
import shutil
import threading
from collections import OrderedDict
from pathlib import Path

from loguru import logger

from imagesync.images.formats import ImageSize
from imagesync.utils.helpers import safe_segment, write_bytes_atomic


class _MemoryTier:
    """Bounded LRU map, limited by entry count and total bytes."""

    def __init__(self, *, max_entries: int, max_bytes: int) -> None:
        self.max_entries = max(1, int(max_entries))
        self.max_bytes = max(1, int(max_bytes))
        self._entries: OrderedDict[str, bytes] = OrderedDict()
        self._total_bytes = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            value = self._entries.get(key)
            if value is not None:
                self._entries.move_to_end(key)
            return value

    def put(self, key: str, value: bytes) -> None:
        if len(value) > self.max_bytes:
            self.pop(key)
            return
        with self._lock:
            previous = self._entries.pop(key, None)
            if previous is not None:
                self._total_bytes -= len(previous)
            self._entries[key] = value
            self._total_bytes += len(value)
            while len(self._entries) > self.max_entries or self._total_bytes > self.max_bytes:
                _, evicted = self._entries.popitem(last=False)
                self._total_bytes -= len(evicted)

    def pop(self, key: str) -> None:
        with self._lock:
            value = self._entries.pop(key, None)
            if value is not None:
                self._total_bytes -= len(value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_bytes = 0

    def __len__(self) -> int:
        return len(self._entries)


class TieredCache:
    """Derivative cache keyed by (identifier, size).

    Thumbnails persist in a durable directory since list views depend on
    them; medium/large live in a purgeable directory because they can be
    regenerated or re-downloaded. Reads fall through memory to disk and a
    disk hit is promoted into memory.
    """

    def __init__(
        self,
        *,
        thumbnail_dir: str | Path,
        cache_dir: str | Path,
        memory_max_entries: int = 100,
        memory_max_bytes: int = 64 * 1024 * 1024,
    ) -> None:
        self.thumbnail_dir = Path(thumbnail_dir).expanduser()
        self.cache_dir = Path(cache_dir).expanduser()
        self.thumbnail_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._memory = _MemoryTier(max_entries=memory_max_entries, max_bytes=memory_max_bytes)

    async def save_thumbnail(self, identifier: str, data: bytes) -> None:
        await self.save_image(identifier, ImageSize.THUMBNAIL, data)

    async def load_thumbnail(self, identifier: str) -> bytes | None:
        return await self.load_image(identifier, ImageSize.THUMBNAIL)

    async def save_image(self, identifier: str, size: ImageSize, data: bytes) -> None:
        path = self._disk_path(identifier, size)
        await asyncio.to_thread(write_bytes_atomic, path, data)
        self._memory.put(self._key(identifier, size), bytes(data))

    async def load_image(self, identifier: str, size: ImageSize) -> bytes | None:
        key = self._key(identifier, size)
        cached = self._memory.get(key)
        if cached is not None:
            return cached
        data = await asyncio.to_thread(_read_if_exists, self._disk_path(identifier, size))
        if data is None:
            return None
        self._memory.put(key, data)
        return data

    async def invalidate_cache(self, identifier: str, size: ImageSize | None = None) -> None:
        """Drop one size, or with no size the thumbnail and every variant, from both tiers."""
        sizes = [size] if size is not None else list(ImageSize)
        for item in sizes:
            self._memory.pop(self._key(identifier, item))
        await asyncio.to_thread(_unlink_all, [self._disk_path(identifier, item) for item in sizes])

    async def clear_cache(self) -> None:
        """Wipe memory and the purgeable directory; durable thumbnails survive."""
        self._memory.clear()
        await asyncio.to_thread(self._reset_cache_dir)
        logger.info(f"Image cache cleared dir={self.cache_dir}")

    def memory_entry_count(self) -> int:
        return len(self._memory)

    def _disk_path(self, identifier: str, size: ImageSize) -> Path:
        name = f"{safe_segment(identifier, fallback='image')}_{size.value}"
        if size is ImageSize.THUMBNAIL:
            return self.thumbnail_dir / name
        return self.cache_dir / name

    @staticmethod
    def _key(identifier: str, size: ImageSize) -> str:
        return f"{identifier}:{size.value}"

    def _reset_cache_dir(self) -> None:
        shutil.rmtree(self.cache_dir, ignore_errors=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)


def _read_if_exists(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _unlink_all(paths: list[Path]) -> None:
    for path in paths:
        path.unlink(missing_ok=True)
