"""Utility functions for imagesync runtime paths and helpers."""

import os
import time
from pathlib import Path

PRIMARY_DATA_DIR_NAME = ".imagesync"


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """
    Get the runtime data directory.

    Priority:
    1. `IMAGESYNC_DATA_DIR` env override
    2. `~/.imagesync`
    """
    env_path = str(os.environ.get("IMAGESYNC_DATA_DIR") or "").strip()
    if env_path:
        return ensure_dir(Path(env_path).expanduser())
    return ensure_dir(Path.home() / PRIMARY_DATA_DIR_NAME)


def now_ms() -> int:
    return int(time.time() * 1000)


def safe_segment(value: str, *, fallback: str) -> str:
    """Reduce an identifier to characters safe for use in a file name."""
    text = (value or "").strip()
    if not text:
        return fallback
    cleaned = "".join(ch if (ch.isalnum() or ch in {"-", "_"}) else "-" for ch in text)
    cleaned = cleaned.strip("-_")
    return cleaned or fallback


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write bytes through a temp file so readers never observe partial content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)
