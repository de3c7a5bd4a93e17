"""Key-value secret storage backends."""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Protocol

from loguru import logger


class SecretStore(Protocol):
    """Persisted key-value secret storage."""

    def save(self, key: str, value: str) -> None: ...

    def load(self, key: str) -> str | None: ...

    def delete(self, key: str) -> None: ...

    def save_many(self, values: Mapping[str, str]) -> None: ...

    def delete_many(self, keys: Iterable[str]) -> None: ...


class MemorySecretStore:
    """Process-local secret store, mainly for tests and ephemeral runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def save(self, key: str, value: str) -> None:
        self._values[key] = str(value)

    def load(self, key: str) -> str | None:
        return self._values.get(key)

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def save_many(self, values: Mapping[str, str]) -> None:
        self._values.update({k: str(v) for k, v in values.items()})

    def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._values.pop(key, None)


class FileSecretStore:
    """JSON-document secret store with owner-only permissions.

    Each write replaces the whole document through a temp file so a crash
    never leaves a half-written secret behind.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def save(self, key: str, value: str) -> None:
        self.save_many({key: value})

    def save_many(self, values: Mapping[str, str]) -> None:
        """Set several keys in one document replace."""
        with self._lock:
            data = self._read()
            data.update({str(k): str(v) for k, v in values.items()})
            self._write(data)

    def load(self, key: str) -> str | None:
        with self._lock:
            value = self._read().get(key)
        return None if value is None else str(value)

    def delete(self, key: str) -> None:
        self.delete_many([key])

    def delete_many(self, keys: Iterable[str]) -> None:
        with self._lock:
            try:
                data = self._read()
            except ValueError as e:
                # Deleting from an unreadable document resets it.
                logger.warning(f"Secret store {self.path} unreadable, resetting: {e}")
                self._write({})
                return
            removed = [key for key in keys if data.pop(key, None) is not None]
            if removed:
                self._write(data)

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        # A corrupt document surfaces as an error rather than an empty store.
        raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        if not isinstance(raw, dict):
            raise ValueError(f"{self.path} must contain a JSON object")
        return {str(k): v for k, v in raw.items()}

    def _write(self, data: dict[str, str]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)
