"""SQLite storage for image asset sync records."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from loguru import logger

from imagesync.images.formats import ImageSize
from imagesync.storage.models import (
    AssetMutation,
    AssetPredicate,
    DeletionStatus,
    ImageAsset,
    UploadStatus,
)
from imagesync.utils.helpers import now_ms

_COLUMNS = (
    "asset_id",
    "file_path",
    "original_format",
    "remote_image_id",
    "upload_status",
    "upload_retry_count",
    "last_upload_attempt_ms",
    "uploaded_at_ms",
    "stored_sizes",
    "deletion_status",
    "deletion_retry_count",
    "last_deletion_attempt_ms",
    "created_at_ms",
    "updated_at_ms",
)


class SQLiteAssetRepository:
    """Thread-safe asset record store; every write is a single-row transaction."""

    SCHEMA_VERSION = 2

    def __init__(
        self,
        db_path: str | Path,
        *,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self.journal_mode = self._configure_connection(busy_timeout_ms)
        self.init_schema()

    def _configure_connection(self, busy_timeout_ms: int) -> str:
        """Apply WAL, NORMAL sync and a bounded lock wait; return the journal mode SQLite accepted."""
        cur = self._conn.cursor()
        cur.execute(f"PRAGMA busy_timeout = {max(0, int(busy_timeout_ms))}")
        cur.execute("PRAGMA journal_mode = WAL")
        row = cur.fetchone()
        cur.execute("PRAGMA synchronous = NORMAL")
        self._conn.commit()
        # SQLite may refuse WAL (in-memory databases report "memory").
        return str(row[0]).lower() if row and row[0] is not None else "unknown"

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def init_schema(self) -> None:
        with self._lock:
            cur = self._conn.cursor()
            version = self._get_user_version(cur)
            if version < 1:
                self._migrate_to_v1(cur)
                version = 1
            if version < 2:
                self._migrate_to_v2(cur)
                version = 2
            if version != self.SCHEMA_VERSION:
                self._set_user_version(cur, self.SCHEMA_VERSION)
            self._conn.commit()

    @staticmethod
    def _get_user_version(cur: sqlite3.Cursor) -> int:
        cur.execute("PRAGMA user_version")
        row = cur.fetchone()
        return int(row[0]) if row else 0

    @staticmethod
    def _set_user_version(cur: sqlite3.Cursor, version: int) -> None:
        cur.execute(f"PRAGMA user_version = {max(0, int(version))}")

    def _migrate_to_v1(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS image_assets (
              asset_id TEXT PRIMARY KEY,
              file_path TEXT NOT NULL,
              original_format TEXT,
              remote_image_id TEXT,
              upload_status TEXT NOT NULL,
              upload_retry_count INTEGER NOT NULL,
              last_upload_attempt_ms INTEGER,
              uploaded_at_ms INTEGER,
              stored_sizes TEXT NOT NULL,
              created_at_ms INTEGER NOT NULL,
              updated_at_ms INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_image_assets_upload "
            "ON image_assets(upload_status, upload_retry_count)"
        )
        self._set_user_version(cur, 1)

    def _migrate_to_v2(self, cur: sqlite3.Cursor) -> None:
        cur.execute("PRAGMA table_info(image_assets)")
        columns = {str(row["name"]) for row in cur.fetchall()}
        if "deletion_status" not in columns:
            cur.execute("ALTER TABLE image_assets ADD COLUMN deletion_status TEXT NOT NULL DEFAULT 'none'")
        if "deletion_retry_count" not in columns:
            cur.execute("ALTER TABLE image_assets ADD COLUMN deletion_retry_count INTEGER NOT NULL DEFAULT 0")
        if "last_deletion_attempt_ms" not in columns:
            cur.execute("ALTER TABLE image_assets ADD COLUMN last_deletion_attempt_ms INTEGER")
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_image_assets_deletion "
            "ON image_assets(deletion_status, deletion_retry_count)"
        )
        self._set_user_version(cur, 2)

    def find_by_id(self, asset_id: str) -> ImageAsset | None:
        with self._lock:
            return self._select_one(self._conn.cursor(), asset_id)

    def find_all_matching(self, predicate: AssetPredicate) -> list[ImageAsset]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(f"SELECT {', '.join(_COLUMNS)} FROM image_assets ORDER BY created_at_ms ASC, asset_id ASC")
            rows = cur.fetchall()
        assets = [asset for row in rows if (asset := self._row_to_asset(row))]
        return [asset for asset in assets if predicate(asset)]

    def save(self, asset: ImageAsset) -> None:
        with self._lock:
            cur = self._conn.cursor()
            self._upsert(cur, asset)
            self._conn.commit()

    def delete(self, asset_id: str) -> bool:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("DELETE FROM image_assets WHERE asset_id = ?", (asset_id,))
            self._conn.commit()
            return cur.rowcount > 0

    def update(self, asset_id: str, mutate: AssetMutation) -> ImageAsset | None:
        with self._lock:
            cur = self._conn.cursor()
            asset = self._select_one(cur, asset_id)
            if asset is None:
                return None
            mutate(asset)
            self._upsert(cur, asset)
            self._conn.commit()
            return asset

    def count(self) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("SELECT COUNT(1) AS c FROM image_assets")
            row = cur.fetchone()
            return int(row["c"]) if row else 0

    def _select_one(self, cur: sqlite3.Cursor, asset_id: str) -> ImageAsset | None:
        cur.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM image_assets WHERE asset_id = ? LIMIT 1",
            (asset_id,),
        )
        row = cur.fetchone()
        return self._row_to_asset(row) if row else None

    @staticmethod
    def _upsert(cur: sqlite3.Cursor, asset: ImageAsset) -> None:
        now = now_ms()
        if not asset.created_at_ms:
            asset.created_at_ms = now
        asset.updated_at_ms = now
        placeholders = ", ".join("?" for _ in _COLUMNS)
        assignments = ", ".join(f"{name} = excluded.{name}" for name in _COLUMNS[1:] if name != "created_at_ms")
        cur.execute(
            f"""
            INSERT INTO image_assets({', '.join(_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(asset_id) DO UPDATE SET {assignments}
            """,
            (
                asset.asset_id,
                asset.file_path,
                asset.original_format,
                asset.remote_image_id,
                asset.upload_status.value,
                int(asset.upload_retry_count),
                asset.last_upload_attempt_ms,
                asset.uploaded_at_ms,
                ",".join(sorted(size.value for size in asset.stored_sizes)),
                asset.deletion_status.value,
                int(asset.deletion_retry_count),
                asset.last_deletion_attempt_ms,
                asset.created_at_ms,
                asset.updated_at_ms,
            ),
        )

    @staticmethod
    def _row_to_asset(row: sqlite3.Row) -> ImageAsset | None:
        try:
            sizes = {ImageSize(item) for item in str(row["stored_sizes"] or "").split(",") if item}
            return ImageAsset(
                asset_id=str(row["asset_id"]),
                file_path=str(row["file_path"] or ""),
                original_format=row["original_format"],
                remote_image_id=row["remote_image_id"] or None,
                upload_status=UploadStatus(str(row["upload_status"])),
                upload_retry_count=int(row["upload_retry_count"] or 0),
                last_upload_attempt_ms=row["last_upload_attempt_ms"],
                uploaded_at_ms=row["uploaded_at_ms"],
                stored_sizes=sizes,
                deletion_status=DeletionStatus(str(row["deletion_status"] or "none")),
                deletion_retry_count=int(row["deletion_retry_count"] or 0),
                last_deletion_attempt_ms=row["last_deletion_attempt_ms"],
                created_at_ms=int(row["created_at_ms"] or 0),
                updated_at_ms=int(row["updated_at_ms"] or 0),
            )
        except ValueError as e:
            logger.warning(f"Skipping unreadable asset row {row['asset_id']}: {e}")
            return None
