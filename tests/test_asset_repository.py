import sqlite3

from imagesync.images.formats import ImageSize
from imagesync.storage.models import DeletionStatus, ImageAsset, UploadStatus
from imagesync.storage.sqlite_assets import SQLiteAssetRepository


def test_repository_sets_user_version_and_wal(tmp_path) -> None:  # type: ignore[no-untyped-def]
    db_path = tmp_path / "assets.db"
    repo = SQLiteAssetRepository(db_path)
    try:
        conn = sqlite3.connect(str(db_path))
        version = int(conn.execute("PRAGMA user_version").fetchone()[0])
        conn.close()
        assert version == SQLiteAssetRepository.SCHEMA_VERSION
        assert repo.journal_mode == "wal"
    finally:
        repo.close()


def test_repository_migrates_v1_table_with_deletion_columns(tmp_path) -> None:  # type: ignore[no-untyped-def]
    db_path = tmp_path / "legacy.db"
    conn = sqlite3.connect(str(db_path))
    conn.execute(
        """
        CREATE TABLE image_assets (
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
    conn.execute(
        "INSERT INTO image_assets VALUES ('a1', 'a1.jpg', 'jpeg', 'r1', 'completed', 0, NULL, 5, 'thumbnail', 1, 1)"
    )
    conn.execute("PRAGMA user_version = 1")
    conn.commit()
    conn.close()

    repo = SQLiteAssetRepository(db_path)
    try:
        asset = repo.find_by_id("a1")
        assert asset is not None
        assert asset.remote_image_id == "r1"
        assert asset.upload_status is UploadStatus.COMPLETED
        assert asset.stored_sizes == {ImageSize.THUMBNAIL}
        assert asset.deletion_status is DeletionStatus.NONE
        assert asset.deletion_retry_count == 0
    finally:
        repo.close()


def test_save_find_update_delete(tmp_path) -> None:  # type: ignore[no-untyped-def]
    repo = SQLiteAssetRepository(tmp_path / "assets.db")
    try:
        repo.save(ImageAsset(asset_id="a1", file_path="a1.jpg", original_format="jpeg"))
        repo.save(ImageAsset(asset_id="a2", file_path="a2.png", upload_status=UploadStatus.FAILED))

        stored = repo.find_by_id("a1")
        assert stored is not None
        assert stored.created_at_ms > 0
        assert stored.upload_status is UploadStatus.LOCAL_ONLY

        def _complete(asset: ImageAsset) -> None:
            asset.upload_status = UploadStatus.COMPLETED
            asset.remote_image_id = "r1"
            asset.stored_sizes.update({ImageSize.THUMBNAIL, ImageSize.MEDIUM})

        updated = repo.update("a1", _complete)
        assert updated is not None
        reloaded = repo.find_by_id("a1")
        assert reloaded is not None
        assert reloaded.remote_image_id == "r1"
        assert reloaded.stored_sizes == {ImageSize.THUMBNAIL, ImageSize.MEDIUM}
        assert reloaded.created_at_ms == stored.created_at_ms

        failed = repo.find_all_matching(lambda a: a.upload_status is UploadStatus.FAILED)
        assert [a.asset_id for a in failed] == ["a2"]

        assert repo.update("missing", _complete) is None
        assert repo.delete("a2") is True
        assert repo.delete("a2") is False
        assert repo.count() == 1
    finally:
        repo.close()


def test_failed_mutation_leaves_record_untouched(tmp_path) -> None:  # type: ignore[no-untyped-def]
    repo = SQLiteAssetRepository(tmp_path / "assets.db")
    try:
        repo.save(ImageAsset(asset_id="a1", file_path="a1.jpg"))

        def _explode(asset: ImageAsset) -> None:
            asset.upload_retry_count = 99
            raise RuntimeError("boom")

        try:
            repo.update("a1", _explode)
        except RuntimeError:
            pass
        asset = repo.find_by_id("a1")
        assert asset is not None
        assert asset.upload_retry_count == 0
    finally:
        repo.close()
