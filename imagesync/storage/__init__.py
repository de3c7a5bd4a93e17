"""Asset record storage."""

from imagesync.storage.models import AssetRepository, DeletionStatus, ImageAsset, UploadStatus
from imagesync.storage.sqlite_assets import SQLiteAssetRepository

__all__ = [
    "AssetRepository",
    "DeletionStatus",
    "ImageAsset",
    "SQLiteAssetRepository",
    "UploadStatus",
]
