"""Asset record model and repository interface."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Callable, Protocol

from imagesync.images.formats import ImageSize


class UploadStatus(StrEnum):
    LOCAL_ONLY = "local_only"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    # Kept for record compatibility; nothing writes it.
    RETRY_SCHEDULED = "retry_scheduled"


class DeletionStatus(StrEnum):
    NONE = "none"
    PENDING_DELETION = "pending_deletion"
    DELETING_REMOTE = "deleting_remote"
    REMOTE_FAILED = "remote_failed"
    FAILED = "failed"


@dataclass(slots=True)
class ImageAsset:
    """Per-image sync state. Timestamps are epoch milliseconds."""

    asset_id: str
    file_path: str = ""
    original_format: str | None = None
    remote_image_id: str | None = None
    upload_status: UploadStatus = UploadStatus.LOCAL_ONLY
    upload_retry_count: int = 0
    last_upload_attempt_ms: int | None = None
    uploaded_at_ms: int | None = None
    stored_sizes: set[ImageSize] = field(default_factory=set)
    deletion_status: DeletionStatus = DeletionStatus.NONE
    deletion_retry_count: int = 0
    last_deletion_attempt_ms: int | None = None
    created_at_ms: int = 0
    updated_at_ms: int = 0

    def copy(self) -> ImageAsset:
        return replace(self, stored_sizes=set(self.stored_sizes))

    def to_dict(self) -> dict[str, object]:
        return {
            "asset_id": self.asset_id,
            "file_path": self.file_path,
            "original_format": self.original_format,
            "remote_image_id": self.remote_image_id,
            "upload_status": self.upload_status.value,
            "upload_retry_count": self.upload_retry_count,
            "last_upload_attempt_ms": self.last_upload_attempt_ms,
            "uploaded_at_ms": self.uploaded_at_ms,
            "stored_sizes": sorted(size.value for size in self.stored_sizes),
            "deletion_status": self.deletion_status.value,
            "deletion_retry_count": self.deletion_retry_count,
            "last_deletion_attempt_ms": self.last_deletion_attempt_ms,
            "created_at_ms": self.created_at_ms,
            "updated_at_ms": self.updated_at_ms,
        }


AssetPredicate = Callable[[ImageAsset], bool]
AssetMutation = Callable[[ImageAsset], None]


class AssetRepository(Protocol):
    """Field-level access to asset records.

    ``update`` applies ``mutate`` to the current record and writes it back
    atomically, returning the stored result or None when the record is gone.
    """

    def find_by_id(self, asset_id: str) -> ImageAsset | None: ...

    def find_all_matching(self, predicate: AssetPredicate) -> list[ImageAsset]: ...

    def save(self, asset: ImageAsset) -> None: ...

    def delete(self, asset_id: str) -> bool: ...

    def update(self, asset_id: str, mutate: AssetMutation) -> ImageAsset | None: ...
