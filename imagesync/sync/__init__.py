"""Upload/deletion state machines and their background driver."""

from imagesync.sync.backoff import DEFAULT_BACKOFF_SECONDS, backoff_delay_seconds, is_backoff_elapsed
from imagesync.sync.deletion import DeletionCoordinator
from imagesync.sync.library import ImageLibrary, SourceImage
from imagesync.sync.locks import KeyedLocks
from imagesync.sync.scheduler import SyncScheduler
from imagesync.sync.upload import UploadCoordinator

__all__ = [
    "DEFAULT_BACKOFF_SECONDS",
    "DeletionCoordinator",
    "ImageLibrary",
    "KeyedLocks",
    "SourceImage",
    "SyncScheduler",
    "UploadCoordinator",
    "backoff_delay_seconds",
    "is_backoff_elapsed",
]
