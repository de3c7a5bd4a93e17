"""Configuration schema using Pydantic."""

from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

from imagesync.images.formats import ImageSize


class ApiConfig(BaseModel):
    """Backend gateway configuration."""

    base_url: str = "http://127.0.0.1:18800"
    timeout_seconds: float = 30.0
    upload_timeout_seconds: float = 120.0  # Direct PUT to presigned URLs


class AuthConfig(BaseModel):
    """Device credential storage and token freshness."""

    secret_store_path: str = "~/.imagesync/secrets.json"
    token_expiry_buffer_seconds: int = 300  # Refresh this long before expiry


class StorageConfig(BaseModel):
    """Local asset record store and original image directory."""

    sqlite_path: str = "~/.imagesync/data/assets.db"
    originals_dir: str = "~/.imagesync/data/originals"


class CacheConfig(BaseModel):
    """Two-tier derivative cache."""

    thumbnail_dir: str = "~/.imagesync/data/thumbnails"  # Durable
    cache_dir: str = "~/.imagesync/cache/images"  # Purgeable
    memory_max_entries: int = 100
    memory_max_bytes: int = 64 * 1024 * 1024


class DerivativeConfig(BaseModel):
    """Resize and encode tuning for generated derivatives."""

    thumbnail_quality: int = ImageSize.THUMBNAIL.default_quality
    medium_quality: int = ImageSize.MEDIUM.default_quality
    large_quality: int = ImageSize.LARGE.default_quality
    large_compressed_quality: int = 60  # HEIC/WebP sources
    preserve_original_format: bool = True
    max_workers: int = 3


class SyncConfig(BaseModel):
    """Upload/deletion retry policy."""

    max_retries: int = 3
    backoff_seconds: list[int] = Field(default_factory=lambda: [60, 300, 900])
    scan_interval_seconds: int = 300


class ConnectivityConfig(BaseModel):
    """Reachability probe used to detect online/offline transitions."""

    probe_host: str = ""  # Empty = host of api.base_url
    probe_port: int = 0  # 0 = port of api.base_url
    probe_timeout_seconds: float = 3.0
    interval_seconds: float = 10.0


class Config(BaseSettings):
    """Root configuration for imagesync."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    derivatives: DerivativeConfig = Field(default_factory=DerivativeConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    connectivity: ConnectivityConfig = Field(default_factory=ConnectivityConfig)

    @property
    def sqlite_path(self) -> Path:
        return Path(self.storage.sqlite_path).expanduser()

    def probe_target(self) -> tuple[str, int]:
        """Resolve the reachability probe host/port, defaulting to the API endpoint."""
        parsed = urlparse(self.api.base_url)
        host = self.connectivity.probe_host or parsed.hostname or "127.0.0.1"
        port = self.connectivity.probe_port or parsed.port or (443 if parsed.scheme == "https" else 80)
        return host, int(port)

    model_config = ConfigDict(
        env_prefix="IMAGESYNC_",
        env_nested_delimiter="__"
    )
