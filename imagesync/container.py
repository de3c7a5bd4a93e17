"""Builds and owns every runtime component."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger

from imagesync.auth.credentials import CredentialStore
from imagesync.auth.manager import DeviceAuthManager
from imagesync.auth.secrets import FileSecretStore, SecretStore
from imagesync.config.schema import Config
from imagesync.images.cache import TieredCache
from imagesync.images.derivatives import DerivativeGenerator
from imagesync.images.originals import OriginalImageStore
from imagesync.network.client import APIGatewayClient
from imagesync.network.monitor import ConnectivityMonitor, ConnectivityProbe, tcp_probe
from imagesync.storage.sqlite_assets import SQLiteAssetRepository
from imagesync.sync.deletion import DeletionCoordinator
from imagesync.sync.library import ImageLibrary
from imagesync.sync.locks import KeyedLocks
from imagesync.sync.scheduler import SyncScheduler
from imagesync.sync.upload import UploadCoordinator


@dataclass(slots=True)
class ServiceContainer:
    config: Config
    secrets: SecretStore
    credentials: CredentialStore
    gateway: APIGatewayClient
    auth: DeviceAuthManager
    generator: DerivativeGenerator
    cache: TieredCache
    originals: OriginalImageStore
    repository: SQLiteAssetRepository
    monitor: ConnectivityMonitor
    library: ImageLibrary
    uploads: UploadCoordinator
    deletions: DeletionCoordinator
    scheduler: SyncScheduler

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        probe: ConnectivityProbe | None = None,
        secrets: SecretStore | None = None,
    ) -> ServiceContainer:
        secrets = secrets or FileSecretStore(config.auth.secret_store_path)
        credentials = CredentialStore(secrets)
        gateway = APIGatewayClient(
            base_url=config.api.base_url,
            timeout_seconds=config.api.timeout_seconds,
            upload_timeout_seconds=config.api.upload_timeout_seconds,
            transport=transport,
        )
        auth = DeviceAuthManager(
            gateway=gateway,
            credentials=credentials,
            expiry_buffer_seconds=config.auth.token_expiry_buffer_seconds,
        )
        generator = DerivativeGenerator(
            max_workers=config.derivatives.max_workers,
            thumbnail_quality=config.derivatives.thumbnail_quality,
            medium_quality=config.derivatives.medium_quality,
            large_quality=config.derivatives.large_quality,
            large_compressed_quality=config.derivatives.large_compressed_quality,
        )
        cache = TieredCache(
            thumbnail_dir=config.cache.thumbnail_dir,
            cache_dir=config.cache.cache_dir,
            memory_max_entries=config.cache.memory_max_entries,
            memory_max_bytes=config.cache.memory_max_bytes,
        )
        originals = OriginalImageStore(config.storage.originals_dir)
        repository = SQLiteAssetRepository(config.sqlite_path)
        if probe is None:
            host, port = config.probe_target()
            probe = tcp_probe(host, port, timeout_seconds=config.connectivity.probe_timeout_seconds)
        monitor = ConnectivityMonitor(probe=probe, interval_seconds=config.connectivity.interval_seconds)
        library = ImageLibrary(
            repository=repository,
            originals=originals,
            cache=cache,
            gateway=gateway,
            auth=auth,
        )
        # Uploads and deletions of one asset share a lock.
        locks = KeyedLocks()
        uploads = UploadCoordinator(
            repository=repository,
            auth=auth,
            gateway=gateway,
            generator=generator,
            cache=cache,
            library=library,
            locks=locks,
            max_retries=config.sync.max_retries,
            backoff_seconds=config.sync.backoff_seconds,
            preserve_format=config.derivatives.preserve_original_format,
        )
        deletions = DeletionCoordinator(
            repository=repository,
            auth=auth,
            gateway=gateway,
            library=library,
            monitor=monitor,
            locks=locks,
            max_retries=config.sync.max_retries,
            backoff_seconds=config.sync.backoff_seconds,
        )
        scheduler = SyncScheduler(
            uploads=uploads,
            deletions=deletions,
            monitor=monitor,
            interval_seconds=config.sync.scan_interval_seconds,
        )
        return cls(
            config=config,
            secrets=secrets,
            credentials=credentials,
            gateway=gateway,
            auth=auth,
            generator=generator,
            cache=cache,
            originals=originals,
            repository=repository,
            monitor=monitor,
            library=library,
            uploads=uploads,
            deletions=deletions,
            scheduler=scheduler,
        )

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.monitor.stop_monitoring()
        await self.gateway.close()
        self.generator.close()
        self.repository.close()
        logger.debug("Service container closed")
