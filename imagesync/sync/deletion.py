"""Deletion state machine for local and remote image copies."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Callable

from loguru import logger

from imagesync.auth.manager import DeviceAuthManager
from imagesync.errors import AssetNotFoundError, HTTPError, NotFoundError, OfflineError
from imagesync.network.client import APIGatewayClient
from imagesync.network.endpoints import delete_image_endpoint
from imagesync.network.models import DeleteResponse
from imagesync.network.monitor import ConnectivityMonitor
from imagesync.storage.models import AssetRepository, DeletionStatus, ImageAsset
from imagesync.sync.backoff import DEFAULT_BACKOFF_SECONDS, is_backoff_elapsed
from imagesync.sync.library import ImageLibrary
from imagesync.sync.locks import KeyedLocks
from imagesync.utils.helpers import now_ms

_QUEUED = {DeletionStatus.PENDING_DELETION, DeletionStatus.REMOTE_FAILED}


class DeletionCoordinator:
    """Deletes an asset everywhere it lives.

    Assets never uploaded are removed locally at once. Uploaded assets need
    the remote copy gone first; while offline they are parked as
    ``PendingDeletion`` and drained once connectivity returns.
    """

    def __init__(
        self,
        *,
        repository: AssetRepository,
        auth: DeviceAuthManager,
        gateway: APIGatewayClient,
        library: ImageLibrary,
        monitor: ConnectivityMonitor,
        locks: KeyedLocks | None = None,
        max_retries: int = 3,
        backoff_seconds: Sequence[int] = DEFAULT_BACKOFF_SECONDS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.repository = repository
        self.auth = auth
        self.gateway = gateway
        self.library = library
        self.monitor = monitor
        self.locks = locks or KeyedLocks()
        self.max_retries = max(1, int(max_retries))
        self.backoff_seconds = tuple(int(x) for x in backoff_seconds) or DEFAULT_BACKOFF_SECONDS
        self._clock = clock or now_ms

    async def delete_image(self, asset: ImageAsset) -> None:
        async with self.locks.hold(asset.asset_id):
            await self._delete_locked(asset.asset_id)

    async def process_queued_deletions(self) -> dict[str, int]:
        summary = {"eligible": 0, "attempted": 0, "succeeded": 0, "failed": 0, "skipped": 0}
        if not self.monitor.is_connected:
            logger.debug("Deletion queue left untouched while offline")
            return summary
        candidates = self.repository.find_all_matching(self._is_queued)
        summary["eligible"] = len(candidates)
        for asset in candidates:
            if self.locks.is_locked(asset.asset_id) or not self._backoff_elapsed(asset):
                summary["skipped"] += 1
                continue
            summary["attempted"] += 1
            try:
                done = await self._retry_one(asset.asset_id)
            except Exception as e:
                summary["failed"] += 1
                logger.warning(f"Queued deletion failed asset_id={asset.asset_id}: {e}")
                continue
            summary["succeeded" if done else "skipped"] += 1
        if summary["attempted"]:
            logger.info(f"Deletion queue drained {summary}")
        return summary

    def recover_interrupted(self) -> int:
        """Requeue deletions left ``DeletingRemote`` by a dead process as counted failures."""
        stuck = self.repository.find_all_matching(
            lambda a: a.deletion_status is DeletionStatus.DELETING_REMOTE
        )
        for asset in stuck:
            self.repository.update(asset.asset_id, self._mark_failed)
            logger.warning(f"Interrupted deletion requeued asset_id={asset.asset_id}")
        return len(stuck)

    async def _retry_one(self, asset_id: str) -> bool:
        async with self.locks.hold(asset_id):
            current = self.repository.find_by_id(asset_id)
            if current is None or not self._is_queued(current) or not self._backoff_elapsed(current):
                return False
            await self._delete_locked(asset_id)
            return True

    async def _delete_locked(self, asset_id: str) -> None:
        current = self.repository.find_by_id(asset_id)
        if current is None:
            raise AssetNotFoundError(asset_id)

        if not current.remote_image_id:
            await self._remove_local(current)
            return

        if not self.monitor.is_connected:
            self.repository.update(asset_id, _mark_pending)
            logger.info(f"Offline, deletion queued asset_id={asset_id}")
            raise OfflineError(asset_id)

        self.repository.update(asset_id, self._mark_deleting)
        try:
            await self._delete_remote(current.remote_image_id)
        except Exception as e:
            failed = self.repository.update(asset_id, self._mark_failed)
            status = failed.deletion_status.value if failed else "gone"
            logger.error(f"Remote deletion failed asset_id={asset_id} status={status}: {e}")
            raise
        await self._remove_local(current)

    async def _delete_remote(self, remote_image_id: str) -> None:
        token = await self.auth.ensure_authenticated()
        try:
            response = await self.gateway.request(
                delete_image_endpoint(remote_image_id),
                DeleteResponse,
                bearer_token=token,
            )
        except NotFoundError:
            logger.info(f"Remote image already gone remote_image_id={remote_image_id}")
            return
        if not response.ok:
            raise HTTPError(200, "remote deletion not acknowledged")

    async def _remove_local(self, asset: ImageAsset) -> None:
        await self.library.delete_local_files(asset)
        self.repository.delete(asset.asset_id)
        logger.info(f"Image deleted asset_id={asset.asset_id} remote_image_id={asset.remote_image_id}")

    def _is_queued(self, asset: ImageAsset) -> bool:
        return asset.deletion_status in _QUEUED and asset.deletion_retry_count < self.max_retries

    def _backoff_elapsed(self, asset: ImageAsset) -> bool:
        return is_backoff_elapsed(
            asset.last_deletion_attempt_ms,
            asset.deletion_retry_count,
            self._clock(),
            self.backoff_seconds,
        )

    def _mark_deleting(self, asset: ImageAsset) -> None:
        asset.deletion_status = DeletionStatus.DELETING_REMOTE
        asset.last_deletion_attempt_ms = self._clock()

    def _mark_failed(self, asset: ImageAsset) -> None:
        asset.deletion_retry_count += 1
        asset.last_deletion_attempt_ms = self._clock()
        if asset.deletion_retry_count >= self.max_retries:
            asset.deletion_status = DeletionStatus.FAILED
        else:
            asset.deletion_status = DeletionStatus.REMOTE_FAILED


def _mark_pending(asset: ImageAsset) -> None:
    asset.deletion_status = DeletionStatus.PENDING_DELETION
