"""Upload state machine: LocalOnly -> Uploading -> Completed | Failed."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Callable

from loguru import logger
from PIL import Image

from imagesync.auth.manager import DeviceAuthManager
from imagesync.errors import AssetNotFoundError, DerivativeError
from imagesync.images.cache import TieredCache
from imagesync.images.derivatives import DerivativeGenerator
from imagesync.images.formats import ImageFormat, ImageSize, detect_format
from imagesync.network.client import APIGatewayClient
from imagesync.network.endpoints import upload_url_endpoint
from imagesync.network.models import UploadURLResponse
from imagesync.storage.models import AssetRepository, DeletionStatus, ImageAsset, UploadStatus
from imagesync.sync.backoff import DEFAULT_BACKOFF_SECONDS, is_backoff_elapsed
from imagesync.sync.library import ImageLibrary
from imagesync.sync.locks import KeyedLocks
from imagesync.utils.helpers import now_ms


class UploadCoordinator:
    """Generates derivatives for an asset and pushes the large one to the remote store.

    Thumbnail and medium stay local. Each attempt asks the gateway for a
    fresh presigned URL under a new nonce; the first remote image id an
    asset receives is kept for every later attempt.
    """

    def __init__(
        self,
        *,
        repository: AssetRepository,
        auth: DeviceAuthManager,
        gateway: APIGatewayClient,
        generator: DerivativeGenerator,
        cache: TieredCache,
        library: ImageLibrary,
        locks: KeyedLocks | None = None,
        max_retries: int = 3,
        backoff_seconds: Sequence[int] = DEFAULT_BACKOFF_SECONDS,
        preserve_format: bool = True,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.repository = repository
        self.auth = auth
        self.gateway = gateway
        self.generator = generator
        self.cache = cache
        self.library = library
        self.locks = locks or KeyedLocks()
        self.max_retries = max(1, int(max_retries))
        self.backoff_seconds = tuple(int(x) for x in backoff_seconds) or DEFAULT_BACKOFF_SECONDS
        self.preserve_format = bool(preserve_format)
        self._clock = clock or now_ms

    async def upload_image(
        self,
        asset: ImageAsset,
        image: Image.Image,
        *,
        original_bytes: bytes | None = None,
    ) -> ImageAsset:
        async with self.locks.hold(asset.asset_id):
            return await self._upload_locked(asset.asset_id, image, original_bytes)

    async def retry_failed_uploads(self) -> dict[str, int]:
        """Retry eligible failed uploads one at a time; item failures never stop the batch."""
        candidates = self.repository.find_all_matching(self._is_retryable)
        summary = {"eligible": len(candidates), "attempted": 0, "succeeded": 0, "failed": 0, "skipped": 0}
        for asset in candidates:
            if self.locks.is_locked(asset.asset_id) or not self._backoff_elapsed(asset):
                summary["skipped"] += 1
                continue
            summary["attempted"] += 1
            try:
                done = await self._retry_one(asset.asset_id)
            except Exception as e:
                summary["failed"] += 1
                logger.warning(f"Upload retry failed asset_id={asset.asset_id}: {e}")
                continue
            if done:
                summary["succeeded"] += 1
            else:
                summary["skipped"] += 1
        if summary["attempted"]:
            logger.info(f"Upload retry scan {summary}")
        return summary

    def recover_interrupted(self) -> int:
        """Turn uploads left ``Uploading`` by a dead process into counted failures."""
        stuck = self.repository.find_all_matching(lambda a: a.upload_status is UploadStatus.UPLOADING)
        for asset in stuck:
            self.repository.update(asset.asset_id, self._mark_failed)
            logger.warning(f"Interrupted upload marked failed asset_id={asset.asset_id}")
        return len(stuck)

    async def _retry_one(self, asset_id: str) -> bool:
        async with self.locks.hold(asset_id):
            # Another driver may have moved the asset on since the scan.
            current = self.repository.find_by_id(asset_id)
            if current is None or not self._is_retryable(current) or not self._backoff_elapsed(current):
                return False
            try:
                source = await self.library.load_source(current)
            except Exception:
                self.repository.update(asset_id, self._mark_failed)
                raise
            await self._upload_locked(asset_id, source.image, source.data)
            return True

    async def _upload_locked(
        self,
        asset_id: str,
        image: Image.Image,
        original_bytes: bytes | None,
    ) -> ImageAsset:
        current = self.repository.update(asset_id, _mark_uploading)
        if current is None:
            raise AssetNotFoundError(asset_id)
        logger.info(f"Upload started asset_id={asset_id} attempt={current.upload_retry_count + 1}")

        try:
            derivatives = await self.generator.generate_sizes(
                image,
                preserve_format=self.preserve_format,
                original_bytes=self._passthrough_bytes(image, original_bytes),
            )
            stored = await self._store_local(asset_id, derivatives)
            self.repository.update(asset_id, lambda a: a.stored_sizes.update(stored))

            large = derivatives.get(ImageSize.LARGE)
            if not large:
                raise DerivativeError(f"large derivative missing for {asset_id}")
            issued_id = await self._push_large(large)
        except Exception as e:
            self.repository.update(asset_id, self._mark_failed)
            logger.error(f"Upload failed asset_id={asset_id}: {e}")
            raise

        completed = self.repository.update(asset_id, lambda a: _mark_completed(a, issued_id, self._clock()))
        if completed is None:
            raise AssetNotFoundError(asset_id)
        if completed.remote_image_id != issued_id:
            logger.debug(f"Keeping remote id {completed.remote_image_id} over issued {issued_id}")
        await self.cache.save_image(completed.remote_image_id or issued_id, ImageSize.LARGE, large)
        logger.info(f"Upload completed asset_id={asset_id} remote_image_id={completed.remote_image_id}")
        return completed

    async def _store_local(self, asset_id: str, derivatives: dict[ImageSize, bytes]) -> set[ImageSize]:
        stored: set[ImageSize] = set()
        for size in (ImageSize.THUMBNAIL, ImageSize.MEDIUM):
            data = derivatives.get(size)
            if not data:
                logger.warning(f"Derivative {size.value} unavailable asset_id={asset_id}")
                continue
            await self.cache.save_image(asset_id, size, data)
            stored.add(size)
        return stored

    async def _push_large(self, data: bytes) -> str:
        token = await self.auth.ensure_authenticated()
        fmt = detect_format(data)
        content_type = (fmt if fmt is not ImageFormat.UNKNOWN else ImageFormat.JPEG).mime_type
        ticket = await self.gateway.request(
            upload_url_endpoint(content_type=content_type, size_bytes=len(data), nonce=uuid.uuid4().hex),
            UploadURLResponse,
            bearer_token=token,
        )
        await self.gateway.upload_binary(
            ticket.upload_url,
            data,
            content_type=content_type,
            required_headers=ticket.required_headers,
        )
        return ticket.image_id

    def _passthrough_bytes(self, image: Image.Image, original_bytes: bytes | None) -> bytes | None:
        """Originals already within the large bound are uploaded verbatim."""
        if not original_bytes or not self.preserve_format:
            return None
        if max(image.width, image.height) > ImageSize.LARGE.max_dimension:
            return None
        return original_bytes

    def _is_retryable(self, asset: ImageAsset) -> bool:
        return (
            asset.upload_status is UploadStatus.FAILED
            and asset.upload_retry_count < self.max_retries
            and asset.deletion_status is DeletionStatus.NONE
        )

    def _backoff_elapsed(self, asset: ImageAsset) -> bool:
        return is_backoff_elapsed(
            asset.last_upload_attempt_ms,
            asset.upload_retry_count,
            self._clock(),
            self.backoff_seconds,
        )

    def _mark_failed(self, asset: ImageAsset) -> None:
        asset.upload_status = UploadStatus.FAILED
        asset.upload_retry_count += 1
        asset.last_upload_attempt_ms = self._clock()


def _mark_uploading(asset: ImageAsset) -> None:
    asset.upload_status = UploadStatus.UPLOADING


def _mark_completed(asset: ImageAsset, issued_id: str, at_ms: int) -> None:
    if not asset.remote_image_id:
        asset.remote_image_id = issued_id
    asset.upload_status = UploadStatus.COMPLETED
    asset.uploaded_at_ms = at_ms
