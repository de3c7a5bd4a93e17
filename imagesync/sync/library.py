"""Local image library: originals, asset records and derivative lookup."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

from loguru import logger
from PIL import Image, UnidentifiedImageError

from imagesync.auth.manager import DeviceAuthManager
from imagesync.errors import AssetNotFoundError, InvalidImageError
from imagesync.images.cache import TieredCache
from imagesync.images.derivatives import decode_image
from imagesync.images.formats import ImageFormat, ImageSize, detect_format, format_from_mime
from imagesync.images.originals import OriginalImageStore
from imagesync.network.client import APIGatewayClient
from imagesync.network.endpoints import get_image_endpoint
from imagesync.storage.models import AssetRepository, ImageAsset


@dataclass(slots=True)
class SourceImage:
    image: Image.Image
    data: bytes


class ImageLibrary:
    """Owns the local copy of every asset.

    Thumbnail and medium derivatives are cached under the asset id; the large
    derivative lives remotely and is cached under the remote image id.
    """

    def __init__(
        self,
        *,
        repository: AssetRepository,
        originals: OriginalImageStore,
        cache: TieredCache,
        gateway: APIGatewayClient,
        auth: DeviceAuthManager,
    ) -> None:
        self.repository = repository
        self.originals = originals
        self.cache = cache
        self.gateway = gateway
        self.auth = auth

    async def add_image(
        self,
        data: bytes,
        *,
        mime: str | None = None,
        asset_id: str | None = None,
    ) -> ImageAsset:
        fmt = detect_format(data)
        if fmt is ImageFormat.UNKNOWN and mime:
            fmt = format_from_mime(mime)
        # Reject undecodable input before anything is written.
        await self._decode(data)
        asset_id = str(asset_id or "").strip() or uuid.uuid4().hex
        rel_path = await self.originals.persist(asset_id, data, fmt=fmt)
        asset = ImageAsset(
            asset_id=asset_id,
            file_path=rel_path,
            original_format=fmt.value if fmt is not ImageFormat.UNKNOWN else None,
        )
        self.repository.save(asset)
        logger.info(f"Image added asset_id={asset_id} format={fmt.value} bytes={len(data)}")
        return self.repository.find_by_id(asset_id) or asset

    async def load_source(self, asset: ImageAsset) -> SourceImage:
        data = await self.originals.load(asset.file_path)
        if data is None:
            raise AssetNotFoundError(f"{asset.asset_id} (original missing)")
        return SourceImage(image=await self._decode(data), data=data)

    async def get_image(self, asset: ImageAsset, size: ImageSize) -> bytes | None:
        if size is ImageSize.LARGE:
            return await self._get_large(asset)
        data = await self.cache.load_image(asset.asset_id, size)
        if data is None and not asset.remote_image_id:
            return await self.originals.load(asset.file_path)
        return data

    async def delete_local_files(self, asset: ImageAsset) -> None:
        await self.originals.delete(asset.file_path)
        await self.cache.invalidate_cache(asset.asset_id)
        if asset.remote_image_id:
            await self.cache.invalidate_cache(asset.remote_image_id)
        logger.debug(f"Local files removed asset_id={asset.asset_id}")

    def get_asset(self, asset_id: str) -> ImageAsset:
        asset = self.repository.find_by_id(asset_id)
        if asset is None:
            raise AssetNotFoundError(asset_id)
        return asset

    def list_assets(self) -> list[ImageAsset]:
        return self.repository.find_all_matching(lambda _asset: True)

    async def _get_large(self, asset: ImageAsset) -> bytes | None:
        remote_id = asset.remote_image_id
        if not remote_id:
            return await self.originals.load(asset.file_path)
        cached = await self.cache.load_image(remote_id, ImageSize.LARGE)
        if cached is not None:
            return cached
        token = await self.auth.ensure_authenticated()
        data = await self.gateway.download_binary(
            get_image_endpoint(remote_id, width=ImageSize.LARGE.max_dimension),
            bearer_token=token,
        )
        await self.cache.save_image(remote_id, ImageSize.LARGE, data)
        logger.info(f"Large image downloaded asset_id={asset.asset_id} bytes={len(data)}")
        return data

    @staticmethod
    async def _decode(data: bytes) -> Image.Image:
        try:
            return await asyncio.to_thread(decode_image, data)
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidImageError(f"unreadable image: {e}") from e
