from __future__ import annotations

import io

import pytest
from PIL import Image

from imagesync.errors import AssetNotFoundError, InvalidImageError
from imagesync.images.cache import TieredCache
from imagesync.images.formats import ImageSize
from imagesync.images.originals import OriginalImageStore
from imagesync.network.endpoints import APIEndpoint
from imagesync.storage.models import UploadStatus
from imagesync.storage.sqlite_assets import SQLiteAssetRepository
from imagesync.sync.library import ImageLibrary


def _png() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 30), (10, 200, 10)).save(buffer, format="PNG")
    return buffer.getvalue()


class _FakeAuth:
    async def ensure_authenticated(self) -> str:
        return "d1.s1"


class _FakeGateway:
    def __init__(self) -> None:
        self.downloads: list[tuple[APIEndpoint, str | None]] = []

    async def download_binary(self, endpoint: APIEndpoint, *, bearer_token: str | None = None) -> bytes:
        self.downloads.append((endpoint, bearer_token))
        return b"remote-large"


def _library(tmp_path) -> tuple[ImageLibrary, _FakeGateway, SQLiteAssetRepository]:  # type: ignore[no-untyped-def]
    repo = SQLiteAssetRepository(tmp_path / "assets.db")
    gateway = _FakeGateway()
    library = ImageLibrary(
        repository=repo,
        originals=OriginalImageStore(tmp_path / "originals"),
        cache=TieredCache(thumbnail_dir=tmp_path / "thumbs", cache_dir=tmp_path / "cache"),
        gateway=gateway,  # type: ignore[arg-type]
        auth=_FakeAuth(),  # type: ignore[arg-type]
    )
    return library, gateway, repo


@pytest.mark.asyncio
async def test_add_image_persists_original_and_record(tmp_path) -> None:
    library, _, repo = _library(tmp_path)
    data = _png()
    try:
        asset = await library.add_image(data, asset_id="p1")

        assert asset.file_path == "p1.png"
        assert asset.original_format == "png"
        assert asset.upload_status is UploadStatus.LOCAL_ONLY
        assert asset.created_at_ms > 0
        assert (tmp_path / "originals" / "p1.png").read_bytes() == data
        assert [a.asset_id for a in library.list_assets()] == ["p1"]
    finally:
        repo.close()


@pytest.mark.asyncio
async def test_add_image_rejects_garbage_without_writing(tmp_path) -> None:
    library, _, repo = _library(tmp_path)
    try:
        with pytest.raises(InvalidImageError):
            await library.add_image(b"definitely not an image", asset_id="bad")

        assert repo.find_by_id("bad") is None
        assert list((tmp_path / "originals").iterdir()) == []
    finally:
        repo.close()


@pytest.mark.asyncio
async def test_local_sizes_fall_back_to_original_before_upload(tmp_path) -> None:
    library, gateway, repo = _library(tmp_path)
    data = _png()
    try:
        asset = await library.add_image(data, asset_id="p1")

        assert await library.get_image(asset, ImageSize.THUMBNAIL) == data
        assert await library.get_image(asset, ImageSize.LARGE) == data

        await library.cache.save_thumbnail("p1", b"thumb")
        assert await library.get_image(asset, ImageSize.THUMBNAIL) == b"thumb"
        assert gateway.downloads == []
    finally:
        repo.close()


@pytest.mark.asyncio
async def test_large_is_downloaded_once_then_cached(tmp_path) -> None:
    library, gateway, repo = _library(tmp_path)
    try:
        await library.add_image(_png(), asset_id="p1")
        asset = repo.update("p1", lambda a: setattr(a, "remote_image_id", "r1"))

        assert await library.get_image(asset, ImageSize.LARGE) == b"remote-large"
        assert await library.get_image(asset, ImageSize.LARGE) == b"remote-large"

        assert len(gateway.downloads) == 1
        endpoint, bearer = gateway.downloads[0]
        assert endpoint.path == "/v1/images/r1"
        assert endpoint.query == {"w": "2048"}
        assert bearer == "d1.s1"
    finally:
        repo.close()


@pytest.mark.asyncio
async def test_missing_asset_and_missing_original(tmp_path) -> None:
    library, _, repo = _library(tmp_path)
    try:
        with pytest.raises(AssetNotFoundError):
            library.get_asset("nope")

        asset = await library.add_image(_png(), asset_id="p1")
        (tmp_path / "originals" / asset.file_path).unlink()
        with pytest.raises(AssetNotFoundError):
            await library.load_source(asset)
    finally:
        repo.close()


@pytest.mark.asyncio
async def test_heic_original_is_accepted(tmp_path) -> None:
    library, _, repo = _library(tmp_path)
    buffer = io.BytesIO()
    Image.new("RGB", (400, 300), (90, 90, 30)).save(buffer, format="HEIF")
    try:
        asset = await library.add_image(buffer.getvalue(), asset_id="h1")
        source = await library.load_source(asset)

        assert asset.file_path == "h1.heic"
        assert asset.original_format == "heic"
        assert source.image.size == (400, 300)
    finally:
        repo.close()
