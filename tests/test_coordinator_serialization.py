from __future__ import annotations

import asyncio
import io
from types import SimpleNamespace
from typing import Any

import pytest
from PIL import Image

from imagesync.errors import UnknownNetworkError
from imagesync.images.cache import TieredCache
from imagesync.images.derivatives import DerivativeGenerator
from imagesync.images.originals import OriginalImageStore
from imagesync.network.endpoints import APIEndpoint
from imagesync.network.monitor import ConnectivityMonitor
from imagesync.storage.models import AssetMutation, ImageAsset, UploadStatus
from imagesync.storage.sqlite_assets import SQLiteAssetRepository
from imagesync.sync.deletion import DeletionCoordinator
from imagesync.sync.library import ImageLibrary
from imagesync.sync.locks import KeyedLocks
from imagesync.sync.upload import UploadCoordinator


def _jpeg() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (400, 300), (60, 160, 60)).save(buffer, format="JPEG")
    return buffer.getvalue()


class _RecordingRepository(SQLiteAssetRepository):
    """Keeps the upload status after every write, in order."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.statuses: list[UploadStatus] = []

    def update(self, asset_id: str, mutate: AssetMutation) -> ImageAsset | None:
        asset = super().update(asset_id, mutate)
        if asset is not None:
            self.statuses.append(asset.upload_status)
        return asset


class _FakeAuth:
    async def ensure_authenticated(self) -> str:
        return "d1.s1"


class _HoldingGateway:
    """Presigned PUTs wait on ``release``; remote deletes always succeed."""

    def __init__(self) -> None:
        self.put_started = asyncio.Event()
        self.release = asyncio.Event()
        self.fail_next_put = False
        self.in_flight = 0
        self.max_in_flight = 0
        self.nonces: list[str] = []
        self.deletes: list[str] = []

    async def request(self, endpoint: APIEndpoint, response_model: Any, *, bearer_token: str | None = None) -> Any:
        if endpoint.method == "DELETE":
            self.deletes.append(endpoint.path)
            return response_model.model_validate({"ok": True})
        self.nonces.append(str((endpoint.body or {})["nonce"]))
        n = len(self.nonces)
        return response_model.model_validate(
            {
                "imageId": f"r{n}",
                "uploadUrl": f"https://store.example.com/put/{n}",
                "expiresAt": "2030-01-01T00:00:00Z",
            }
        )

    async def upload_binary(
        self,
        url: str,
        data: bytes,
        *,
        content_type: str,
        required_headers: dict[str, str] | None = None,
    ) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.put_started.set()
        try:
            await self.release.wait()
            if self.fail_next_put:
                self.fail_next_put = False
                raise UnknownNetworkError("connection reset")
        finally:
            self.in_flight -= 1


@pytest.fixture
def env(tmp_path):  # type: ignore[no-untyped-def]
    repo = _RecordingRepository(tmp_path / "assets.db")
    cache = TieredCache(thumbnail_dir=tmp_path / "thumbs", cache_dir=tmp_path / "cache")
    gateway = _HoldingGateway()
    auth = _FakeAuth()
    library = ImageLibrary(
        repository=repo,
        originals=OriginalImageStore(tmp_path / "originals"),
        cache=cache,
        gateway=gateway,  # type: ignore[arg-type]
        auth=auth,  # type: ignore[arg-type]
    )
    generator = DerivativeGenerator()
    locks = KeyedLocks()
    uploads = UploadCoordinator(
        repository=repo,
        auth=auth,  # type: ignore[arg-type]
        gateway=gateway,  # type: ignore[arg-type]
        generator=generator,
        cache=cache,
        library=library,
        locks=locks,
    )
    deletions = DeletionCoordinator(
        repository=repo,
        auth=auth,  # type: ignore[arg-type]
        gateway=gateway,  # type: ignore[arg-type]
        library=library,
        monitor=ConnectivityMonitor(initially_connected=True),
        locks=locks,
    )
    yield SimpleNamespace(repo=repo, gateway=gateway, library=library, uploads=uploads, deletions=deletions)
    generator.close()
    repo.close()


@pytest.mark.asyncio
async def test_delete_waits_for_in_flight_upload_and_removes_remote_copy(env) -> None:  # type: ignore[no-untyped-def]
    asset = await env.library.add_image(_jpeg(), asset_id="a1")
    source = await env.library.load_source(asset)

    upload = asyncio.create_task(env.uploads.upload_image(asset, source.image))
    await asyncio.wait_for(env.gateway.put_started.wait(), timeout=5.0)
    # The caller still holds the pre-upload record without a remote id.
    delete = asyncio.create_task(env.deletions.delete_image(asset))
    await asyncio.sleep(0.05)

    assert not delete.done()
    assert env.repo.find_by_id("a1") is not None

    env.gateway.release.set()
    uploaded = await asyncio.wait_for(upload, timeout=5.0)
    await asyncio.wait_for(delete, timeout=5.0)

    assert uploaded.remote_image_id == "r1"
    assert env.gateway.deletes == ["/v1/images/r1"]
    assert env.repo.find_by_id("a1") is None


@pytest.mark.asyncio
async def test_concurrent_uploads_of_one_asset_do_not_interleave(env) -> None:  # type: ignore[no-untyped-def]
    asset = await env.library.add_image(_jpeg(), asset_id="a1")
    source = await env.library.load_source(asset)
    env.gateway.fail_next_put = True

    first = asyncio.create_task(env.uploads.upload_image(asset, source.image))
    await asyncio.wait_for(env.gateway.put_started.wait(), timeout=5.0)
    second = asyncio.create_task(env.uploads.upload_image(asset, source.image))
    await asyncio.sleep(0.05)
    env.gateway.release.set()

    results = await asyncio.wait_for(asyncio.gather(first, second, return_exceptions=True), timeout=5.0)

    assert isinstance(results[0], UnknownNetworkError)
    assert isinstance(results[1], ImageAsset)
    assert env.gateway.max_in_flight == 1
    assert len(set(env.gateway.nonces)) == 2

    transitions = [s for i, s in enumerate(env.repo.statuses) if i == 0 or env.repo.statuses[i - 1] is not s]
    assert transitions == [
        UploadStatus.UPLOADING,
        UploadStatus.FAILED,
        UploadStatus.UPLOADING,
        UploadStatus.COMPLETED,
    ]
    final = env.repo.find_by_id("a1")
    assert final.upload_status is UploadStatus.COMPLETED
    assert final.upload_retry_count == 1
    assert final.remote_image_id == "r2"
