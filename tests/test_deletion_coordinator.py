from __future__ import annotations

import io
from types import SimpleNamespace
from typing import Any

import pytest
from PIL import Image

from imagesync.errors import HTTPError, NotFoundError, OfflineError, UnknownNetworkError
from imagesync.images.cache import TieredCache
from imagesync.images.formats import ImageSize
from imagesync.images.originals import OriginalImageStore
from imagesync.network.endpoints import APIEndpoint
from imagesync.network.monitor import ConnectivityMonitor
from imagesync.storage.models import DeletionStatus, ImageAsset, UploadStatus
from imagesync.storage.sqlite_assets import SQLiteAssetRepository
from imagesync.sync.deletion import DeletionCoordinator
from imagesync.sync.library import ImageLibrary

T0 = 1_800_000_000_000


def _jpeg() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (64, 48), (200, 40, 40)).save(buffer, format="JPEG")
    return buffer.getvalue()


class _FakeAuth:
    async def ensure_authenticated(self) -> str:
        return "d1.s1"


class _FakeGateway:
    def __init__(self) -> None:
        self.deletes: list[tuple[str, str | None]] = []
        self.errors: list[Exception] = []
        self.acknowledge = True

    async def request(self, endpoint: APIEndpoint, response_model: Any, *, bearer_token: str | None = None) -> Any:
        assert endpoint.method == "DELETE"
        self.deletes.append((endpoint.path, bearer_token))
        if self.errors:
            raise self.errors.pop(0)
        return response_model.model_validate({"ok": self.acknowledge})


@pytest.fixture
def env(tmp_path):  # type: ignore[no-untyped-def]
    now = {"ms": T0}
    repo = SQLiteAssetRepository(tmp_path / "assets.db")
    cache = TieredCache(thumbnail_dir=tmp_path / "thumbs", cache_dir=tmp_path / "cache")
    originals = OriginalImageStore(tmp_path / "originals")
    gateway = _FakeGateway()
    monitor = ConnectivityMonitor(initially_connected=True)
    library = ImageLibrary(
        repository=repo,
        originals=originals,
        cache=cache,
        gateway=gateway,  # type: ignore[arg-type]
        auth=_FakeAuth(),  # type: ignore[arg-type]
    )
    deletions = DeletionCoordinator(
        repository=repo,
        auth=_FakeAuth(),  # type: ignore[arg-type]
        gateway=gateway,  # type: ignore[arg-type]
        library=library,
        monitor=monitor,
        clock=lambda: now["ms"],
    )
    yield SimpleNamespace(
        now=now,
        repo=repo,
        cache=cache,
        originals=originals,
        gateway=gateway,
        monitor=monitor,
        library=library,
        deletions=deletions,
    )
    repo.close()


async def _uploaded(env: SimpleNamespace, asset_id: str, remote_id: str = "r-1") -> ImageAsset:
    asset = await env.library.add_image(_jpeg(), asset_id=asset_id)

    def _complete(a: ImageAsset) -> None:
        a.remote_image_id = remote_id
        a.upload_status = UploadStatus.COMPLETED
        a.stored_sizes.update({ImageSize.THUMBNAIL, ImageSize.MEDIUM})

    await env.cache.save_image(asset_id, ImageSize.THUMBNAIL, b"thumb")
    await env.cache.save_image(remote_id, ImageSize.LARGE, b"large")
    return env.repo.update(asset_id, _complete)


@pytest.mark.asyncio
async def test_local_only_asset_is_removed_without_network(env) -> None:  # type: ignore[no-untyped-def]
    asset = await env.library.add_image(_jpeg(), asset_id="local")
    env.monitor.report(False)

    await env.deletions.delete_image(asset)

    assert env.gateway.deletes == []
    assert env.repo.find_by_id("local") is None
    assert await env.originals.load(asset.file_path) is None


@pytest.mark.asyncio
async def test_offline_deletion_is_queued(env) -> None:  # type: ignore[no-untyped-def]
    asset = await _uploaded(env, "a1")
    env.monitor.report(False)

    with pytest.raises(OfflineError):
        await env.deletions.delete_image(asset)

    queued = env.repo.find_by_id("a1")
    assert queued.deletion_status is DeletionStatus.PENDING_DELETION
    assert queued.deletion_retry_count == 0
    assert queued.last_deletion_attempt_ms is None
    assert await env.originals.load(asset.file_path) is not None
    assert env.gateway.deletes == []


@pytest.mark.asyncio
async def test_online_deletion_removes_remote_then_local(env) -> None:  # type: ignore[no-untyped-def]
    asset = await _uploaded(env, "a1", remote_id="r/9")

    await env.deletions.delete_image(asset)

    assert env.gateway.deletes == [("/v1/images/r%2F9", "d1.s1")]
    assert env.repo.find_by_id("a1") is None
    assert await env.originals.load(asset.file_path) is None
    assert await env.cache.load_thumbnail("a1") is None
    assert await env.cache.load_image("r/9", ImageSize.LARGE) is None


@pytest.mark.asyncio
async def test_remote_not_found_counts_as_deleted(env) -> None:  # type: ignore[no-untyped-def]
    asset = await _uploaded(env, "a1")
    env.gateway.errors = [NotFoundError()]

    await env.deletions.delete_image(asset)

    assert env.repo.find_by_id("a1") is None


@pytest.mark.asyncio
async def test_failures_count_up_to_terminal(env) -> None:  # type: ignore[no-untyped-def]
    asset = await _uploaded(env, "a1")
    env.gateway.errors = [UnknownNetworkError("reset") for _ in range(3)]

    with pytest.raises(UnknownNetworkError):
        await env.deletions.delete_image(asset)
    first = env.repo.find_by_id("a1")
    assert first.deletion_status is DeletionStatus.REMOTE_FAILED
    assert first.deletion_retry_count == 1
    assert first.last_deletion_attempt_ms == T0
    assert await env.originals.load(asset.file_path) is not None

    for _ in range(2):
        with pytest.raises(UnknownNetworkError):
            await env.deletions.delete_image(asset)

    final = env.repo.find_by_id("a1")
    assert final.deletion_status is DeletionStatus.FAILED
    assert final.deletion_retry_count == 3

    env.now["ms"] += 3_600_000
    summary = await env.deletions.process_queued_deletions()
    assert summary["eligible"] == 0


@pytest.mark.asyncio
async def test_unacknowledged_deletion_is_a_failure(env) -> None:  # type: ignore[no-untyped-def]
    asset = await _uploaded(env, "a1")
    env.gateway.acknowledge = False

    with pytest.raises(HTTPError):
        await env.deletions.delete_image(asset)

    assert env.repo.find_by_id("a1").deletion_status is DeletionStatus.REMOTE_FAILED


@pytest.mark.asyncio
async def test_queue_waits_for_connectivity(env) -> None:  # type: ignore[no-untyped-def]
    asset = await _uploaded(env, "a1")
    env.monitor.report(False)
    with pytest.raises(OfflineError):
        await env.deletions.delete_image(asset)

    offline = await env.deletions.process_queued_deletions()
    assert offline["attempted"] == 0
    assert env.repo.find_by_id("a1") is not None

    env.monitor.report(True)
    online = await env.deletions.process_queued_deletions()

    assert online["succeeded"] == 1
    assert env.repo.find_by_id("a1") is None


@pytest.mark.asyncio
async def test_queue_respects_backoff(env) -> None:  # type: ignore[no-untyped-def]
    asset = await _uploaded(env, "a1")
    env.gateway.errors = [UnknownNetworkError("reset")]
    with pytest.raises(UnknownNetworkError):
        await env.deletions.delete_image(asset)

    env.now["ms"] += 30_000
    early = await env.deletions.process_queued_deletions()
    assert early == {"eligible": 1, "attempted": 0, "succeeded": 0, "failed": 0, "skipped": 1}

    env.now["ms"] += 300_000
    later = await env.deletions.process_queued_deletions()
    assert later["succeeded"] == 1
    assert env.repo.find_by_id("a1") is None


@pytest.mark.asyncio
async def test_interrupted_remote_deletion_is_requeued(env) -> None:  # type: ignore[no-untyped-def]
    await _uploaded(env, "a1")
    env.repo.update("a1", lambda a: setattr(a, "deletion_status", DeletionStatus.DELETING_REMOTE))

    assert env.deletions.recover_interrupted() == 1

    requeued = env.repo.find_by_id("a1")
    assert requeued.deletion_status is DeletionStatus.REMOTE_FAILED
    assert requeued.deletion_retry_count == 1
