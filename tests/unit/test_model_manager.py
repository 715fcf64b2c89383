"""Unit tests for ModelLifecycleManager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from foodlens.errors import DownloadError, ModelLoadError
from foodlens.models.catalog import ModelCatalog
from foodlens.models.locator import ArtifactLocator
from foodlens.models.manager import ModelLifecycleManager
from foodlens.models.types import ModelStatus

from fakes import FakeFetcher, FakeLoader, write_artifact


@pytest.fixture
def catalog(small_model, large_model):
    return ModelCatalog([small_model, large_model])


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def manager(settings, catalog, loader, fetcher):
    return ModelLifecycleManager(loader=loader, settings=settings, catalog=catalog, fetcher=fetcher)


@pytest.fixture
def downloaded(manager, small_model):
    """Manager whose selected model already has an artifact on disk."""
    write_artifact(manager.locator.primary_path(small_model))
    manager.refresh_status()
    return manager


def record_statuses(manager):
    statuses = []
    manager.add_status_listener(lambda snapshot: statuses.append(snapshot.status))
    return statuses


def test_initial_status(manager, small_model):
    """Fresh manager selects the first catalog model and nothing is on disk."""
    manager.refresh_status()
    assert manager.selected_model == small_model
    assert manager.status == ModelStatus.NOT_DOWNLOADED
    snapshot = manager.get_status()
    assert snapshot.progress is None
    assert snapshot.error_message is None


def test_probe_never_reports_loaded(downloaded):
    assert downloaded.probe_status() == ModelStatus.DOWNLOADED
    assert downloaded.status == ModelStatus.DOWNLOADED


@pytest.mark.asyncio
async def test_download_success(manager, fetcher, small_model):
    statuses = record_statuses(manager)

    task = await manager.download()
    await task

    assert manager.status == ModelStatus.DOWNLOADED
    assert manager.download_progress == 1.0
    assert statuses[0] == ModelStatus.DOWNLOADING
    assert statuses[-1] == ModelStatus.DOWNLOADED
    assert fetcher.calls == [(small_model.id, manager.locator.primary_path(small_model))]
    assert not manager.is_resident


@pytest.mark.asyncio
async def test_download_failure(manager, fetcher):
    fetcher.error = DownloadError("Repository not found: test-org/small-model")

    task = await manager.download()
    await task

    snapshot = manager.get_status()
    assert snapshot.status == ModelStatus.ERROR
    assert snapshot.error_message == "Download failed: Repository not found: test-org/small-model"
    assert manager.download_progress == 0.0
    assert not manager.load_failed


@pytest.mark.asyncio
async def test_download_incomplete_files(manager, fetcher):
    """Fetch succeeding without artifact files is reported as an error."""
    fetcher.write_files = False

    task = await manager.download()
    await task

    snapshot = manager.get_status()
    assert snapshot.status == ModelStatus.ERROR
    assert snapshot.error_message == "Download failed: model files incomplete or missing"


@pytest.mark.asyncio
async def test_download_ignored_while_downloading(manager, fetcher):
    fetcher.gate = asyncio.Event()

    first = await manager.download()
    second = await manager.download()

    assert first is not None
    assert second is None
    assert manager.status == ModelStatus.DOWNLOADING

    fetcher.gate.set()
    await first
    assert len(fetcher.calls) == 1


@pytest.mark.asyncio
async def test_download_ignored_while_loaded(downloaded, fetcher):
    await downloaded.load()

    assert await downloaded.download() is None
    assert downloaded.status == ModelStatus.LOADED
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_cancel_download_mid_fetch(manager, fetcher):
    fetcher.gate = asyncio.Event()
    await manager.download()
    await fetcher.started.wait()

    await manager.cancel_download()

    assert manager.status == ModelStatus.NOT_DOWNLOADED
    assert manager.download_progress == 0.0
    assert manager.get_status().progress is None


@pytest.mark.asyncio
async def test_cancel_download_before_fetch_starts(manager, fetcher):
    """A download cancelled before its first step does not stay DOWNLOADING."""
    await manager.download()
    await manager.cancel_download()

    assert fetcher.calls == []
    assert manager.status == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_cancel_download_when_idle_is_noop(manager):
    manager.refresh_status()
    statuses = record_statuses(manager)

    await manager.cancel_download()

    assert statuses == []
    assert manager.status == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_progress_stays_below_ceiling(manager, fetcher, settings):
    fetcher.gate = asyncio.Event()
    settings.progress_step = 0.5
    progress = []
    manager.add_status_listener(lambda s: s.progress is not None and progress.append(s.progress))

    task = await manager.download()
    await asyncio.sleep(0.1)

    assert progress
    assert all(p <= settings.progress_ceiling for p in progress)
    assert manager.download_progress == settings.progress_ceiling

    fetcher.gate.set()
    await task
    assert manager.download_progress == 1.0


@pytest.mark.asyncio
async def test_load_and_unload(downloaded, loader):
    statuses = record_statuses(downloaded)

    await downloaded.load()
    assert downloaded.status == ModelStatus.LOADED
    assert downloaded.is_resident

    await downloaded.unload()
    assert downloaded.status == ModelStatus.DOWNLOADED
    assert not downloaded.is_resident
    assert loader.released == loader.loaded

    assert statuses == [ModelStatus.LOADING, ModelStatus.LOADED, ModelStatus.DOWNLOADED]


@pytest.mark.asyncio
async def test_unload_is_idempotent(downloaded, loader):
    await downloaded.load()
    await downloaded.unload()
    statuses = record_statuses(downloaded)

    await downloaded.unload()

    assert statuses == []
    assert len(loader.released) == 1


@pytest.mark.asyncio
async def test_load_ignored_when_not_downloaded(manager, loader):
    manager.refresh_status()

    await manager.load()

    assert manager.status == ModelStatus.NOT_DOWNLOADED
    assert loader.loaded == []


@pytest.mark.asyncio
async def test_load_failure_then_retry(downloaded, loader):
    loader.error = ModelLoadError("bad weights")

    await downloaded.load()

    snapshot = downloaded.get_status()
    assert snapshot.status == ModelStatus.ERROR
    assert snapshot.error_message == "Failed to load model: bad weights"
    assert downloaded.load_failed
    assert downloaded.probe_status() == ModelStatus.DOWNLOADED

    loader.error = None
    await downloaded.load()
    assert downloaded.status == ModelStatus.LOADED


@pytest.mark.asyncio
async def test_load_missing_files_is_error(downloaded, small_model):
    import shutil
    shutil.rmtree(downloaded.locator.primary_path(small_model))

    await downloaded.load()

    assert downloaded.status == ModelStatus.ERROR
    assert downloaded.get_status().error_message == "Failed to load model: model files not found"


@pytest.mark.asyncio
async def test_reload(downloaded, loader):
    await downloaded.load()

    await downloaded.reload()

    assert downloaded.status == ModelStatus.LOADED
    assert len(loader.loaded) == 2
    assert loader.released == [loader.loaded[0]]


@pytest.mark.asyncio
async def test_reload_ignored_when_not_downloaded(manager, loader):
    manager.refresh_status()
    await manager.reload()
    assert loader.loaded == []


@pytest.mark.asyncio
async def test_acquire_fresh_handle_replaces_resident(downloaded, loader):
    await downloaded.load()
    first = loader.loaded[0]

    handle = await downloaded.acquire_fresh_handle()

    assert handle is not first
    assert first.released
    assert not handle.released
    assert downloaded.status == ModelStatus.LOADED


@pytest.mark.asyncio
async def test_acquire_fresh_handle_without_artifact(manager):
    manager.refresh_status()
    assert await manager.acquire_fresh_handle() is None


@pytest.mark.asyncio
async def test_delete_removes_all_locations(downloaded, small_model, settings):
    legacy = downloaded.locator.cache_dir / "models" / "test-org--small-model"
    write_artifact(legacy)
    await downloaded.load()

    result = await downloaded.delete()

    assert result == "deleted"
    assert downloaded.status == ModelStatus.NOT_DOWNLOADED
    assert not downloaded.is_resident
    assert downloaded.locator.existing_paths(small_model) == []


@pytest.mark.asyncio
async def test_delete_nothing(manager):
    manager.refresh_status()
    assert await manager.delete() == "nothing_to_delete"
    assert manager.status == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_delete_cancels_download(manager, fetcher):
    fetcher.gate = asyncio.Event()
    await manager.download()
    await fetcher.started.wait()

    await manager.delete()

    assert manager.status == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_select_model_unloads_and_probes(downloaded, large_model, loader):
    await downloaded.load()

    await downloaded.select_model(large_model)

    assert downloaded.selected_model == large_model
    assert downloaded.status == ModelStatus.NOT_DOWNLOADED
    assert loader.loaded[0].released


@pytest.mark.asyncio
async def test_select_same_model_is_noop(downloaded, small_model):
    statuses = record_statuses(downloaded)
    await downloaded.select_model(small_model)
    assert statuses == []


@pytest.mark.asyncio
async def test_select_cancels_download(manager, fetcher, large_model):
    fetcher.gate = asyncio.Event()
    await manager.download()
    await fetcher.started.wait()

    await manager.select_model(large_model)

    assert manager.selected_model == large_model
    assert manager.status == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_selection_is_persisted(settings, catalog, loader, large_model):
    store = AsyncMock()
    store.get_selected_model_id.return_value = large_model.id
    manager = ModelLifecycleManager(loader=loader, settings=settings, catalog=catalog, store=store)

    await manager.initialize()
    assert manager.selected_model == large_model

    await manager.select_model(catalog.default())
    store.set_selected_model_id.assert_awaited_once_with(catalog.default().id)


@pytest.mark.asyncio
async def test_unknown_persisted_selection_falls_back(settings, catalog, loader, small_model):
    store = AsyncMock()
    store.get_selected_model_id.return_value = "gone/model"
    manager = ModelLifecycleManager(loader=loader, settings=settings, catalog=catalog, store=store)

    await manager.initialize()

    assert manager.selected_model == small_model


@pytest.mark.asyncio
async def test_legacy_artifact_is_reported_downloaded(settings, catalog, loader, small_model):
    locator = ArtifactLocator(settings.cache_dir)
    write_artifact(locator.cache_dir / "huggingface" / "transformers" / "test-org--small-model")
    manager = ModelLifecycleManager(loader=loader, settings=settings, catalog=catalog, locator=locator)

    await manager.initialize()

    assert manager.status == ModelStatus.DOWNLOADED


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_transitions(downloaded):
    def broken(_):
        raise RuntimeError("listener boom")

    downloaded.add_status_listener(broken)
    await downloaded.load()
    assert downloaded.status == ModelStatus.LOADED

    downloaded.remove_status_listener(broken)


class PartialFetcher(FakeFetcher):
    """Writes part of an artifact, then blocks until released or cancelled."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.cancelled = asyncio.Event()
        self.release = None

    async def fetch(self, model_id, destination):
        self.calls.append((model_id, destination))
        destination.mkdir(parents=True, exist_ok=True)
        (destination / "config.json").write_text("{}")
        self.started.set()
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled.set()
            if self.release is not None:
                await self.release.wait()
            raise
        if self.error is not None:
            raise self.error


@pytest.fixture
def partial_manager(settings, catalog, loader):
    fetcher = PartialFetcher()
    return ModelLifecycleManager(loader=loader, settings=settings, catalog=catalog, fetcher=fetcher)


@pytest.mark.asyncio
async def test_cancelled_download_removes_partial_files(partial_manager, small_model):
    await partial_manager.download()
    await partial_manager.fetcher.started.wait()
    destination = partial_manager.locator.primary_path(small_model)
    assert (destination / "config.json").exists()

    await partial_manager.cancel_download()

    assert partial_manager.status == ModelStatus.NOT_DOWNLOADED
    assert not destination.exists()
    assert partial_manager.probe_status() == ModelStatus.NOT_DOWNLOADED
    partial_manager.refresh_status()
    assert partial_manager.status == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_failed_download_removes_partial_files(partial_manager, small_model):
    fetcher = partial_manager.fetcher
    fetcher.error = DownloadError("Download timeout after 3600 seconds")
    fetcher.gate.set()

    task = await partial_manager.download()
    await task

    assert partial_manager.status == ModelStatus.ERROR
    assert not partial_manager.locator.primary_path(small_model).exists()
    assert partial_manager.probe_status() == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_failed_refetch_keeps_complete_artifact(downloaded, fetcher, small_model):
    fetcher.error = DownloadError("network unreachable")

    task = await downloaded.download()
    await task

    assert downloaded.status == ModelStatus.ERROR
    assert downloaded.probe_status() == ModelStatus.DOWNLOADED


@pytest.mark.asyncio
async def test_completed_progress_is_published(manager):
    snapshots = []
    manager.add_status_listener(lambda s: snapshots.append((s.status, s.progress)))

    task = await manager.download()
    await task

    assert (ModelStatus.DOWNLOADING, 1.0) in snapshots
    assert snapshots[-1] == (ModelStatus.DOWNLOADED, None)


@pytest.mark.asyncio
async def test_cancelling_the_canceller_propagates(partial_manager):
    fetcher = partial_manager.fetcher
    fetcher.release = asyncio.Event()
    task = await partial_manager.download()
    await fetcher.started.wait()

    outer = asyncio.create_task(partial_manager.cancel_download())
    await fetcher.cancelled.wait()
    outer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await outer

    fetcher.release.set()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert partial_manager.status == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_select_round_trip_with_artifact(downloaded, small_model, large_model):
    before = downloaded.probe_status()

    await downloaded.select_model(large_model)
    assert downloaded.status == ModelStatus.NOT_DOWNLOADED
    await downloaded.select_model(small_model)

    assert downloaded.status == before == ModelStatus.DOWNLOADED


@pytest.mark.asyncio
async def test_select_round_trip_without_artifact(manager, small_model, large_model):
    manager.refresh_status()
    before = manager.probe_status()

    await manager.select_model(large_model)
    await manager.select_model(small_model)

    assert manager.status == before == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_select_round_trip_after_cancelled_download(partial_manager, small_model, large_model):
    await partial_manager.download()
    await partial_manager.fetcher.started.wait()

    await partial_manager.select_model(large_model)
    await partial_manager.select_model(small_model)

    assert partial_manager.status == ModelStatus.NOT_DOWNLOADED
    assert partial_manager.probe_status() == ModelStatus.NOT_DOWNLOADED


@pytest.mark.asyncio
async def test_debug_info(downloaded, small_model):
    await downloaded.load()

    info = downloaded.get_debug_info()

    assert info.model_id == small_model.id
    assert info.status == ModelStatus.LOADED
    primary = info.locations[0]
    assert primary.primary and primary.exists and primary.has_artifact
    assert sorted(f.name for f in primary.files) == ["config.json", "model.safetensors"]
    assert not any(location.exists for location in info.locations[1:])
    assert info.recent_events[-1].endswith(f"{small_model.id}: LOADED")


@pytest.mark.asyncio
async def test_debug_info_records_download_events(partial_manager):
    await partial_manager.download()
    await partial_manager.fetcher.started.wait()
    await partial_manager.cancel_download()

    events = partial_manager.get_debug_info().recent_events
    assert any("download started" in e for e in events)
    assert any("download cancelled" in e for e in events)
    assert any("removed partial files" in e for e in events)


def test_recent_events_are_bounded(manager):
    for i in range(150):
        manager._record(f"event {i}")

    assert len(manager._events) == 100
    assert len(manager.recent_events()) == 20
    assert manager.recent_events()[-1].endswith("event 149")
    assert manager.recent_events(limit=0) == []
