import asyncio
import shutil
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Deque, List, Optional

from foodlens.common.logger import create_logger
from foodlens.config import Settings
from foodlens.inference.engine import ModelLoader
from foodlens.models.catalog import ModelCatalog
from foodlens.models.fetcher import SubprocessFetcher
from foodlens.models.locator import ArtifactLocator
from foodlens.models.types import (
    DebugInfoResponse,
    ModelDescriptor,
    ModelStatus,
    ModelStatusResponse,
)

logger = create_logger(__name__)

StatusListener = Callable[[ModelStatusResponse], None]

_OP_DOWNLOAD = "download"
_OP_LOAD = "load"

EVENT_HISTORY = 100
RECENT_EVENTS = 20


class ModelLifecycleManager:
    """Owns the on-disk and in-memory life-cycle of the selected model.

    Only one model is selected at a time and at most one handle is resident.
    Every operation checks the current status first; calling an operation
    from a status that does not allow it is a no-op. Load, unload, delete and
    selection changes serialize on a single lock; a download holds the lock
    only while it is being started.
    """

    def __init__(
        self,
        loader: ModelLoader,
        settings: Optional[Settings] = None,
        catalog: Optional[ModelCatalog] = None,
        locator: Optional[ArtifactLocator] = None,
        fetcher=None,
        store=None,
    ):
        self.settings = settings or Settings()
        self.loader = loader
        self.catalog = catalog or ModelCatalog()
        self.locator = locator or ArtifactLocator(self.settings.cache_dir)
        self.fetcher = fetcher or SubprocessFetcher(self.settings.download_timeout_seconds)
        self.store = store

        self._selected: ModelDescriptor = self.catalog.default()
        self._status = ModelStatus.NOT_DOWNLOADED
        self._error_message: Optional[str] = None
        self._failed_operation: Optional[str] = None
        self._progress = 0.0
        self._handle: Any = None

        self._download_task: Optional[asyncio.Task] = None
        self._progress_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._listeners: List[StatusListener] = []
        self._events: Deque[str] = deque(maxlen=EVENT_HISTORY)

        logger.info(f"ModelLifecycleManager initialized with cache_dir: {self.locator.cache_dir}")

    # -- observation ---------------------------------------------------------

    @property
    def selected_model(self) -> ModelDescriptor:
        return self._selected

    @property
    def status(self) -> ModelStatus:
        return self._status

    @property
    def download_progress(self) -> float:
        return self._progress

    @property
    def is_resident(self) -> bool:
        return self._handle is not None

    @property
    def load_failed(self) -> bool:
        """True while in ERROR because the last load attempt failed."""
        return self._status == ModelStatus.ERROR and self._failed_operation == _OP_LOAD

    def get_status(self) -> ModelStatusResponse:
        return ModelStatusResponse(
            model_id=self._selected.id,
            status=self._status,
            progress=self._progress if self._status == ModelStatus.DOWNLOADING else None,
            error_message=self._error_message if self._status == ModelStatus.ERROR else None,
        )

    def add_status_listener(self, listener: StatusListener):
        self._listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_status(self, status: ModelStatus, error_message: Optional[str] = None):
        self._status = status
        self._error_message = error_message
        if status != ModelStatus.ERROR:
            self._failed_operation = None
        self._record(f"{status.value}" + (f": {error_message}" if error_message else ""))
        self._publish()

    def _fail(self, operation: str, message: str):
        self._set_status(ModelStatus.ERROR, message)
        self._failed_operation = operation

    def _publish(self):
        snapshot = self.get_status()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)

    def _record(self, message: str):
        timestamp = datetime.now().strftime("%H:%M:%S")
        self._events.append(f"[{timestamp}] {self._selected.id}: {message}")

    def recent_events(self, limit: int = RECENT_EVENTS) -> List[str]:
        return list(self._events)[-limit:] if limit > 0 else []

    def get_debug_info(self) -> DebugInfoResponse:
        """Collects what is known about the selected model on disk and in memory."""
        return DebugInfoResponse(
            model_id=self._selected.id,
            status=self._status,
            cache_dir=str(self.locator.cache_dir),
            locations=self.locator.describe(self._selected),
            recent_events=self.recent_events(),
        )

    # -- selection -----------------------------------------------------------

    async def initialize(self):
        """Restores the persisted selection and probes the artifact store."""
        if self.store is not None:
            saved_id = await self.store.get_selected_model_id()
            model = self.catalog.get(saved_id) if saved_id else None
            if model is not None:
                self._selected = model
            elif saved_id:
                logger.warning(f"Persisted model {saved_id} is not in the catalog, using {self._selected.id}")
        self.refresh_status()

    async def select_model(self, model: ModelDescriptor):
        if model.id == self._selected.id:
            return

        logger.info(f"Switching model from {self._selected.display_name} to {model.display_name}")

        if self._status == ModelStatus.DOWNLOADING:
            await self.cancel_download()

        async with self._lock:
            if self._handle is not None:
                self._unload_locked()
            self._selected = model
            if self.store is not None:
                await self.store.set_selected_model_id(model.id)
            self._progress = 0.0
            self._set_status(self.probe_status())

    def probe_status(self) -> ModelStatus:
        """Inspects the artifact store only; residency is never inferred."""
        if self.locator.locate(self._selected) is not None:
            return ModelStatus.DOWNLOADED
        return ModelStatus.NOT_DOWNLOADED

    def refresh_status(self):
        if self._status in (ModelStatus.DOWNLOADING, ModelStatus.LOADING, ModelStatus.LOADED):
            return
        status = self.probe_status()
        logger.info(f"Probed {self._selected.id}: {status.value}")
        self._set_status(status)

    # -- download ------------------------------------------------------------

    async def download(self) -> Optional[asyncio.Task]:
        """Starts fetching the selected model's artifact in the background.

        Returns the fetch task, or None when the current status does not
        allow a download.
        """
        async with self._lock:
            if self._status in (ModelStatus.DOWNLOADING, ModelStatus.LOADING, ModelStatus.LOADED):
                logger.info(f"Download ignored, model is {self._status.value}")
                return None

            model = self._selected
            self._progress = 0.0
            self._set_status(ModelStatus.DOWNLOADING)
            self._progress_task = asyncio.create_task(self._simulate_progress())
            self._download_task = asyncio.create_task(self._download_model(model))

        logger.info(f"Started download for model {model.id}")
        return self._download_task

    async def _download_model(self, model: ModelDescriptor):
        destination = self.locator.primary_path(model)
        # A complete artifact already at the destination survives a failed refetch.
        keep_existing = self.locator.locate(model) == destination
        try:
            logger.info(f"Starting download for {model.id} into {destination}")
            self._record(f"download started into {destination}")
            await self.fetcher.fetch(model.id, destination)
        except asyncio.CancelledError:
            logger.info(f"Download cancelled for {model.id}")
            self._record("download cancelled")
            if not keep_existing:
                self._discard_partial(destination)
            self._settle_download(ModelStatus.NOT_DOWNLOADED)
            raise
        except Exception as e:
            logger.error(f"Error downloading model {model.id}: {e}", exc_info=True)
            if not keep_existing:
                self._discard_partial(destination)
            self._settle_download(ModelStatus.ERROR, f"Download failed: {e}")
            return

        if self.locator.locate(model) is None:
            logger.error(f"Download verification failed for {model.id}")
            self._discard_partial(destination)
            self._settle_download(
                ModelStatus.ERROR,
                "Download failed: model files incomplete or missing",
            )
            return

        self._stop_progress_simulation()
        self._progress = 1.0
        self._publish()
        self._set_status(ModelStatus.DOWNLOADED)
        logger.info(f"Model {model.id} downloaded (not loaded into memory)")

    def _discard_partial(self, destination: Path):
        if not destination.exists():
            return
        try:
            if destination.is_dir():
                shutil.rmtree(destination)
            else:
                destination.unlink()
            logger.info(f"Removed partial download at {destination}")
            self._record(f"removed partial files at {destination}")
        except OSError as e:
            logger.error(f"Failed to remove partial download at {destination}: {e}")

    def _settle_download(self, status: ModelStatus, error_message: Optional[str] = None):
        self._stop_progress_simulation()
        self._progress = 0.0
        if status == ModelStatus.ERROR:
            self._fail(_OP_DOWNLOAD, error_message)
        else:
            self._set_status(status)

    async def _simulate_progress(self):
        step = self.settings.progress_step
        ceiling = self.settings.progress_ceiling
        while self._status == ModelStatus.DOWNLOADING:
            await asyncio.sleep(self.settings.progress_tick_seconds)
            if self._status != ModelStatus.DOWNLOADING:
                break
            if self._progress < ceiling:
                self._progress = min(ceiling, self._progress + step)
                self._publish()

    def _stop_progress_simulation(self):
        task, self._progress_task = self._progress_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def cancel_download(self):
        task = self._download_task
        if task is None or task.done():
            return

        logger.info(f"Cancelling download for {self._selected.id}")
        task.cancel()
        try:
            # wait() does not raise the task's CancelledError; a cancel of this caller still does.
            await asyncio.wait([task])
        finally:
            self._download_task = None
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Download task ended with error during cancellation: {task.exception()}")

        # A task cancelled before its first step never reaches its handler.
        if self._status == ModelStatus.DOWNLOADING:
            self._settle_download(ModelStatus.NOT_DOWNLOADED)
        logger.info(f"Cancelled download for {self._selected.id}")

    # -- residency -----------------------------------------------------------

    async def load(self):
        async with self._lock:
            await self._load_locked()

    async def _load_locked(self):
        if self._status != ModelStatus.DOWNLOADED and not self.load_failed:
            logger.debug(f"Load ignored, model is {self._status.value}")
            return

        model = self._selected
        path = self.locator.locate(model)
        if path is None:
            self._fail(_OP_LOAD, "Failed to load model: model files not found")
            return

        logger.info(f"Loading {model.id} from {path}")
        self._set_status(ModelStatus.LOADING)

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self.loader.load, str(path))
        try:
            handle = await future
        except asyncio.CancelledError:
            future.add_done_callback(self._release_orphan)
            self._set_status(ModelStatus.DOWNLOADED)
            raise
        except Exception as e:
            logger.error(f"Failed to load model {model.id}: {e}", exc_info=True)
            self._fail(_OP_LOAD, f"Failed to load model: {e}")
            return

        self._handle = handle
        self._set_status(ModelStatus.LOADED)
        logger.info(f"Model {model.id} loaded into memory")

    def _release_orphan(self, future: asyncio.Future):
        if future.cancelled() or future.exception() is not None:
            return
        logger.info("Releasing handle that finished loading after cancellation")
        self._release(future.result())

    def _release(self, handle: Any):
        try:
            self.loader.release(handle)
        except Exception as e:
            logger.warning(f"Error releasing model handle: {e}")

    async def unload(self):
        async with self._lock:
            self._unload_locked()

    def _unload_locked(self):
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        self._release(handle)
        self._set_status(ModelStatus.DOWNLOADED)
        logger.info(f"Model {self._selected.id} unloaded from memory")

    async def reload(self):
        async with self._lock:
            if self._status not in (ModelStatus.DOWNLOADED, ModelStatus.LOADED):
                logger.debug(f"Reload ignored, model is {self._status.value}")
                return
            logger.info(f"Reloading model {self._selected.id}")
            if self._status == ModelStatus.LOADED:
                self._unload_locked()
                await asyncio.sleep(self.settings.reload_settle_seconds)
            await self._load_locked()

    async def acquire_fresh_handle(self) -> Optional[Any]:
        """Returns a handle built from a clean accelerator state.

        Always unloads, waits for the accelerator to release its command
        queues, then loads again. Handles must not be reused across sessions.
        """
        async with self._lock:
            self._unload_locked()
            await asyncio.sleep(self.settings.fresh_handle_settle_seconds)
            await self._load_locked()
            return self._handle

    # -- removal -------------------------------------------------------------

    async def delete(self) -> str:
        """Removes every known artifact location of the selected model.

        Returns:
            "deleted" if at least one location existed, otherwise "nothing_to_delete".
        """
        if self._status == ModelStatus.DOWNLOADING:
            await self.cancel_download()

        async with self._lock:
            self._unload_locked()
            model = self._selected
            existing = self.locator.existing_paths(model)

            for path in existing:
                try:
                    if path.is_dir():
                        shutil.rmtree(path)
                    else:
                        path.unlink()
                    logger.info(f"Deleted model files at {path}")
                    self._record(f"deleted {path}")
                except OSError as e:
                    logger.error(f"Failed to delete {path}: {e}")

            self._progress = 0.0
            self._set_status(ModelStatus.NOT_DOWNLOADED)

        if not existing:
            logger.info(f"No model files found to delete for {model.id}")
            return "nothing_to_delete"
        return "deleted"
