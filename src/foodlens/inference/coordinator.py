import asyncio
from typing import Any, Callable, List, Optional, Set

from foodlens.common.logger import create_logger
from foodlens.config import Settings
from foodlens.inference.engine import GenerationEngine
from foodlens.inference.liveness import AppPhase, ExtendedExecutionHost, LivenessSignal
from foodlens.inference.session import StreamingInferenceSession
from foodlens.inference.types import (
    Chunk,
    Done,
    Failed,
    FailureKind,
    InferenceStatusResponse,
    SessionState,
    SessionUpdate,
    UpdateKind,
)
from foodlens.models.manager import ModelLifecycleManager
from foodlens.models.types import ModelStatus

logger = create_logger(__name__)

NOT_ACTIVE_MESSAGE = "⚠️ App is not active."
INTERRUPTED_PREFIX = "⚠️ Analysis interrupted.\n"
MODEL_NOT_DOWNLOADED_MESSAGE = "❌ Model is not downloaded"
MODEL_BUSY_MESSAGE = "❌ Model is busy"
MODEL_LOAD_FAILED_MESSAGE = "❌ Model failed to load"
ANALYSIS_ERROR_PREFIX = "❌ Analysis error: "

RESET_REASON = "Reset before new inference"
BACKGROUND_REASON = "App moved to background."
INACTIVE_REASON = "App became inactive."
GRANT_EXPIRED_REASON = "Background task expired."

UpdateListener = Callable[[SessionUpdate], None]


class InferenceCoordinator:
    """Runs at most one streaming session and cancels it when liveness is withdrawn.

    Session state is IDLE, RUNNING or CANCELLING and is only written here.
    A running session holds an extended-execution grant that is released
    exactly once, by the session itself when it ends or by
    ``cancel_if_needed`` when it is cancelled. Every start attempt ends with
    exactly one terminal update.
    """

    def __init__(
        self,
        manager: ModelLifecycleManager,
        engine: GenerationEngine,
        liveness: LivenessSignal,
        host: ExtendedExecutionHost,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or manager.settings
        self.manager = manager
        self.engine = engine
        self.liveness = liveness
        self.host = host

        self._state = SessionState.IDLE
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: Optional[asyncio.Task] = None
        self._grant: Optional[str] = None
        self._start_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

        self._text = ""
        self._last_update: Optional[UpdateKind] = None
        self._listeners: List[UpdateListener] = []

        self.liveness.add_listener(self._on_phase_change)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def text(self) -> str:
        return self._text

    def get_status(self) -> InferenceStatusResponse:
        return InferenceStatusResponse(
            state=self._state,
            text=self._text,
            last_update=self._last_update,
            grant_held=self._grant is not None,
        )

    def add_listener(self, listener: UpdateListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: UpdateListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, kind: UpdateKind, text: str):
        self._text = text
        self._last_update = kind
        update = SessionUpdate(kind=kind, text=text)
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as e:
                logger.error(f"Update listener failed: {e}", exc_info=True)

    def _set_state(self, state: SessionState):
        self._state = state
        if state == SessionState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()

    # -- start ---------------------------------------------------------------

    async def start(self, prompt: str) -> Optional[asyncio.Task]:
        """Starts a session for ``prompt`` after settling any running one.

        Returns the session task, or None when the attempt ended before
        generation started; its terminal update has been published either way.
        """
        async with self._start_lock:
            await self.cancel_if_needed(RESET_REASON)
            await self._idle.wait()

            if not self.liveness.is_active:
                logger.info("Not starting analysis, app is not active")
                self._publish(UpdateKind.INTERRUPTED, NOT_ACTIVE_MESSAGE)
                return None

            error = self._check_model_ready()
            if error is not None:
                self._publish(UpdateKind.ERROR, error)
                return None

            handle = await self.manager.acquire_fresh_handle()
            if handle is None:
                self._publish(UpdateKind.ERROR, MODEL_LOAD_FAILED_MESSAGE)
                return None

            self._text = ""
            self._grant = self.host.begin("ModelInference", on_expire=self._on_grant_expired)
            self._task = asyncio.create_task(self._run_session(handle, prompt))
            self._set_state(SessionState.RUNNING)
            logger.info("Analysis session started")
            return self._task

    def _check_model_ready(self) -> Optional[str]:
        status = self.manager.status
        if status in (ModelStatus.DOWNLOADED, ModelStatus.LOADED):
            return None
        if status in (ModelStatus.DOWNLOADING, ModelStatus.LOADING):
            return MODEL_BUSY_MESSAGE
        if self.manager.load_failed:
            return None
        return MODEL_NOT_DOWNLOADED_MESSAGE

    async def _run_session(self, handle: Any, prompt: str):
        session = StreamingInferenceSession(
            self.engine,
            self.liveness,
            flush_every=self.settings.flush_every,
            yield_every=self.settings.yield_every,
            sentinel=self.settings.end_of_turn,
        )
        try:
            async for event in session.events(handle, prompt):
                if self._state != SessionState.RUNNING:
                    break
                if isinstance(event, Chunk):
                    self._publish(UpdateKind.CHUNK, event.text)
                elif isinstance(event, Done):
                    logger.info("Analysis completed")
                    self._publish(UpdateKind.COMPLETED, event.text)
                else:
                    self._publish_failure(event)
        except asyncio.CancelledError:
            logger.info("Analysis session cancelled")
            raise
        except Exception as e:
            logger.error(f"Analysis session failed: {e}", exc_info=True)
            if self._state == SessionState.RUNNING:
                self._publish(UpdateKind.ERROR, f"{ANALYSIS_ERROR_PREFIX}{e}")
        finally:
            # A cancelled session is settled by cancel_if_needed.
            if self._state == SessionState.RUNNING:
                self._task = None
                self._release_grant()
                self._set_state(SessionState.IDLE)

    def _publish_failure(self, failure: Failed):
        if failure.kind == FailureKind.NOT_ACTIVE:
            self._publish(UpdateKind.INTERRUPTED, NOT_ACTIVE_MESSAGE)
        elif failure.kind == FailureKind.WENT_INACTIVE:
            self._publish(UpdateKind.INTERRUPTED, f"{INTERRUPTED_PREFIX}{failure.message}")
        else:
            self._publish(UpdateKind.ERROR, f"{ANALYSIS_ERROR_PREFIX}{failure.message}")

    # -- cancellation --------------------------------------------------------

    async def cancel_if_needed(self, reason: str) -> bool:
        """Cancels the running session, if any, and publishes ``reason``.

        Returns True only for the call that performed the cancellation.
        """
        if self._state != SessionState.RUNNING:
            return False
        self._set_state(SessionState.CANCELLING)
        logger.info(f"Cancelling analysis: {reason}")

        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Session ended with error during cancellation: {e}", exc_info=True)

        self._publish(UpdateKind.CANCELLED, f"{INTERRUPTED_PREFIX}{reason}")
        self._release_grant()
        self._set_state(SessionState.IDLE)
        return True

    async def wait(self):
        """Waits until no session is running or being cancelled."""
        await self._idle.wait()

    def _release_grant(self):
        token, self._grant = self._grant, None
        if token is not None:
            self.host.end(token)

    def _schedule_cancel(self, reason: str):
        if self._state != SessionState.RUNNING:
            return
        task = asyncio.ensure_future(self.cancel_if_needed(reason))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_phase_change(self, phase: AppPhase):
        if phase == AppPhase.BACKGROUND:
            self._schedule_cancel(BACKGROUND_REASON)
        elif phase == AppPhase.INACTIVE:
            self._schedule_cancel(INACTIVE_REASON)

    def _on_grant_expired(self):
        self._schedule_cancel(GRANT_EXPIRED_REASON)

    def close(self):
        self.liveness.remove_listener(self._on_phase_change)
