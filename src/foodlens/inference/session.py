import asyncio
from typing import Any, AsyncIterator, Callable, Optional

from foodlens.common.logger import create_logger
from foodlens.errors import EngineFailure, NotActiveError, WentInactiveError
from foodlens.inference.engine import GenerationEngine
from foodlens.inference.liveness import LivenessSignal
from foodlens.inference.types import (
    Chunk,
    Done,
    Failed,
    FailureKind,
    SessionEvent,
)

logger = create_logger(__name__)

END_OF_TURN = "<end_of_turn>"


class StreamBuffer:
    """Accumulated response text plus the fragments not yet flushed."""

    def __init__(self, sentinel: str = END_OF_TURN):
        self.sentinel = sentinel
        self.text = ""
        self.pending = ""
        self.fragments = 0
        self.finished = False

    def append(self, fragment: str):
        self.fragments += 1
        self.pending += fragment
        end = fragment.find(self.sentinel)
        if end >= 0:
            self.text += fragment[:end]
            self.finished = True
        else:
            self.text += fragment

    def flush(self) -> str:
        self.pending = ""
        return self.text


class StreamingInferenceSession:
    """One generation run over a borrowed model handle.

    ``events()`` yields ``Chunk`` updates followed by exactly one ``Done`` or
    ``Failed``. Cancelling the consuming task stops the run at the next
    fragment boundary and nothing further is emitted. The handle is only
    referenced for the duration of the run.
    """

    def __init__(
        self,
        engine: GenerationEngine,
        liveness: LivenessSignal,
        flush_every: int = 3,
        yield_every: int = 10,
        sentinel: str = END_OF_TURN,
    ):
        self.engine = engine
        self.liveness = liveness
        self.flush_every = flush_every
        self.yield_every = yield_every
        self.sentinel = sentinel

    async def events(self, handle: Any, prompt: str) -> AsyncIterator[SessionEvent]:
        if not self.liveness.is_active:
            error = NotActiveError()
            yield Failed(FailureKind.NOT_ACTIVE, str(error), error)
            return

        buffer = StreamBuffer(self.sentinel)
        failure: Optional[Failed] = None
        stream = self.engine.stream(handle, prompt)
        try:
            async for fragment in stream:
                if not self.liveness.is_active:
                    error = WentInactiveError()
                    failure = Failed(FailureKind.WENT_INACTIVE, str(error), error)
                    break

                buffer.append(fragment)
                if buffer.finished:
                    break

                if buffer.fragments % self.flush_every == 0 and buffer.pending:
                    yield Chunk(buffer.flush())

                if buffer.fragments % self.yield_every == 0:
                    await asyncio.sleep(0)
        except asyncio.CancelledError:
            logger.info(f"Generation cancelled after {buffer.fragments} fragments")
            raise
        except Exception as e:
            logger.error(f"Generation engine failed: {e}", exc_info=True)
            error = EngineFailure(e)
            failure = Failed(FailureKind.ENGINE, str(error), e)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if failure is not None:
            logger.info(f"Generation stopped: {failure.message}")
            yield failure
            return

        yield Chunk(buffer.flush())
        yield Done(buffer.text)

    async def run(
        self,
        handle: Any,
        prompt: str,
        on_chunk: Callable[[str], None],
        on_complete: Callable[[str], None],
        on_error: Callable[[Failed], None],
    ):
        """Callback form of ``events()``."""
        async for event in self.events(handle, prompt):
            if isinstance(event, Chunk):
                on_chunk(event.text)
            elif isinstance(event, Done):
                on_complete(event.text)
            else:
                on_error(event)
