"""Interfaces of the model backend used by the lifecycle manager and sessions."""

from typing import Any, AsyncIterator, Protocol


class ModelLoader(Protocol):
    """Materializes an artifact directory into a resident handle."""

    def load(self, path: str) -> Any:
        """Blocking load; called off the event loop."""
        ...

    def release(self, handle: Any) -> None:
        """Frees the memory and accelerator state held by ``handle``."""
        ...


class GenerationEngine(Protocol):
    """Produces text fragments for a prompt from a resident handle.

    The returned iterator is lazy, in order and finite. A fragment may embed
    the end-of-turn sentinel before the iterator is exhausted.
    """

    def stream(self, handle: Any, prompt: str) -> AsyncIterator[str]:
        ...
