"""Session states, session events and UI-facing updates."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel


class SessionState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    CANCELLING = "CANCELLING"


class FailureKind(str, Enum):
    NOT_ACTIVE = "NOT_ACTIVE"  # Liveness false before generation started
    WENT_INACTIVE = "WENT_INACTIVE"  # Liveness withdrawn mid-stream
    ENGINE = "ENGINE"  # Generation engine raised


@dataclass(frozen=True)
class Chunk:
    text: str


@dataclass(frozen=True)
class Done:
    text: str


@dataclass(frozen=True)
class Failed:
    kind: FailureKind
    message: str
    error: Optional[BaseException] = None


SessionEvent = Union[Chunk, Done, Failed]


class UpdateKind(str, Enum):
    CHUNK = "CHUNK"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    INTERRUPTED = "INTERRUPTED"
    ERROR = "ERROR"


TERMINAL_UPDATES = frozenset({
    UpdateKind.COMPLETED,
    UpdateKind.CANCELLED,
    UpdateKind.INTERRUPTED,
    UpdateKind.ERROR,
})


class SessionUpdate(BaseModel):
    """A text update for the presentation layer.

    Attributes:
        kind: CHUNK for partial text, anything else is the attempt's terminal message
        text: Full text to display
    """
    kind: UpdateKind
    text: str

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_UPDATES


class InferenceStatusResponse(BaseModel):
    state: SessionState
    text: str
    last_update: Optional[UpdateKind] = None
    grant_held: bool = False
