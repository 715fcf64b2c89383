"""App foreground state and OS-style extended-execution grants."""

import asyncio
import uuid
from enum import Enum
from typing import Callable, Dict, List, Optional

from foodlens.common.logger import create_logger

logger = create_logger(__name__)


class AppPhase(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    BACKGROUND = "BACKGROUND"


PhaseListener = Callable[[AppPhase], None]


class LivenessSignal:
    """Tracks whether the app is in the foreground and eligible to run inference."""

    def __init__(self, phase: AppPhase = AppPhase.ACTIVE):
        self._phase = phase
        self._listeners: List[PhaseListener] = []

    @property
    def phase(self) -> AppPhase:
        return self._phase

    @property
    def is_active(self) -> bool:
        return self._phase == AppPhase.ACTIVE

    def add_listener(self, listener: PhaseListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: PhaseListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_phase(self, phase: AppPhase):
        if phase == self._phase:
            return
        logger.info(f"App phase {self._phase.value} -> {phase.value}")
        self._phase = phase
        for listener in list(self._listeners):
            try:
                listener(phase)
            except Exception as e:
                logger.error(f"Liveness listener failed: {e}", exc_info=True)


class _Grant:
    def __init__(self, name: str, handle: asyncio.TimerHandle):
        self.name = name
        self.handle = handle


class ExtendedExecutionHost:
    """Hands out time-bounded permissions to keep running after losing foreground.

    Each grant carries a deadline; when it passes, the grant's expiry
    callback runs once. Holders must still ``end()`` an expired grant.
    """

    def __init__(self, grant_seconds: float = 30.0):
        self.grant_seconds = grant_seconds
        self._grants: Dict[str, _Grant] = {}

    @property
    def active_grants(self) -> int:
        return len(self._grants)

    def begin(self, name: str, on_expire: Optional[Callable[[], None]] = None) -> str:
        token = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.grant_seconds, self._expire, token, on_expire)
        self._grants[token] = _Grant(name, handle)
        logger.debug(f"Began extended execution '{name}' ({token})")
        return token

    def end(self, token: str):
        grant = self._grants.pop(token, None)
        if grant is None:
            logger.warning(f"Ending unknown extended execution grant {token}")
            return
        grant.handle.cancel()
        logger.debug(f"Ended extended execution '{grant.name}' ({token})")

    def _expire(self, token: str, on_expire: Optional[Callable[[], None]]):
        grant = self._grants.get(token)
        if grant is None:
            return
        logger.info(f"Extended execution '{grant.name}' expired")
        if on_expire is not None:
            try:
                on_expire()
            except Exception as e:
                logger.error(f"Grant expiry handler failed: {e}", exc_info=True)
