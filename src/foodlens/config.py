"""Runtime settings read from ``FOODLENS_*`` environment variables."""

import os
from typing import Optional

from pydantic import BaseModel, Field


def _default_cache_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".cache", "foodlens")


class Settings(BaseModel):
    """Tunables for the lifecycle manager, inference session and API.

    Attributes:
        cache_dir: Root of the artifact store. Models live under ``models/``.
        db_path: sqlite file backing the preference store.
        device_memory_gb: Overrides detected physical memory for availability checks.
        progress_tick_seconds: Interval of the download progress estimator.
        progress_step: Progress added per estimator tick.
        progress_ceiling: Estimated progress never exceeds this before completion.
        reload_settle_seconds: Pause between unload and load in ``reload()``.
        fresh_handle_settle_seconds: Pause between unload and load when acquiring a handle.
        flush_every: Fragments buffered between chunk updates.
        yield_every: Fragments between explicit yields to the event loop.
        end_of_turn: Sentinel marking logical end of generated output.
        background_grant_seconds: Lifetime of an extended-execution grant.
        download_timeout_seconds: Upper bound on a single artifact fetch.
    """
    cache_dir: str = Field(default_factory=_default_cache_dir)
    db_path: str = "foodlens.db"
    device_memory_gb: Optional[int] = None

    progress_tick_seconds: float = 0.5
    progress_step: float = 0.02
    progress_ceiling: float = 0.9

    reload_settle_seconds: float = 0.5
    fresh_handle_settle_seconds: float = 0.3

    flush_every: int = Field(3, ge=1)
    yield_every: int = Field(10, ge=1)
    end_of_turn: str = "<end_of_turn>"

    background_grant_seconds: float = 30.0
    download_timeout_seconds: float = 86400

    device: str = "auto"
    max_new_tokens: int = 512

    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        values = {}
        for name, field in cls.model_fields.items():
            raw = os.environ.get(f"FOODLENS_{name.upper()}")
            if raw is None or not raw.strip():
                continue
            values[name] = raw.strip()
        return cls(**values)
