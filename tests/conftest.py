"""Shared fixtures."""

import pytest

from foodlens.config import Settings
from foodlens.models.types import ModelDescriptor


@pytest.fixture
def settings(tmp_path):
    return Settings(
        cache_dir=str(tmp_path / "cache"),
        db_path=str(tmp_path / "foodlens.db"),
        progress_tick_seconds=0.01,
        reload_settle_seconds=0,
        fresh_handle_settle_seconds=0,
    )


@pytest.fixture
def small_model():
    return ModelDescriptor(
        id="test-org/small-model",
        display_name="Small",
        size="~0.1 GB",
        minimum_memory_gb=2,
    )


@pytest.fixture
def large_model():
    return ModelDescriptor(
        id="test-org/large-model",
        display_name="Large",
        size="~3 GB",
        minimum_memory_gb=7,
    )
