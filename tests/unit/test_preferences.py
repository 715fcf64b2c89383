import os
import tempfile

import pytest
import pytest_asyncio

from foodlens.preferences import PREFERENCE_OPTIONS, PreferenceCategory, PreferenceStore


@pytest_asyncio.fixture
async def store():
    with tempfile.NamedTemporaryFile(delete=False, suffix=".db") as f:
        db_path = f.name

    preference_store = PreferenceStore(db_path)
    await preference_store.initialize()

    yield preference_store

    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.mark.asyncio
async def test_selected_model_round_trip(store):
    assert await store.get_selected_model_id() is None

    await store.set_selected_model_id("mlx-community/gemma-3n-E2B-it-lm-4bit")
    await store.set_selected_model_id("mlx-community/gemma-3-1b-it-qat-4bit")

    assert await store.get_selected_model_id() == "mlx-community/gemma-3-1b-it-qat-4bit"


@pytest.mark.asyncio
async def test_selection_is_deduplicated_and_sorted(store):
    await store.set_selection(PreferenceCategory.ALLERGIES, [5, 0, 5, 2])

    assert await store.get_selection(PreferenceCategory.ALLERGIES) == [0, 2, 5]
    assert await store.get_selection(PreferenceCategory.DIETARY_TYPES) == []


@pytest.mark.asyncio
async def test_invalid_index_rejected(store):
    size = len(PREFERENCE_OPTIONS[PreferenceCategory.HEALTH_CONDITIONS])

    with pytest.raises(ValueError):
        await store.set_selection(PreferenceCategory.HEALTH_CONDITIONS, [0, size])

    assert await store.get_selection(PreferenceCategory.HEALTH_CONDITIONS) == []


@pytest.mark.asyncio
async def test_stale_stored_indices_are_dropped(store):
    await store.set(PreferenceCategory.FOOD_PREFERENCES.value, [1, 99, "x", -1])

    assert await store.get_selection(PreferenceCategory.FOOD_PREFERENCES) == [1]


@pytest.mark.asyncio
async def test_profile_names(store):
    await store.set_selection(PreferenceCategory.ALLERGIES, [0, 2])
    await store.set_selection(PreferenceCategory.DIETARY_TYPES, [0])

    profile = await store.get_profile()

    assert profile[PreferenceCategory.ALLERGIES] == ["Milk/Dairy", "Peanuts"]
    assert profile[PreferenceCategory.DIETARY_TYPES] == ["Vegan"]
    assert profile[PreferenceCategory.HEALTH_CONDITIONS] == []


@pytest.mark.asyncio
async def test_reset_keeps_model_selection(store):
    await store.set_selected_model_id("mlx-community/gemma-3-1b-it-qat-4bit")
    await store.set_selection(PreferenceCategory.ALLERGIES, [1])

    await store.reset_preferences()

    assert await store.get_selection(PreferenceCategory.ALLERGIES) == []
    assert await store.get_selected_model_id() == "mlx-community/gemma-3-1b-it-qat-4bit"


@pytest.mark.asyncio
async def test_values_survive_reopen(store):
    await store.set_selection(PreferenceCategory.ALLERGIES, [3])

    reopened = PreferenceStore(store.db_path)
    await reopened.initialize()

    assert await reopened.get_selection(PreferenceCategory.ALLERGIES) == [3]
