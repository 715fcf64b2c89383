import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import aiosqlite

from foodlens.common.logger import create_logger

logger = create_logger(__name__)

SELECTED_MODEL_KEY = "selectedModelID"


class PreferenceCategory(str, Enum):
    ALLERGIES = "selectedAllergies"
    DIETARY_TYPES = "selectedDietaryTypes"
    HEALTH_CONDITIONS = "selectedHealthConditions"
    FOOD_PREFERENCES = "selectedFoodPreferences"


PREFERENCE_OPTIONS: Dict[PreferenceCategory, List[str]] = {
    PreferenceCategory.ALLERGIES: [
        "Milk/Dairy", "Eggs", "Peanuts", "Tree Nuts", "Fish", "Shellfish",
        "Soy", "Wheat/Gluten", "Sesame", "Corn", "Mustard", "Celery", "Sulfites",
    ],
    PreferenceCategory.DIETARY_TYPES: [
        "Vegan", "Vegetarian", "Pescatarian", "Keto/Low-Carb", "Paleo",
        "Halal", "Kosher", "Mediterranean", "Low-Sodium", "Diabetic-Friendly",
    ],
    PreferenceCategory.HEALTH_CONDITIONS: [
        "Diabetes", "Hypertension", "Pregnancy", "Lactose Intolerance",
        "Celiac Disease", "Heart Disease", "Kidney Disease", "High Cholesterol",
    ],
    PreferenceCategory.FOOD_PREFERENCES: [
        "Organic Only", "Low Sugar", "High Protein", "Low Fat",
        "No Artificial Colors", "No Preservatives", "Gluten-Free", "Raw Food",
    ],
}


class PreferenceStore:
    """Key/value persistence of the selected model and the dietary profile."""

    def __init__(self, db_path: str = "foodlens.db"):
        self.db_path = db_path

    async def initialize(self):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS preferences (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await db.commit()
        logger.info(f"Preference store ready at {self.db_path}")

    async def get(self, key: str, default: Any = None) -> Any:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT value_json FROM preferences WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return default
        return json.loads(row[0])

    async def set(self, key: str, value: Any):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO preferences (key, value_json, updated_at)
                VALUES (?, ?, ?)
                """,
                (key, json.dumps(value), datetime.utcnow().isoformat()),
            )
            await db.commit()

    async def delete(self, key: str):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM preferences WHERE key = ?", (key,))
            await db.commit()

    async def get_selected_model_id(self) -> Optional[str]:
        return await self.get(SELECTED_MODEL_KEY)

    async def set_selected_model_id(self, model_id: str):
        await self.set(SELECTED_MODEL_KEY, model_id)

    async def get_selection(self, category: PreferenceCategory) -> List[int]:
        options = PREFERENCE_OPTIONS[category]
        stored = await self.get(category.value, [])
        return sorted({i for i in stored if isinstance(i, int) and 0 <= i < len(options)})

    async def set_selection(self, category: PreferenceCategory, indices: Iterable[int]):
        options = PREFERENCE_OPTIONS[category]
        selection = sorted(set(indices))
        invalid = [i for i in selection if not 0 <= i < len(options)]
        if invalid:
            raise ValueError(f"Invalid {category.name.lower()} indices: {invalid}")
        await self.set(category.value, selection)

    async def get_profile(self) -> Dict[PreferenceCategory, List[str]]:
        profile = {}
        for category in PreferenceCategory:
            options = PREFERENCE_OPTIONS[category]
            profile[category] = [options[i] for i in await self.get_selection(category)]
        return profile

    async def reset_preferences(self):
        for category in PreferenceCategory:
            await self.delete(category.value)
        logger.info("Dietary preferences reset")
