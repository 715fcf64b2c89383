from typing import Dict, List, Sequence

from foodlens.ocr import NO_TEXT_DETECTED
from foodlens.preferences import PreferenceCategory, PreferenceStore

NO_PREFERENCES = "No preferences selected"
NO_IMAGES = "No images captured"

CATEGORY_LABELS = {
    PreferenceCategory.ALLERGIES: "Allergies",
    PreferenceCategory.DIETARY_TYPES: "Dietary",
    PreferenceCategory.HEALTH_CONDITIONS: "Health",
    PreferenceCategory.FOOD_PREFERENCES: "Preferences",
}

ANALYSIS_TEMPLATE = """You are FoodLens AI, a dietary safety assistant. Analyze the ingredients below based on the user's dietary profile.

USER DIETARY PROFILE:
{profile}

DETECTED INGREDIENTS FROM {image_count} IMAGE(S):
{ingredients}

Return your answer in the following format:

🔍 SAFETY VERDICT: [SAFE ✅ / CAUTION ⚠️ / NOT SAFE ❌]

Reasons:
Briefly explain the reasons
"""


def build_profile_summary(profile: Dict[PreferenceCategory, List[str]]) -> str:
    lines = []
    for category, label in CATEGORY_LABELS.items():
        names = profile.get(category) or []
        if names:
            lines.append(f"{label}: {', '.join(names)}")
    return "\n".join(lines) if lines else NO_PREFERENCES


def combine_extracted_texts(texts: Sequence[str]) -> str:
    if not texts:
        return NO_IMAGES
    blocks = []
    for index, text in enumerate(texts, start=1):
        if not text.strip() or text == NO_TEXT_DETECTED:
            blocks.append(f"Image {index}: No ingredients detected")
        else:
            blocks.append(f"Image {index} ingredients:\n{text}")
    return "\n\n".join(blocks)


def create_analysis_prompt(profile_summary: str, ingredients_text: str, image_count: int) -> str:
    return ANALYSIS_TEMPLATE.format(
        profile=profile_summary,
        ingredients=ingredients_text,
        image_count=image_count,
    )


async def build_prompt(store: PreferenceStore, texts: Sequence[str]) -> str:
    """Reads the dietary profile and wraps the per-image texts into the verdict prompt."""
    profile = build_profile_summary(await store.get_profile())
    return create_analysis_prompt(profile, combine_extracted_texts(texts), len(texts))
