"""REST API routes for the dietary profile."""

from typing import Dict, List

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from foodlens.common.logger import create_logger
from foodlens.preferences import PREFERENCE_OPTIONS, PreferenceCategory, PreferenceStore
from foodlens.prompts import build_profile_summary

logger = create_logger(__name__)

router = APIRouter()


class ProfileResponse(BaseModel):
    selections: Dict[PreferenceCategory, List[int]]
    summary: str


class SelectionRequest(BaseModel):
    indices: List[int]


def get_preference_store(request: Request) -> PreferenceStore:
    return request.app.state.preference_store


async def _profile_response(store: PreferenceStore) -> ProfileResponse:
    selections = {c: await store.get_selection(c) for c in PreferenceCategory}
    return ProfileResponse(
        selections=selections,
        summary=build_profile_summary(await store.get_profile()),
    )


@router.get("", response_model=ProfileResponse, summary="Get dietary profile")
async def get_profile(request: Request) -> ProfileResponse:
    return await _profile_response(get_preference_store(request))


@router.get("/options", summary="List selectable options per category")
async def get_options() -> Dict[PreferenceCategory, List[str]]:
    return PREFERENCE_OPTIONS


@router.put(
    "/{category}",
    response_model=ProfileResponse,
    responses={
        400: {"description": "Index out of range for the category"},
        404: {"description": "Unknown preference category"},
    },
    summary="Replace the selection of one category",
)
async def set_selection(
    category: str,
    body: SelectionRequest,
    request: Request,
) -> ProfileResponse:
    try:
        category = PreferenceCategory(category)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown preference category {category}",
        )

    store = get_preference_store(request)
    try:
        await store.set_selection(category, body.indices)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info(f"Updated {category.value}: {sorted(set(body.indices))}")
    return await _profile_response(store)


@router.delete("", response_model=ProfileResponse, summary="Reset all preferences")
async def reset_profile(request: Request) -> ProfileResponse:
    store = get_preference_store(request)
    await store.reset_preferences()
    return await _profile_response(store)
