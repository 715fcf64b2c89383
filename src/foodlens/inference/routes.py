"""REST API routes for analysis sessions and app liveness."""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field, model_validator

from foodlens.common.logger import create_logger
from foodlens.inference.coordinator import InferenceCoordinator
from foodlens.inference.liveness import AppPhase, LivenessSignal
from foodlens.inference.types import InferenceStatusResponse
from foodlens.prompts import build_prompt

logger = create_logger(__name__)

router = APIRouter()


class StartRequest(BaseModel):
    """Either a ready prompt or the per-image texts to build one from."""
    prompt: Optional[str] = None
    extracted_texts: Optional[List[str]] = None

    @model_validator(mode="after")
    def _check_input(self):
        if self.prompt is None and self.extracted_texts is None:
            raise ValueError("Either prompt or extracted_texts is required")
        return self


class CancelRequest(BaseModel):
    reason: str = Field("Cancelled by user", min_length=1)


class LifecycleRequest(BaseModel):
    phase: AppPhase


def get_coordinator(request: Request) -> InferenceCoordinator:
    """Get the InferenceCoordinator from app state."""
    return request.app.state.coordinator


def get_liveness(request: Request) -> LivenessSignal:
    return request.app.state.liveness


@router.post(
    "/start",
    response_model=InferenceStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start analysis",
    description="""Cancel any running analysis and start a new one.

    Output is streamed into the status endpoint; the response reflects the
    state right after the start attempt.
    """,
)
async def start_inference(body: StartRequest, request: Request) -> InferenceStatusResponse:
    coordinator = get_coordinator(request)

    prompt = body.prompt
    if prompt is None:
        try:
            prompt = await build_prompt(request.app.state.preference_store, body.extracted_texts)
        except Exception as e:
            logger.error(f"Error building prompt: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error building prompt: {str(e)}"
            )

    await coordinator.start(prompt)
    return coordinator.get_status()


@router.post("/cancel", response_model=InferenceStatusResponse, summary="Cancel analysis")
async def cancel_inference(body: CancelRequest, request: Request) -> InferenceStatusResponse:
    coordinator = get_coordinator(request)
    cancelled = await coordinator.cancel_if_needed(body.reason)
    logger.info(f"Cancel requested ({body.reason}): {'cancelled' if cancelled else 'nothing running'}")
    return coordinator.get_status()


@router.get("/status", response_model=InferenceStatusResponse, summary="Analysis status")
async def get_inference_status(request: Request) -> InferenceStatusResponse:
    return get_coordinator(request).get_status()


@router.post(
    "/lifecycle",
    response_model=InferenceStatusResponse,
    summary="Report app phase",
    description="""Report an application phase change (ACTIVE, INACTIVE, BACKGROUND).

    Leaving ACTIVE cancels the running analysis.
    """,
)
async def report_lifecycle(body: LifecycleRequest, request: Request) -> InferenceStatusResponse:
    get_liveness(request).set_phase(body.phase)
    coordinator = get_coordinator(request)
    if body.phase != AppPhase.ACTIVE:
        await coordinator.wait()
    return coordinator.get_status()
