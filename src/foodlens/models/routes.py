"""REST API routes for model management."""

from fastapi import APIRouter, HTTPException, Request, status

from foodlens.common.logger import create_logger
from foodlens.models.catalog import get_device_memory_gb
from foodlens.models.manager import ModelLifecycleManager
from foodlens.models.types import (
    CatalogEntry,
    CatalogResponse,
    DebugInfoResponse,
    DeleteResponse,
    ModelStatus,
    ModelStatusResponse,
    SelectModelRequest,
)

logger = create_logger(__name__)

router = APIRouter()


def get_model_manager(request: Request) -> ModelLifecycleManager:
    """Get the ModelLifecycleManager from app state."""
    return request.app.state.model_manager


def get_device_memory(request: Request) -> int:
    override = getattr(request.app.state, "device_memory_gb", None)
    return override if override is not None else get_device_memory_gb()


@router.get(
    "/catalog",
    response_model=CatalogResponse,
    summary="List selectable models",
    description="""List every catalog model with its availability on this device.

    A model is available when the device has at least its minimum memory.
    """,
)
async def list_catalog(request: Request) -> CatalogResponse:
    manager = get_model_manager(request)
    memory_gb = get_device_memory(request)
    entries = [
        CatalogEntry(
            model=model,
            available=model.is_available(memory_gb),
            unavailability_reason=model.unavailability_reason(memory_gb),
            selected=model.id == manager.selected_model.id,
        )
        for model in manager.catalog.list_models()
    ]
    return CatalogResponse(device_memory_gb=memory_gb, models=entries)


@router.get(
    "/status",
    response_model=ModelStatusResponse,
    summary="Check selected model status",
    description="""Return the status of the selected model:
    - NOT_DOWNLOADED: No artifact in the store
    - DOWNLOADING: Fetch in progress (includes estimated progress)
    - DOWNLOADED: Artifact on disk, not in memory
    - LOADING: Loading into memory
    - LOADED: Ready for inference
    - ERROR: Download or load failed (includes error_message)
    """,
)
async def get_status(request: Request) -> ModelStatusResponse:
    return get_model_manager(request).get_status()


@router.post(
    "/select",
    response_model=ModelStatusResponse,
    responses={
        404: {"description": "Model is not in the catalog"},
        409: {"description": "Model needs more memory than the device has"},
    },
    summary="Select model",
)
async def select_model(body: SelectModelRequest, request: Request) -> ModelStatusResponse:
    manager = get_model_manager(request)
    model = manager.catalog.get(body.model_id)
    if model is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Model {body.model_id} not found in catalog",
        )

    memory_gb = get_device_memory(request)
    if not model.is_available(memory_gb):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=model.unavailability_reason(memory_gb),
        )

    await manager.select_model(model)
    logger.info(f"Selected model {model.id}")
    return manager.get_status()


@router.post(
    "/download",
    response_model=ModelStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start model download",
    description="""Start downloading the selected model in the background.

    Ignored while the model is downloading, loading or loaded; track progress
    with the status endpoint.
    """,
)
async def download_model(request: Request) -> ModelStatusResponse:
    manager = get_model_manager(request)
    try:
        await manager.download()
        return manager.get_status()
    except Exception as e:
        logger.error(f"Error starting download: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error starting download: {str(e)}"
        )


@router.post(
    "/download/cancel",
    response_model=ModelStatusResponse,
    summary="Cancel model download",
)
async def cancel_download(request: Request) -> ModelStatusResponse:
    manager = get_model_manager(request)
    await manager.cancel_download()
    return manager.get_status()


@router.post("/load", response_model=ModelStatusResponse, summary="Load model into memory")
async def load_model(request: Request) -> ModelStatusResponse:
    manager = get_model_manager(request)
    await manager.load()
    return manager.get_status()


@router.post("/unload", response_model=ModelStatusResponse, summary="Unload model from memory")
async def unload_model(request: Request) -> ModelStatusResponse:
    manager = get_model_manager(request)
    await manager.unload()
    return manager.get_status()


@router.post("/reload", response_model=ModelStatusResponse, summary="Reload model")
async def reload_model(request: Request) -> ModelStatusResponse:
    manager = get_model_manager(request)
    await manager.reload()
    if manager.status == ModelStatus.ERROR:
        logger.warning(f"Reload failed: {manager.get_status().error_message}")
    return manager.get_status()


@router.delete(
    "",
    response_model=DeleteResponse,
    summary="Delete model files",
    description="""Unload the selected model and remove its files from every known
    cache location. Cancels an ongoing download first.

    Returns "deleted" when files were found, otherwise "nothing_to_delete".
    """,
)
async def delete_model(request: Request) -> DeleteResponse:
    manager = get_model_manager(request)
    try:
        result = await manager.delete()
        logger.info(f"Model {manager.selected_model.id} {result}")
        return DeleteResponse(status=result, model_id=manager.selected_model.id)
    except Exception as e:
        logger.error(f"Error deleting model: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error deleting model: {str(e)}"
        )


@router.get(
    "/debug",
    response_model=DebugInfoResponse,
    summary="Inspect model storage",
    description="""Report what is on disk for the selected model.

    Lists every candidate location with whether it exists, whether it holds a
    complete artifact and the files found there (sizes included), together with
    the most recent life-cycle events.
    """,
)
async def get_debug_info(request: Request) -> DebugInfoResponse:
    manager = get_model_manager(request)
    try:
        return manager.get_debug_info()
    except Exception as e:
        logger.error(f"Error collecting debug info: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error collecting debug info: {str(e)}"
        )
