from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from foodlens.common.logger import create_logger
from foodlens.config import Settings
from foodlens.inference.coordinator import InferenceCoordinator
from foodlens.inference.engine import GenerationEngine, ModelLoader
from foodlens.inference.liveness import ExtendedExecutionHost, LivenessSignal
from foodlens.inference.routes import router as inference_router
from foodlens.models.catalog import ModelCatalog
from foodlens.models.locator import ArtifactLocator
from foodlens.models.manager import ModelLifecycleManager
from foodlens.models.routes import router as models_router
from foodlens.preferences import PreferenceStore
from foodlens.preferences_routes import router as preferences_router

logger = create_logger(__name__)

SHUTDOWN_REASON = "Service shutting down."


def _default_backend(settings: Settings):
    # torch is only imported when no backend is injected
    from foodlens.inference.hf_backend import TransformersEngine, TransformersModelLoader

    return (
        TransformersModelLoader(device=settings.device),
        TransformersEngine(max_new_tokens=settings.max_new_tokens),
    )


def create_app(
    settings: Optional[Settings] = None,
    loader: Optional[ModelLoader] = None,
    engine: Optional[GenerationEngine] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal loader, engine
        logger.info(f"Cache directory: {settings.cache_dir}")
        logger.info(f"Database path: {settings.db_path}")

        store = PreferenceStore(settings.db_path)
        await store.initialize()

        if loader is None or engine is None:
            default_loader, default_engine = _default_backend(settings)
            loader = loader or default_loader
            engine = engine or default_engine

        manager = ModelLifecycleManager(
            loader=loader,
            settings=settings,
            catalog=ModelCatalog(),
            locator=ArtifactLocator(settings.cache_dir),
            store=store,
        )
        await manager.initialize()

        liveness = LivenessSignal()
        host = ExtendedExecutionHost(grant_seconds=settings.background_grant_seconds)
        coordinator = InferenceCoordinator(manager, engine, liveness, host, settings=settings)

        app.state.settings = settings
        app.state.preference_store = store
        app.state.model_manager = manager
        app.state.liveness = liveness
        app.state.coordinator = coordinator
        app.state.device_memory_gb = settings.device_memory_gb

        yield

        await coordinator.cancel_if_needed(SHUTDOWN_REASON)
        coordinator.close()
        await manager.cancel_download()
        await manager.unload()
        logger.info("Shutdown complete")

    app = FastAPI(title="FoodLens", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(models_router, prefix="/api/models", tags=["models"])
    app.include_router(inference_router, prefix="/api/inference", tags=["inference"])
    app.include_router(preferences_router, prefix="/api/preferences", tags=["preferences"])
    return app


def main():
    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
