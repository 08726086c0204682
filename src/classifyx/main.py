"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from classifyx.ml.model_registry import Model

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classifyx.api.routes import router
from classifyx.config import get_settings
from classifyx.ml.classification_service import ClassificationService
from classifyx.ml.inference import InferencePool
from classifyx.ml.model_provider import OnnxModelProvider
from classifyx.ml.model_registry import ModelRegistry

logger = logging.getLogger(__name__)


def _log_model_change(model: Model) -> None:
    logger.info("Active model is now %s (%d labels)", model.version, len(model.labels))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: wire components on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ClassifyX (device=%s, max_concurrent=%s, asset=%s@%s, top_k=%s, crop_and_scale=%s)",
        settings.device,
        settings.max_concurrent,
        settings.asset_repo_id,
        settings.asset_revision,
        settings.top_k,
        settings.crop_and_scale,
    )

    registry = ModelRegistry()
    unsubscribe = registry.subscribe(_log_model_change)
    inference_pool = InferencePool(settings.max_concurrent)
    app.state.model_registry = registry
    app.state.inference_pool = inference_pool
    app.state.classification_service = ClassificationService(
        registry,
        inference_pool,
        top_k=settings.top_k,
        crop_and_scale=settings.crop_and_scale,
    )
    provider = OnnxModelProvider(settings, registry)
    app.state.model_provider = provider

    initial_load: asyncio.Task[Model | None] | None = None
    if settings.load_asset_on_startup:
        # Requests get 503 until the first model is installed.
        initial_load = asyncio.create_task(asyncio.to_thread(provider.refresh))

    logger.info("ClassifyX ready")
    yield

    logger.info("Shutting down ClassifyX")
    if initial_load is not None and not initial_load.done():
        await initial_load
    unsubscribe()
    inference_pool.shutdown()
    logger.info("ClassifyX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyX",
        description="Image classification API with hot-swappable ONNX models",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn using CLASSIFYX_HOST / CLASSIFYX_PORT."""
    settings = get_settings()
    uvicorn.run("classifyx.main:app", host=settings.host, port=settings.port)
