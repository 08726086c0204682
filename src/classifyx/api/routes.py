"""API route definitions."""

from __future__ import annotations

import asyncio
import logging
from http import HTTPStatus
from typing import Annotated

from fastapi import APIRouter, Depends, Form, Request, UploadFile, status
from fastapi.responses import JSONResponse

from classifyx.api.dependencies import (
    get_inference_pool,
    get_provider,
    get_registry,
    get_service,
    get_settings,
    verify_api_key,
)
from classifyx.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
    ReloadRequest,
)
from classifyx.ml.errors import (
    InferenceError,
    InvalidInputError,
    ModelLoadError,
    ModelUnavailableError,
)
from classifyx.ml.image_classifier import ClassificationRequest
from classifyx.ml.preprocessing import decode_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        HTTPStatus.REQUEST_ENTITY_TOO_LARGE.value: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with tags",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    orientation: Annotated[int | None, Form(description="EXIF orientation 1-8; overrides the file's")] = None,
    correlation_id: Annotated[str | None, Form()] = None,
) -> ClassifyImageResponse | JSONResponse:
    """Classify an uploaded image and return the top-K tags."""
    settings = get_settings(request)
    service = get_service(request)

    data = await file.read()
    if len(data) > settings.max_file_size:
        return _error(
            HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            f"File is {len(data)} bytes, limit is {settings.max_file_size}",
        )

    try:
        pixels, exif_orientation = await asyncio.to_thread(decode_image, data, settings.max_image_pixels)
        result = await service.classify_async(
            ClassificationRequest(
                image=pixels,
                orientation=orientation if orientation is not None else exif_orientation,
                correlation_id=correlation_id,
            )
        )
    except InvalidInputError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))
    except ModelUnavailableError as exc:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    except InferenceError as exc:
        logger.error("Inference failed for %s: %r", file.filename, exc.cause)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    return ClassifyImageResponse(
        tags=[ImageTag(label=c.label, confidence=c.confidence) for c in result],
        message=result.format(),
        asset_version=result.version,
        correlation_id=result.correlation_id,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings(request)
    pool = get_inference_pool(request)
    model = get_registry(request).current()
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=[model.version] if model is not None else [],
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List installed models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the currently installed model, if any."""
    settings = get_settings(request)
    model = get_registry(request).current()
    if model is None:
        return ModelsResponse(models=[])

    return ModelsResponse(
        models=[
            ModelInfo(
                name=settings.asset_repo_id,
                version=model.version,
                labels=len(model.labels),
                input_size=list(model.input_size),
                status="active",
            )
        ]
    )


@router.post(
    "/models/reload",
    response_model=ModelsResponse,
    responses={status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse}},
    summary="Reload the model asset",
)
async def reload_model(request: Request, body: ReloadRequest | None = None) -> ModelsResponse | JSONResponse:
    """Handle an asset update signal by loading and installing the new model.

    In-flight classifications finish on the model they started with.
    """
    provider = get_provider(request)
    revision = body.revision if body is not None else None
    try:
        await asyncio.to_thread(provider.install, revision)
    except ModelLoadError as exc:
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))
    return await list_models(request)
