"""Pydantic request/response schemas for the ClassifyX API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    tags: list[ImageTag] = Field(description="Top-K tags, highest confidence first")
    message: str = Field(description="Tags rendered one per line, e.g. '  (0.910) cat'")
    asset_version: str | None = Field(default=None, description="Version of the model that produced the tags")
    correlation_id: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about the installed classification model."""

    name: str
    version: str
    labels: int = Field(description="Number of class labels")
    input_size: list[int] = Field(description="Input geometry as [height, width]")
    status: str = Field(description="Model status: 'active'")


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ReloadRequest(BaseModel):
    """Asset update signal: load the given revision (or the configured one)."""

    revision: str | None = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
