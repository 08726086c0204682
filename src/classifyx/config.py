"""Environment-based configuration for ClassifyX."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CropAndScale = Literal["center_crop", "scale_fit", "scale_fill"]


class Settings(BaseSettings):
    """Application settings loaded from CLASSIFYX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLASSIFYX_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model asset
    asset_repo_id: str = "classifyx/image-classifier"
    asset_filename: str = "image_classifier.onnx"
    labels_filename: str = "labels.txt"
    asset_revision: str = "main"
    asset_outputs_logits: bool = True
    models_dir: str = "/data/models"
    load_asset_on_startup: bool = True

    # Ranking and input geometry
    top_k: int = Field(default=2, ge=1)
    crop_and_scale: CropAndScale = "center_crop"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
