"""Model provider: download, load, and install ONNX classification models.

Fetches the model and its labels file from HuggingFace, builds an ONNX
InferenceSession, and installs the result into the ``ModelRegistry``. Called
once at startup and again whenever an asset update is signalled; a failed
load leaves the currently installed model in place.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from classifyx.ml.errors import ModelLoadError
from classifyx.ml.model_registry import Model

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.ml.model_registry import ModelRegistry

logger = logging.getLogger(__name__)

DEFAULT_INPUT_SIZE: tuple[int, int] = (224, 224)
VERSION_DIGEST_LENGTH: int = 12


class OnnxModelProvider:
    """Loads ONNX classifiers from the Hub and installs them into a registry."""

    def __init__(self, settings: Settings, registry: ModelRegistry) -> None:
        self._settings = settings
        self._registry = registry
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def load(self, revision: str | None = None) -> Model:
        """Download (if needed) and load the model asset at ``revision``.

        Raises:
            ModelLoadError: If the asset cannot be fetched, parsed, or loaded.
        """
        revision = revision or self._settings.asset_revision
        try:
            model_path = self._download(self._settings.asset_filename, revision)
            labels_path = self._download(self._settings.labels_filename, revision)
            labels = _read_labels(labels_path)
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
            input_meta = session.get_inputs()[0]
            version = _file_digest(model_path)
        except Exception as exc:
            raise ModelLoadError(f"Failed to load {self._settings.asset_repo_id}@{revision}: {exc}") from exc

        model = Model(
            version=version,
            session=session,
            labels=labels,
            input_name=input_meta.name,
            input_size=_input_size(input_meta.shape),
            apply_softmax=self._settings.asset_outputs_logits,
        )
        logger.info(
            "Loaded %s@%s as version %s (%d labels, input %s)",
            self._settings.asset_repo_id,
            revision,
            version,
            len(labels),
            model.input_size,
        )
        return model

    def install(self, revision: str | None = None) -> Model:
        """Load the asset and make it the registry's current model.

        Raises:
            ModelLoadError: If loading fails; the current model is kept.
        """
        model = self.load(revision)
        self._registry.replace(model)
        return model

    def refresh(self, revision: str | None = None) -> Model | None:
        """Like ``install``, but log load failures instead of raising."""
        try:
            return self.install(revision)
        except ModelLoadError:
            logger.exception("Model refresh failed; keeping current model")
            return None

    # -- Internal -----------------------------------------------------------

    def _download(self, filename: str, revision: str) -> Path:
        path = Path(
            hf_hub_download(
                repo_id=self._settings.asset_repo_id,
                filename=filename,
                revision=revision,
                local_dir=str(self._models_dir),
            )
        )
        logger.debug("Fetched %s@%s to %s", filename, revision, path)
        return path

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts


def _read_labels(path: Path) -> tuple[str, ...]:
    lines = path.read_text(encoding="utf-8").splitlines()
    labels = tuple(line.strip() for line in lines if line.strip())
    if not labels:
        raise ValueError(f"Labels file {path.name} is empty")
    return labels


def _file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(1 << 20), b""):
            digest.update(chunk)
    return digest.hexdigest()[:VERSION_DIGEST_LENGTH]


def _input_size(shape: list[int | str | None]) -> tuple[int, int]:
    """Read (height, width) from an NCHW input shape, falling back for dynamic axes."""
    if len(shape) == 4 and isinstance(shape[2], int) and isinstance(shape[3], int):
        return shape[2], shape[3]
    return DEFAULT_INPUT_SIZE
