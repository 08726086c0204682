"""Classification service: image in, ranked labels out.

``classify`` is called on the event loop (the interactive context). It
validates the request and snapshots the current model right away, hands
inference to the ``InferencePool`` worker threads, and calls ``completion``
back on the event loop. Every failure, including invalid input and a
missing model, is delivered through ``completion``; ``classify`` itself
never raises for them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import numpy as np

from classifyx.ml.errors import (
    ClassificationError,
    InferenceError,
    InvalidInputError,
    ModelUnavailableError,
)
from classifyx.ml.image_classifier import (
    Classification,
    ClassificationRequest,
    ClassificationResult,
    rank_classifications,
)
from classifyx.ml.preprocessing import (
    Orientation,
    apply_orientation,
    crop_and_scale,
    to_input_tensor,
    to_rgb,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from classifyx.config import CropAndScale
    from classifyx.ml.inference import InferencePool
    from classifyx.ml.model_registry import Model, ModelRegistry

    Completion = Callable[[ClassificationResult | None, ClassificationError | None], None]

logger = logging.getLogger(__name__)


class ClassificationService:
    """Runs classification requests against the registry's current model."""

    def __init__(
        self,
        registry: ModelRegistry,
        pool: InferencePool,
        *,
        top_k: int = 2,
        crop_and_scale: CropAndScale = "center_crop",
    ) -> None:
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")
        self._registry = registry
        self._pool = pool
        self._top_k = top_k
        self._crop_and_scale = crop_and_scale
        self._pending: set[asyncio.Task[None]] = set()

    # -- Public API ---------------------------------------------------------

    def classify(self, request: ClassificationRequest, completion: Completion) -> asyncio.Task[None]:
        """Accept a request and return immediately.

        ``completion(result, None)`` or ``completion(None, error)`` is called
        exactly once, later, on the running event loop. The model used is the
        one current at this call, regardless of later replacements.

        Raises:
            RuntimeError: If called without a running event loop.
        """
        loop = asyncio.get_running_loop()
        try:
            model = self._accept(request)
        except ClassificationError as exc:
            task = loop.create_task(self._deliver(completion, request, None, exc))
        else:
            task = loop.create_task(self._run_and_deliver(model, request, completion))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def classify_async(self, request: ClassificationRequest) -> ClassificationResult:
        """Awaitable form of ``classify``.

        Raises:
            InvalidInputError: If the request image or orientation is invalid.
            ModelUnavailableError: If no model is installed.
            InferenceError: If the model fails while executing.
        """
        model = self._accept(request)
        return await self._pool.run(self._classify_with, model, request)

    @property
    def pending_count(self) -> int:
        """Number of accepted requests whose completion has not run yet."""
        return len(self._pending)

    # -- Internal -----------------------------------------------------------

    def _accept(self, request: ClassificationRequest) -> Model:
        _validate(request)
        model = self._registry.current()
        if model is None:
            raise ModelUnavailableError
        return model

    async def _run_and_deliver(
        self,
        model: Model,
        request: ClassificationRequest,
        completion: Completion,
    ) -> None:
        try:
            result = await self._pool.run(self._classify_with, model, request)
        except ClassificationError as exc:
            await self._deliver(completion, request, None, exc)
        except Exception as exc:
            await self._deliver(completion, request, None, InferenceError(exc))
        else:
            await self._deliver(completion, request, result, None)

    async def _deliver(
        self,
        completion: Completion,
        request: ClassificationRequest,
        result: ClassificationResult | None,
        error: ClassificationError | None,
    ) -> None:
        if error is not None:
            logger.warning("Classification failed (correlation_id=%s): %s", request.correlation_id, error)
        try:
            completion(result, error)
        except Exception:
            logger.exception("Classification completion raised (correlation_id=%s)", request.correlation_id)

    def _classify_with(self, model: Model, request: ClassificationRequest) -> ClassificationResult:
        """Blocking inference; runs on an inference worker thread."""
        try:
            upright = apply_orientation(to_rgb(request.image), Orientation(request.orientation))
            fitted = crop_and_scale(upright, model.input_size, self._crop_and_scale)
        except (ValueError, TypeError) as exc:
            raise InvalidInputError(f"Cannot prepare image: {exc}") from exc
        tensor = to_input_tensor(fitted, model.mean, model.std)

        try:
            scores = model.run(tensor)
        except Exception as exc:
            raise InferenceError(exc) from exc

        if scores.shape[0] != len(model.labels):
            cause = ValueError(f"Model {model.version} produced {scores.shape[0]} scores for {len(model.labels)} labels")
            raise InferenceError(cause)
        if not np.all(np.isfinite(scores)):
            raise InferenceError(ValueError(f"Model {model.version} produced non-finite scores"))

        raw = [
            Classification(label=label, confidence=float(np.clip(score, 0.0, 1.0)))
            for label, score in zip(model.labels, scores, strict=True)
        ]
        ranked = rank_classifications(raw, self._top_k)
        logger.debug("Classified with %s: %s", model.version, ranked)
        return ClassificationResult(
            classifications=ranked,
            version=model.version,
            correlation_id=request.correlation_id,
        )


def _validate(request: ClassificationRequest) -> None:
    image = request.image
    if image is None or not isinstance(image, np.ndarray):
        raise InvalidInputError("Request image is missing or not a pixel array")
    if image.size == 0:
        raise InvalidInputError("Request image is empty")
    if image.dtype != np.uint8:
        raise InvalidInputError(f"Request image must be uint8, got {image.dtype}")
    if image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] not in (1, 3, 4)):
        raise InvalidInputError(f"Unsupported image shape {image.shape}")
    try:
        Orientation(request.orientation)
    except ValueError:
        raise InvalidInputError(f"Invalid orientation {request.orientation!r}, expected 1-8") from None
