"""Model registry: the single slot holding the model to classify with right now.

The model provider installs new versions with ``replace`` at any time;
``ClassificationService`` takes a ``current`` snapshot once per request.
Retired models are dropped from the slot and released by reference counting
when the last in-flight request holding them finishes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

IMAGENET_MEAN: tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: tuple[float, float, float] = (0.229, 0.224, 0.225)


class InferenceHandle(Protocol):
    """The part of ``onnxruntime.InferenceSession`` a model needs."""

    def run(self, output_names: Sequence[str] | None, input_feed: Mapping[str, object]) -> list[object]: ...


@dataclass(frozen=True)
class Model:
    """A loaded, ready-to-execute classification model.

    ``labels`` are index-aligned with the model's score output.
    ``input_size`` is (height, width) of the expected input tensor.
    """

    version: str
    session: InferenceHandle
    labels: tuple[str, ...]
    input_name: str = "input"
    input_size: tuple[int, int] = (224, 224)
    mean: tuple[float, float, float] = IMAGENET_MEAN
    std: tuple[float, float, float] = IMAGENET_STD
    apply_softmax: bool = True

    def run(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Execute the model on a (1, 3, H, W) tensor and return flat scores."""
        outputs = self.session.run(None, {self.input_name: tensor})
        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if self.apply_softmax and scores.size and np.all(np.isfinite(scores)):
            shifted = np.exp(scores - scores.max())
            scores = shifted / shifted.sum()
        return scores


class ModelRegistry:
    """Holds at most one active model and notifies subscribers on replacement."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: Model | None = None
        self._observers: list[Callable[[Model], None]] = []

    def current(self) -> Model | None:
        """Return the active model, or None if nothing has been installed."""
        with self._lock:
            return self._current

    def replace(self, model: Model) -> None:
        """Install ``model`` as current, then notify subscribers."""
        with self._lock:
            previous = self._current
            self._current = model
            observers = list(self._observers)

        logger.info(
            "Installed model %s (previous=%s)",
            model.version,
            previous.version if previous is not None else None,
        )
        for observer in observers:
            try:
                observer(model)
            except Exception:
                logger.exception("Model observer %r failed for version %s", observer, model.version)

    def subscribe(self, observer: Callable[[Model], None]) -> Callable[[], None]:
        """Register a "model changed" handler. Returns a function that removes it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe
