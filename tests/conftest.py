"""Shared test doubles: a scripted inference session and a model factory."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping, Sequence

import numpy as np
import pytest

from classifyx.ml.model_registry import Model


class FakeSession:
    """Stands in for ``onnxruntime.InferenceSession``.

    Returns fixed scores, optionally raises, and can block until released so
    tests can hold an inference in flight.
    """

    def __init__(
        self,
        scores: Sequence[float],
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.scores = np.asarray(scores, dtype=np.float32)
        self.error = error
        self.gate = gate
        self.started = threading.Event()
        self.feeds: list[Mapping[str, object]] = []
        self.threads: list[int] = []

    def run(self, output_names: Sequence[str] | None, input_feed: Mapping[str, object]) -> list[object]:
        self.feeds.append(input_feed)
        self.threads.append(threading.get_ident())
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return [self.scores.reshape(1, -1)]


ModelFactory = Callable[..., Model]


@pytest.fixture()
def make_model() -> ModelFactory:
    """Build a model from (label, score) pairs with probabilities passed through."""

    def factory(
        pairs: Sequence[tuple[str, float]],
        version: str = "v1",
        *,
        apply_softmax: bool = False,
        input_size: tuple[int, int] = (8, 8),
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ) -> Model:
        labels = tuple(label for label, _ in pairs)
        session = FakeSession([score for _, score in pairs], error=error, gate=gate)
        return Model(
            version=version,
            session=session,
            labels=labels,
            input_size=input_size,
            apply_softmax=apply_softmax,
        )

    return factory


@pytest.fixture()
def rgb_image() -> np.ndarray:
    """A small non-square RGB image with distinct pixel values."""
    return np.arange(6 * 10 * 3, dtype=np.uint8).reshape(6, 10, 3)
