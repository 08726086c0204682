"""Classification request/result types and result ranking."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, overload

from classifyx.ml.preprocessing import Orientation

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    import numpy as np
    from numpy.typing import NDArray


@dataclass(frozen=True)
class Classification:
    """A single classification prediction."""

    label: str
    confidence: float

    def format(self) -> str:
        """Render as e.g. ``  (0.375) cliff, drop, drop-off``."""
        return f"  ({self.confidence:.3f}) {self.label}"


@dataclass(frozen=True)
class ClassificationRequest:
    """Input bundle for one classification call.

    ``image`` is an HxW, HxWx1, HxWx3 or HxWx4 uint8 array of stored pixels;
    ``orientation`` is the EXIF code describing how to make them upright.
    """

    image: NDArray[np.uint8]
    orientation: Orientation | int = Orientation.UP
    correlation_id: str | None = None


@dataclass(frozen=True)
class ClassificationResult(Sequence[Classification]):
    """Top-K classifications, highest confidence first."""

    classifications: tuple[Classification, ...] = ()
    version: str | None = None
    correlation_id: str | None = None

    @overload
    def __getitem__(self, index: int) -> Classification: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Classification, ...]: ...

    def __getitem__(self, index: int | slice) -> Classification | tuple[Classification, ...]:
        return self.classifications[index]

    def __len__(self) -> int:
        return len(self.classifications)

    def __iter__(self) -> Iterator[Classification]:
        return iter(self.classifications)

    def format(self) -> str:
        """One line per classification, as shown to the user."""
        return "\n".join(classification.format() for classification in self.classifications)


def rank_classifications(raw: Iterable[Classification], top_k: int) -> tuple[Classification, ...]:
    """Sort by confidence (descending, ties keep input order) and keep the first ``top_k``."""
    if top_k < 1:
        raise ValueError(f"top_k must be >= 1, got {top_k}")
    ranked = sorted(raw, key=lambda classification: classification.confidence, reverse=True)
    return tuple(ranked[:top_k])
