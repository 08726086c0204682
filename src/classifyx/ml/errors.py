"""Error taxonomy for classification and model loading.

Every classification failure is recoverable: it is reported to the caller
and the service stays usable for the next request.
"""

from __future__ import annotations


class ClassificationError(Exception):
    """Base class for failures reported through the classification channel."""


class InvalidInputError(ClassificationError):
    """The request image is missing, empty, or cannot be decoded."""


class ModelUnavailableError(ClassificationError):
    """No model has been installed yet."""

    def __init__(self, message: str = "No classification model is installed") -> None:
        super().__init__(message)


class InferenceError(ClassificationError):
    """The model failed while executing. The underlying error is kept as ``cause``."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Inference failed: {cause}")
        self.cause = cause


class ModelLoadError(Exception):
    """A model asset could not be downloaded or loaded."""
