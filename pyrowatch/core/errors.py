from __future__ import annotations


class PyroWatchError(Exception):
    """Base class for errors raised by the classification and scoring services."""


class ModelLoadFailure(PyroWatchError):
    """Neither the primary nor the fallback model artifact could be loaded."""


class ModelLoadTimeout(ModelLoadFailure):
    """Waiting on an in-flight model load exceeded the caller's timeout."""


class ModelNotInitialized(PyroWatchError):
    pass


class ImageLoadError(PyroWatchError):
    """The image payload could not be decoded."""


class PreprocessingError(PyroWatchError):
    pass


class AnalysisFailed(PyroWatchError):
    """Umbrella error for any failure inside ``CloudClassifier.analyze_image``.

    The specific failure is always chained as ``__cause__``.
    """
