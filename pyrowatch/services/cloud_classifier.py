from __future__ import annotations

import base64
import binascii
import enum
import io
import logging
import math
import random
import threading
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Sequence

import numpy as np
from PIL import Image, UnidentifiedImageError

from pyrowatch.core.errors import (
    AnalysisFailed,
    ImageLoadError,
    ModelLoadFailure,
    ModelLoadTimeout,
    ModelNotInitialized,
    PreprocessingError,
)
from pyrowatch.providers.model_sources import ImageModel, ModelSource


LOGGER = logging.getLogger(__name__)

IMAGE_SIZE = 224
CHANNELS = 3
PYRO_TYPE_THRESHOLD = 0.6


class CloudType(str, enum.Enum):
    NORMAL = "normal"
    PYRO = "pyro"


class RiskLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Ordered from the highest threshold down; LOW's 0.3 is nominal since it is the floor.
RISK_THRESHOLDS: tuple[tuple[RiskLevel, float], ...] = (
    (RiskLevel.HIGH, 0.8),
    (RiskLevel.MEDIUM, 0.6),
    (RiskLevel.LOW, 0.3),
)

WEATHER_PREDICTIONS: dict[CloudType, tuple[str, ...]] = {
    CloudType.NORMAL: (
        "Clear conditions expected",
        "Light precipitation possible",
        "Moderate rainfall expected",
    ),
    CloudType.PYRO: (
        "Potential for dry lightning",
        "High risk of fire-triggered storms",
        "Severe convective activity likely",
    ),
}


class LoadPhase(str, enum.Enum):
    UNLOADED = "unloaded"
    LOADING_PRIMARY = "loading_primary"
    LOADING_FALLBACK = "loading_fallback"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True)
class ModelLoadState:
    phase: LoadPhase
    source: str | None = None
    error: str | None = None

    @property
    def is_loaded(self) -> bool:
        return self.phase is LoadPhase.LOADED

    @property
    def is_loading(self) -> bool:
        return self.phase in (LoadPhase.LOADING_PRIMARY, LoadPhase.LOADING_FALLBACK)


@dataclass(frozen=True)
class ClassificationResult:
    type: CloudType
    confidence: float
    prediction: str
    risk: RiskLevel
    estimated_time: str


def classify_cloud_type(confidence: float) -> CloudType:
    return CloudType.PYRO if confidence > PYRO_TYPE_THRESHOLD else CloudType.NORMAL


def get_risk_level(confidence: float) -> RiskLevel:
    for level, threshold in RISK_THRESHOLDS[:-1]:
        if confidence >= threshold:
            return level
    return RiskLevel.LOW


def get_prediction(cloud_type: CloudType, confidence: float) -> str:
    predictions = WEATHER_PREDICTIONS[cloud_type]
    index = min(math.floor(confidence * len(predictions)), len(predictions) - 1)
    return predictions[max(index, 0)]


def format_clock(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {suffix}"


def estimate_time(now: datetime, rng: random.Random) -> str:
    """Advisory only: a random 1-3 hour offset, not derived from the image."""
    return format_clock(now + timedelta(hours=rng.randint(1, 3)))


def decode_image_payload(image: str | bytes) -> bytes:
    if isinstance(image, (bytes, bytearray)):
        raw = bytes(image)
    elif isinstance(image, str):
        payload = image.strip()
        if payload.startswith("data:"):
            header, sep, payload = payload.partition(",")
            if not sep or ";base64" not in header:
                raise ImageLoadError("Failed to load image: unsupported data URI")
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ImageLoadError(f"Failed to load image: {exc}") from exc
    else:
        raise ImageLoadError(f"Failed to load image: unsupported payload type {type(image).__name__}")

    if not raw:
        raise ImageLoadError("Failed to load image: empty payload")
    return raw


def preprocess_image(image: Image.Image) -> np.ndarray:
    """RGB, 224x224 bilinear, float32 in [0, 1], with a leading batch axis."""
    try:
        with ExitStack() as stack:
            rgb = image.convert("RGB")
            stack.callback(rgb.close)
            resized = rgb.resize((IMAGE_SIZE, IMAGE_SIZE), Image.Resampling.BILINEAR)
            stack.callback(resized.close)
            pixels = np.asarray(resized, dtype=np.float32) / 255.0
        return np.expand_dims(pixels, axis=0)
    except (OSError, ValueError) as exc:
        raise PreprocessingError(f"Failed to process image: {exc}") from exc


@dataclass
class _LoadAttempt:
    done: threading.Event = field(default_factory=threading.Event)
    error: ModelLoadFailure | None = None


class CloudClassifier:
    """Handle around one image model with single-flight primary/fallback loading.

    Construct once and share between request handlers; the loaded model is
    read-only after load and safe to use from concurrent calls.

    Loading runs on a background thread. Every ``load_model`` caller, including
    the one that started the attempt, waits on it for at most ``timeout``
    seconds; an attempt that outlives the timeout keeps running and later
    callers join it.
    """

    def __init__(
        self,
        *,
        sources: Sequence[ModelSource],
        rng: random.Random | None = None,
        now: Callable[[], datetime] = datetime.now,
        load_timeout_seconds: float | None = None,
    ):
        if not sources:
            raise ValueError("sources cannot be empty")
        self.sources = list(sources)
        self.rng = rng or random.Random()
        self.now = now
        self.load_timeout_seconds = load_timeout_seconds
        self._model: ImageModel | None = None
        self._state = ModelLoadState(phase=LoadPhase.UNLOADED)
        self._lock = threading.Lock()
        self._in_flight: _LoadAttempt | None = None

    def status(self) -> ModelLoadState:
        with self._lock:
            return self._state

    def load_model(self, *, timeout: float | None = None) -> None:
        with self._lock:
            if self._state.is_loaded:
                return
            attempt = self._in_flight
            if attempt is None:
                attempt = self._in_flight = _LoadAttempt()
                self._state = ModelLoadState(phase=LoadPhase.LOADING_PRIMARY)
                threading.Thread(
                    target=self._run_attempt,
                    args=(attempt,),
                    name="cloud-model-load",
                    daemon=True,
                ).start()
            else:
                LOGGER.debug("event=classifier.load.join timeout=%s", timeout)

        self._wait_for(attempt, timeout)

    def _run_attempt(self, attempt: _LoadAttempt) -> None:
        settled = False
        try:
            model, source_name = self._load_from_sources()
        except ModelLoadFailure as exc:
            with self._lock:
                attempt.error = exc
                self._state = ModelLoadState(phase=LoadPhase.FAILED, error=str(exc))
            settled = True
        else:
            with self._lock:
                self._model = model
                self._state = ModelLoadState(phase=LoadPhase.LOADED, source=source_name)
            settled = True
        finally:
            with self._lock:
                if not settled:
                    attempt.error = ModelLoadFailure("Model load interrupted")
                    self._state = ModelLoadState(phase=LoadPhase.FAILED, error=str(attempt.error))
                self._in_flight = None
            attempt.done.set()

    def _wait_for(self, attempt: _LoadAttempt, timeout: float | None) -> None:
        if not attempt.done.wait(timeout):
            raise ModelLoadTimeout(f"Timed out after {timeout}s waiting for model load")
        if attempt.error is not None:
            raise ModelLoadFailure(str(attempt.error)) from attempt.error

    def _load_from_sources(self) -> tuple[ImageModel, str]:
        for index, source in enumerate(self.sources):
            if index > 0:
                with self._lock:
                    self._state = ModelLoadState(phase=LoadPhase.LOADING_FALLBACK)
            try:
                model = source.load()
            except Exception:
                LOGGER.warning("Error loading model source=%s, trying next source", source.name, exc_info=True)
                continue
            LOGGER.info("Cloud detection model loaded from source=%s", source.name)
            return model, source.name

        raise ModelLoadFailure("Failed to load both primary and fallback models")

    def analyze_image(self, image: str | bytes) -> ClassificationResult:
        try:
            return self._analyze(image)
        except AnalysisFailed:
            raise
        except Exception as exc:
            raise AnalysisFailed(f"Analysis failed: {exc}") from exc

    def _analyze(self, image: str | bytes) -> ClassificationResult:
        if not self.status().is_loaded:
            self.load_model(timeout=self.load_timeout_seconds)

        with self._lock:
            model = self._model
        if model is None:
            raise ModelNotInitialized("Model not initialized")

        raw = decode_image_payload(image)
        with ExitStack() as stack:
            try:
                decoded = Image.open(io.BytesIO(raw))
                stack.callback(decoded.close)
                decoded.load()
            except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as exc:
                raise ImageLoadError(f"Failed to load image: {exc}") from exc

            batch = preprocess_image(decoded)
            probabilities = np.asarray(model.predict(batch), dtype=np.float64).reshape(-1)
            if probabilities.size == 0:
                raise ValueError("Model returned an empty probability vector")
            confidence = float(probabilities[int(np.argmax(probabilities))])

        cloud_type = classify_cloud_type(confidence)
        result = ClassificationResult(
            type=cloud_type,
            confidence=round(min(max(confidence, 0.0), 1.0) * 100, 2),
            prediction=get_prediction(cloud_type, confidence),
            risk=get_risk_level(confidence),
            estimated_time=estimate_time(self.now(), self.rng),
        )
        LOGGER.debug(
            "event=classifier.analyzed type=%s confidence=%.2f risk=%s",
            result.type.value,
            result.confidence,
            result.risk.value,
        )
        return result
