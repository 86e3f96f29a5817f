from __future__ import annotations

import random
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

import numpy as np


FEATURE_NAMES: tuple[str, ...] = (
    "temperature",
    "humidity",
    "wind_speed",
    "drought_index",
    "vegetation_density",
)
# Assumed maxima: 50 °C, 100 %, 100 km/h, drought index 10, 100 % cover.
FEATURE_MAXIMA: tuple[float, ...] = (50.0, 100.0, 100.0, 10.0, 100.0)

PRIMARY_WEIGHTS: tuple[float, ...] = (0.30, -0.20, 0.15, 0.25, 0.10)
TERTIARY_WEIGHTS: tuple[float, ...] = (0.35, -0.25, 0.20, 0.30, 0.15)
ENSEMBLE_WEIGHTS: tuple[float, ...] = (0.4, 0.3, 0.3)

PRIMARY_MODEL = "weighted_sum_v1"
SECONDARY_MODEL = "random_forest_v1"
TERTIARY_MODEL = "xgboost_v1"
ENSEMBLE_MODEL = "ensemble"
MODEL_VERSION = "1.0.0"


@dataclass(frozen=True)
class WildfireInput:
    temperature: float
    humidity: float
    wind_speed: float
    drought_index: float
    vegetation_density: float

    def as_vector(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in FEATURE_NAMES], dtype=np.float64)


@dataclass(frozen=True)
class PredictionResult:
    risk_score: float
    confidence_score: float
    model: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _clamp01(value: float) -> float:
    # np.clip keeps NaN as NaN instead of snapping it to a bound.
    return float(np.clip(value, 0.0, 1.0))


def combine(results: Sequence[PredictionResult], weights: Sequence[float] = ENSEMBLE_WEIGHTS) -> tuple[float, float]:
    """Weighted sum of component risk and confidence scores, without re-clamping."""
    if len(results) != len(weights):
        raise ValueError(f"Expected {len(weights)} component results; got {len(results)}")
    risk_score = float(sum(result.risk_score * weight for result, weight in zip(results, weights)))
    confidence_score = float(sum(result.confidence_score * weight for result, weight in zip(results, weights)))
    return risk_score, confidence_score


class RiskEnsembleEstimator:
    def __init__(
        self,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def normalize(self, data: WildfireInput) -> np.ndarray:
        return data.as_vector() / np.array(FEATURE_MAXIMA, dtype=np.float64)

    def primary_model(self, data: WildfireInput) -> PredictionResult:
        raw = float(np.dot(self.normalize(data), PRIMARY_WEIGHTS))
        return PredictionResult(
            risk_score=_clamp01(raw),
            confidence_score=0.85 + self.rng.random() * 0.1,
            model=PRIMARY_MODEL,
            metadata={
                "input_features": asdict(data),
                "timestamp": self._timestamp(),
                "model_version": MODEL_VERSION,
            },
        )

    def secondary_model(self, data: WildfireInput) -> PredictionResult:
        base_score = float(np.mean(self.normalize(data)))
        jitter = self.rng.random() * 0.1 - 0.05
        return PredictionResult(
            risk_score=_clamp01(base_score + jitter),
            confidence_score=0.85,
            model=SECONDARY_MODEL,
            metadata=self._component_metadata(data),
        )

    def tertiary_model(self, data: WildfireInput) -> PredictionResult:
        raw = float(np.dot(self.normalize(data), TERTIARY_WEIGHTS))
        return PredictionResult(
            risk_score=_clamp01(raw),
            confidence_score=0.88,
            model=TERTIARY_MODEL,
            metadata=self._component_metadata(data),
        )

    def ensemble(self, data: WildfireInput) -> PredictionResult:
        # Components are independent and cheap; evaluating them in order keeps rng draws reproducible.
        components = (
            self.primary_model(data),
            self.secondary_model(data),
            self.tertiary_model(data),
        )
        risk_score, confidence_score = combine(components, ENSEMBLE_WEIGHTS)
        return PredictionResult(
            risk_score=risk_score,
            confidence_score=confidence_score,
            model=ENSEMBLE_MODEL,
            metadata={
                "models": [component.model for component in components],
                "individual_predictions": [component.to_dict() for component in components],
                "weights": list(ENSEMBLE_WEIGHTS),
            },
        )

    def _component_metadata(self, data: WildfireInput) -> dict[str, Any]:
        return {
            "features": [[name, getattr(data, name)] for name in FEATURE_NAMES],
            "timestamp": self._timestamp(),
        }

    def _timestamp(self) -> str:
        return self.clock().isoformat()
