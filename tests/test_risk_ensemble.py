from __future__ import annotations

import math
import random
from datetime import datetime, timezone

import pytest

from pyrowatch.services.risk_ensemble import (
    ENSEMBLE_WEIGHTS,
    PredictionResult,
    RiskEnsembleEstimator,
    WildfireInput,
    combine,
)


FIXED_NOW = datetime(2026, 7, 4, 12, 0, tzinfo=timezone.utc)


def _estimator(seed: int = 11) -> RiskEnsembleEstimator:
    return RiskEnsembleEstimator(rng=random.Random(seed), clock=lambda: FIXED_NOW)


def _maxed_input() -> WildfireInput:
    return WildfireInput(temperature=50, humidity=100, wind_speed=100, drought_index=10, vegetation_density=100)


def _half_input() -> WildfireInput:
    return WildfireInput(temperature=25, humidity=50, wind_speed=50, drought_index=5, vegetation_density=50)


def test_normalize_divides_by_assumed_maxima() -> None:
    assert _estimator().normalize(_maxed_input()).tolist() == [1.0, 1.0, 1.0, 1.0, 1.0]


def test_normalize_does_not_clamp_out_of_range_values() -> None:
    data = WildfireInput(temperature=100, humidity=-10, wind_speed=0, drought_index=0, vegetation_density=0)

    normalized = _estimator().normalize(data)

    assert normalized[0] == pytest.approx(2.0)
    assert normalized[1] == pytest.approx(-0.1)


def test_primary_model_weighted_sum_and_jittered_confidence() -> None:
    result = _estimator(seed=3).primary_model(_maxed_input())

    assert result.risk_score == pytest.approx(0.60)
    assert result.confidence_score == pytest.approx(0.85 + random.Random(3).random() * 0.1)
    assert 0.85 <= result.confidence_score < 0.95
    assert result.model == "weighted_sum_v1"
    assert result.metadata["timestamp"] == FIXED_NOW.isoformat()
    assert result.metadata["input_features"]["temperature"] == 50


def test_primary_model_clamps_negative_scores_to_zero() -> None:
    data = WildfireInput(temperature=0, humidity=100, wind_speed=0, drought_index=0, vegetation_density=0)

    assert _estimator().primary_model(data).risk_score == 0.0


def test_secondary_model_mean_with_symmetric_jitter() -> None:
    result = _estimator(seed=5).secondary_model(_half_input())
    jitter = random.Random(5).random() * 0.1 - 0.05

    assert result.risk_score == pytest.approx(0.5 + jitter)
    assert abs(result.risk_score - 0.5) <= 0.05
    assert result.confidence_score == 0.85
    assert result.model == "random_forest_v1"


def test_secondary_model_clamps_to_one() -> None:
    data = WildfireInput(temperature=100, humidity=200, wind_speed=200, drought_index=20, vegetation_density=200)

    assert _estimator().secondary_model(data).risk_score == 1.0


def test_tertiary_model_uses_second_weight_vector() -> None:
    result = _estimator().tertiary_model(_maxed_input())

    assert result.risk_score == pytest.approx(0.75)
    assert result.confidence_score == 0.88
    assert result.model == "xgboost_v1"


def test_ensemble_weights_sum_to_one() -> None:
    assert sum(ENSEMBLE_WEIGHTS) == pytest.approx(1.0)


def test_combine_fixed_component_scores() -> None:
    components = [
        PredictionResult(risk_score=0.5, confidence_score=0.9, model="a"),
        PredictionResult(risk_score=0.6, confidence_score=0.85, model="b"),
        PredictionResult(risk_score=0.4, confidence_score=0.88, model="c"),
    ]

    risk_score, confidence_score = combine(components)

    assert risk_score == pytest.approx(0.5)
    assert confidence_score == pytest.approx(0.4 * 0.9 + 0.3 * 0.85 + 0.3 * 0.88)


def test_combine_rejects_mismatched_lengths() -> None:
    with pytest.raises(ValueError):
        combine([PredictionResult(risk_score=0.5, confidence_score=0.9, model="a")])


def test_ensemble_matches_components_drawn_in_order() -> None:
    data = _half_input()
    reference = _estimator(seed=21)
    components = [reference.primary_model(data), reference.secondary_model(data), reference.tertiary_model(data)]
    expected_risk, expected_confidence = combine(components)

    result = _estimator(seed=21).ensemble(data)

    assert result.model == "ensemble"
    assert result.risk_score == pytest.approx(expected_risk)
    assert result.confidence_score == pytest.approx(expected_confidence)
    assert result.metadata["models"] == ["weighted_sum_v1", "random_forest_v1", "xgboost_v1"]
    assert result.metadata["weights"] == [0.4, 0.3, 0.3]
    assert len(result.metadata["individual_predictions"]) == 3
    assert result.metadata["individual_predictions"][2]["risk_score"] == pytest.approx(components[2].risk_score)
    assert 0.0 <= result.risk_score <= 1.0


def test_nan_input_propagates_without_error() -> None:
    data = WildfireInput(
        temperature=float("nan"),
        humidity=40,
        wind_speed=10,
        drought_index=5,
        vegetation_density=60,
    )

    result = _estimator().ensemble(data)

    assert math.isnan(result.risk_score)
    assert not math.isnan(result.confidence_score)
