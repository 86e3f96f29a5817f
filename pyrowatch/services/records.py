from __future__ import annotations

from dataclasses import asdict
from typing import Any

from sqlalchemy.orm import Session

from pyrowatch.db import queries
from pyrowatch.db.models import Detection, MonitoringLocation, WildfirePrediction
from pyrowatch.services.cloud_classifier import ClassificationResult
from pyrowatch.services.risk_ensemble import PredictionResult, WildfireInput


def record_detection(
    db: Session,
    *,
    result: ClassificationResult,
    lat: float,
    lon: float,
    image_url: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Detection:
    details = {"estimated_time": result.estimated_time}
    details.update(metadata or {})
    return queries.insert_detection(
        db,
        lat=lat,
        lon=lon,
        cloud_type=result.type.value,
        confidence_score=result.confidence,
        risk_level=result.risk.value,
        prediction=result.prediction,
        image_url=image_url,
        metadata=details,
    )


def record_wildfire_prediction(
    db: Session,
    *,
    data: WildfireInput,
    result: PredictionResult,
    location: MonitoringLocation | None = None,
) -> WildfirePrediction:
    return queries.insert_wildfire_prediction(
        db,
        location_id=None if location is None else location.id,
        risk_score=result.risk_score,
        confidence_score=result.confidence_score,
        prediction_model=result.model,
        metadata=result.metadata,
        **asdict(data),
    )
