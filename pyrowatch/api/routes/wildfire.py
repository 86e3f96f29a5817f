from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pyrowatch.api.deps import get_estimator
from pyrowatch.core.config import get_settings
from pyrowatch.db.engine import get_db
from pyrowatch.db.models import WildfirePrediction
from pyrowatch.db.queries import (
    get_location_by_location_id,
    list_high_risk_predictions,
    list_recent_wildfire_predictions,
)
from pyrowatch.schemas.api import (
    WildfirePredictionItem,
    WildfirePredictionResponse,
    WildfirePredictionsResponse,
    WildfirePredictRequest,
)
from pyrowatch.services.locations import adjust_for_location
from pyrowatch.services.records import record_wildfire_prediction
from pyrowatch.services.risk_ensemble import RiskEnsembleEstimator, WildfireInput


router = APIRouter(prefix="/wildfire", tags=["wildfire"])
LOGGER = logging.getLogger(__name__)


def _to_item(row: WildfirePrediction) -> WildfirePredictionItem:
    return WildfirePredictionItem(
        id=row.id,
        location_id=row.location.location_id if row.location is not None else None,
        location_name=row.location.name if row.location is not None else None,
        temperature=row.temperature,
        humidity=row.humidity,
        wind_speed=row.wind_speed,
        drought_index=row.drought_index,
        vegetation_density=row.vegetation_density,
        risk_score=row.risk_score,
        confidence_score=row.confidence_score,
        prediction_model=row.prediction_model,
        metadata=row.details or {},
        created_at=row.created_at,
    )


@router.post("/predict", response_model=WildfirePredictionResponse)
def predict_wildfire_risk(
    payload: WildfirePredictRequest,
    estimator: RiskEnsembleEstimator = Depends(get_estimator),
    db: Session = Depends(get_db),
) -> WildfirePredictionResponse:
    LOGGER.debug(
        "event=api.wildfire_predict.request location_id=%s persist=%s",
        payload.location_id,
        payload.persist,
    )
    location = None
    if payload.location_id is not None:
        location = get_location_by_location_id(db, payload.location_id)
        if location is None:
            raise HTTPException(status_code=404, detail=f"Unknown location_id={payload.location_id}")

    data = WildfireInput(
        temperature=payload.temperature,
        humidity=payload.humidity,
        wind_speed=payload.wind_speed,
        drought_index=payload.drought_index,
        vegetation_density=payload.vegetation_density,
    )
    result = estimator.ensemble(data)
    if location is not None:
        result = adjust_for_location(result, location)

    prediction_id = None
    if payload.persist:
        prediction_id = record_wildfire_prediction(db, data=data, result=result, location=location).id

    LOGGER.debug(
        "event=api.wildfire_predict.response risk_score=%.6f confidence_score=%.6f prediction_id=%s",
        result.risk_score,
        result.confidence_score,
        prediction_id,
    )
    return WildfirePredictionResponse(
        risk_score=result.risk_score,
        confidence_score=result.confidence_score,
        model=result.model,
        metadata=result.metadata,
        location_id=payload.location_id,
        prediction_id=prediction_id,
    )


@router.get("/predictions/recent", response_model=WildfirePredictionsResponse)
def get_recent_predictions(
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> WildfirePredictionsResponse:
    rows = list_recent_wildfire_predictions(db, limit=limit)
    LOGGER.debug("event=api.wildfire_recent.response limit=%s rows_returned=%s", limit, len(rows))
    return WildfirePredictionsResponse(items=[_to_item(row) for row in rows])


@router.get("/predictions/high-risk", response_model=WildfirePredictionsResponse)
def get_high_risk_predictions(
    threshold: float | None = Query(default=None, ge=0.0, le=1.0),
    db: Session = Depends(get_db),
) -> WildfirePredictionsResponse:
    chosen_threshold = get_settings().high_risk_threshold if threshold is None else threshold
    rows = list_high_risk_predictions(db, threshold=chosen_threshold)
    LOGGER.debug(
        "event=api.wildfire_high_risk.response threshold=%.3f rows_returned=%s",
        chosen_threshold,
        len(rows),
    )
    return WildfirePredictionsResponse(items=[_to_item(row) for row in rows])
