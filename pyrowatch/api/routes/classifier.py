from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pyrowatch.api.deps import get_classifier
from pyrowatch.core.errors import (
    AnalysisFailed,
    ImageLoadError,
    ModelLoadFailure,
    ModelNotInitialized,
    PreprocessingError,
)
from pyrowatch.db.engine import get_db
from pyrowatch.schemas.api import AnalyzeImageRequest, ClassificationResponse, ModelStatusResponse
from pyrowatch.services.cloud_classifier import CloudClassifier, ModelLoadState
from pyrowatch.services.records import record_detection


router = APIRouter(prefix="/classifier", tags=["classifier"])
LOGGER = logging.getLogger(__name__)


def _status_response(state: ModelLoadState) -> ModelStatusResponse:
    return ModelStatusResponse(
        phase=state.phase.value,
        is_loaded=state.is_loaded,
        is_loading=state.is_loading,
        source=state.source,
        error=state.error,
    )


def _status_code_for(exc: AnalysisFailed) -> int:
    cause = exc.__cause__
    if isinstance(cause, (ImageLoadError, PreprocessingError)):
        return 422
    if isinstance(cause, (ModelLoadFailure, ModelNotInitialized)):
        return 503
    return 500


@router.get("/status", response_model=ModelStatusResponse)
def get_classifier_status(classifier: CloudClassifier = Depends(get_classifier)) -> ModelStatusResponse:
    return _status_response(classifier.status())


@router.post("/load", response_model=ModelStatusResponse)
def load_classifier_model(classifier: CloudClassifier = Depends(get_classifier)) -> ModelStatusResponse:
    LOGGER.debug("event=api.classifier_load.request")
    try:
        classifier.load_model(timeout=classifier.load_timeout_seconds)
    except ModelLoadFailure as exc:
        LOGGER.debug("event=api.classifier_load.response loaded=false reason=%s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _status_response(classifier.status())


@router.post("/analyze", response_model=ClassificationResponse)
def analyze_image(
    payload: AnalyzeImageRequest,
    classifier: CloudClassifier = Depends(get_classifier),
    db: Session = Depends(get_db),
) -> ClassificationResponse:
    LOGGER.debug("event=api.classifier_analyze.request payload_chars=%s persist=%s", len(payload.image), payload.persist)
    if payload.persist and (payload.lat is None or payload.lon is None):
        raise HTTPException(status_code=400, detail="lat and lon are required when persist is true")

    try:
        result = classifier.analyze_image(payload.image)
    except AnalysisFailed as exc:
        status_code = _status_code_for(exc)
        if status_code == 500:
            LOGGER.exception("Unexpected image analysis failure")
        else:
            LOGGER.debug("event=api.classifier_analyze.response status=%s reason=%s", status_code, exc)
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc

    detection_id = None
    if payload.persist:
        detection = record_detection(
            db,
            result=result,
            lat=payload.lat,
            lon=payload.lon,
            image_url=payload.image_url,
        )
        detection_id = detection.id

    LOGGER.debug(
        "event=api.classifier_analyze.response type=%s risk=%s detection_id=%s",
        result.type.value,
        result.risk.value,
        detection_id,
    )
    return ClassificationResponse(
        type=result.type.value,
        confidence=result.confidence,
        prediction=result.prediction,
        risk=result.risk.value,
        estimated_time=result.estimated_time,
        detection_id=detection_id,
    )
