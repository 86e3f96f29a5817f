from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pyrowatch.db.engine import get_db
from pyrowatch.db.models import Detection
from pyrowatch.db.queries import list_detections_by_risk_level, list_recent_detections
from pyrowatch.schemas.api import DetectionItem, DetectionsResponse


router = APIRouter(prefix="/detections", tags=["detections"])
LOGGER = logging.getLogger(__name__)


def _to_item(row: Detection) -> DetectionItem:
    return DetectionItem(
        id=row.id,
        lat=row.lat,
        lon=row.lon,
        cloud_type=row.cloud_type,
        confidence_score=row.confidence_score,
        risk_level=row.risk_level,
        prediction=row.prediction,
        image_url=row.image_url,
        metadata=row.details or {},
        created_at=row.created_at,
    )


@router.get("/recent", response_model=DetectionsResponse)
def get_recent_detections(
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> DetectionsResponse:
    rows = list_recent_detections(db, limit=limit)
    LOGGER.debug("event=api.detections_recent.response limit=%s rows_returned=%s", limit, len(rows))
    return DetectionsResponse(items=[_to_item(row) for row in rows])


@router.get("", response_model=DetectionsResponse)
def get_detections_by_risk_level(
    risk_level: Literal["low", "medium", "high"] = Query(...),
    db: Session = Depends(get_db),
) -> DetectionsResponse:
    rows = list_detections_by_risk_level(db, risk_level=risk_level)
    return DetectionsResponse(items=[_to_item(row) for row in rows])
