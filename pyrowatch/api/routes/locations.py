from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pyrowatch.db.engine import get_db
from pyrowatch.db.queries import get_location_statistics, list_active_locations
from pyrowatch.schemas.api import (
    LocationItem,
    LocationsResponse,
    LocationStatisticsItem,
    LocationStatisticsResponse,
)


router = APIRouter(prefix="/locations", tags=["locations"])
LOGGER = logging.getLogger(__name__)


@router.get("", response_model=LocationsResponse)
def get_locations(db: Session = Depends(get_db)) -> LocationsResponse:
    locations = list_active_locations(db)
    LOGGER.debug("event=api.locations.response rows_returned=%s", len(locations))
    return LocationsResponse(
        items=[
            LocationItem(
                location_id=location.location_id,
                name=location.name,
                description=location.description,
                region=location.region,
                lat=location.lat,
                lon=location.lon,
                location_type=location.location_type,
                intensity=location.intensity,
                radius_m=location.radius_m,
            )
            for location in locations
        ]
    )


@router.get("/statistics", response_model=LocationStatisticsResponse)
def get_locations_statistics(db: Session = Depends(get_db)) -> LocationStatisticsResponse:
    stats = get_location_statistics(db)
    return LocationStatisticsResponse(
        items=[
            LocationStatisticsItem(
                location_id=item.location.location_id,
                name=item.location.name,
                prediction_count=item.prediction_count,
                mean_risk_score=item.mean_risk_score,
                max_risk_score=item.max_risk_score,
            )
            for item in stats
        ]
    )
