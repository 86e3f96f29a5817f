from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session, selectinload

from pyrowatch.db.models import Detection, MonitoringLocation, WildfirePrediction

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationStatistics:
    location: MonitoringLocation
    prediction_count: int
    mean_risk_score: float | None
    max_risk_score: float | None


def upsert_location(
    db: Session,
    *,
    location_id: str,
    name: str,
    lat: float,
    lon: float,
    description: str = "",
    region: str | None = None,
    location_type: str = "normal",
    intensity: float = 0.0,
    radius_m: float = 0.0,
    active: bool = True,
) -> MonitoringLocation:
    location = get_location_by_location_id(db, location_id)
    if location is None:
        location = MonitoringLocation(location_id=location_id)
        db.add(location)

    location.name = name
    location.lat = lat
    location.lon = lon
    location.description = description
    location.region = region
    location.location_type = location_type
    location.intensity = intensity
    location.radius_m = radius_m
    location.active = active
    db.commit()
    db.refresh(location)
    return location


def get_location_by_location_id(db: Session, location_id: str) -> MonitoringLocation | None:
    return db.execute(
        select(MonitoringLocation).where(MonitoringLocation.location_id == location_id)
    ).scalar_one_or_none()


def list_active_locations(db: Session) -> list[MonitoringLocation]:
    return list(
        db.execute(
            select(MonitoringLocation)
            .where(MonitoringLocation.active.is_(True))
            .order_by(desc(MonitoringLocation.last_updated), MonitoringLocation.location_id)
        ).scalars()
    )


def insert_detection(
    db: Session,
    *,
    lat: float,
    lon: float,
    cloud_type: str,
    confidence_score: float,
    risk_level: str,
    prediction: str,
    image_url: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Detection:
    row = Detection(
        lat=lat,
        lon=lon,
        cloud_type=cloud_type,
        confidence_score=confidence_score,
        risk_level=risk_level,
        prediction=prediction,
        image_url=image_url,
        details=metadata or {},
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    LOGGER.debug(
        "event=detection.inserted detection_id=%s cloud_type=%s risk_level=%s confidence_score=%.2f",
        row.id,
        row.cloud_type,
        row.risk_level,
        row.confidence_score,
    )
    return row


def list_recent_detections(db: Session, *, limit: int = 10) -> list[Detection]:
    return list(
        db.execute(select(Detection).order_by(desc(Detection.created_at), desc(Detection.id)).limit(limit)).scalars()
    )


def list_detections_by_risk_level(db: Session, *, risk_level: str) -> list[Detection]:
    detections = list(
        db.execute(
            select(Detection)
            .where(Detection.risk_level == risk_level)
            .order_by(desc(Detection.created_at), desc(Detection.id))
        ).scalars()
    )
    LOGGER.debug("event=detections.by_risk_level risk_level=%s count=%s", risk_level, len(detections))
    return detections


def insert_wildfire_prediction(
    db: Session,
    *,
    location_id: int | None,
    temperature: float,
    humidity: float,
    wind_speed: float,
    drought_index: float,
    vegetation_density: float,
    risk_score: float,
    confidence_score: float,
    prediction_model: str,
    metadata: dict[str, Any] | None = None,
) -> WildfirePrediction:
    row = WildfirePrediction(
        location_id=location_id,
        temperature=temperature,
        humidity=humidity,
        wind_speed=wind_speed,
        drought_index=drought_index,
        vegetation_density=vegetation_density,
        risk_score=risk_score,
        confidence_score=confidence_score,
        prediction_model=prediction_model,
        details=metadata or {},
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    LOGGER.debug(
        "event=wildfire_prediction.inserted prediction_id=%s location_id=%s risk_score=%.6f model=%s",
        row.id,
        row.location_id,
        row.risk_score,
        row.prediction_model,
    )
    return row


def list_recent_wildfire_predictions(db: Session, *, limit: int = 10) -> list[WildfirePrediction]:
    return list(
        db.execute(
            select(WildfirePrediction)
            .options(selectinload(WildfirePrediction.location))
            .order_by(desc(WildfirePrediction.created_at), desc(WildfirePrediction.id))
            .limit(limit)
        ).scalars()
    )


def list_high_risk_predictions(db: Session, *, threshold: float = 0.7) -> list[WildfirePrediction]:
    rows = list(
        db.execute(
            select(WildfirePrediction)
            .options(selectinload(WildfirePrediction.location))
            .where(WildfirePrediction.risk_score >= threshold)
            .order_by(desc(WildfirePrediction.risk_score))
        ).scalars()
    )
    LOGGER.debug("event=wildfire_predictions.high_risk threshold=%.3f count=%s", threshold, len(rows))
    return rows


def get_location_statistics(db: Session) -> list[LocationStatistics]:
    rows = db.execute(
        select(
            MonitoringLocation,
            func.count(WildfirePrediction.id),
            func.avg(WildfirePrediction.risk_score),
            func.max(WildfirePrediction.risk_score),
        )
        .outerjoin(WildfirePrediction, WildfirePrediction.location_id == MonitoringLocation.id)
        .group_by(MonitoringLocation.id)
        .order_by(MonitoringLocation.location_id)
    ).all()
    return [
        LocationStatistics(
            location=location,
            prediction_count=int(count),
            mean_risk_score=None if mean is None else float(mean),
            max_risk_score=None if maximum is None else float(maximum),
        )
        for location, count, mean, maximum in rows
    ]
