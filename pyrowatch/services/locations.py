from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Protocol

from pyrowatch.services.risk_ensemble import PredictionResult


@dataclass(frozen=True)
class SampleLocation:
    location_id: str
    name: str
    description: str
    region: str
    lat: float
    lon: float
    location_type: str
    intensity: float
    radius_m: float


SAMPLE_LOCATIONS: tuple[SampleLocation, ...] = (
    SampleLocation(
        location_id="los-angeles",
        name="Los Angeles Region",
        description="Southern California monitoring station",
        region="North America",
        lat=34.0522,
        lon=-118.2437,
        location_type="pyrocb",
        intensity=0.8,
        radius_m=50000,
    ),
    SampleLocation(
        location_id="new-york",
        name="New York Region",
        description="Eastern Seaboard monitoring point",
        region="North America",
        lat=40.7128,
        lon=-74.0060,
        location_type="warning",
        intensity=0.5,
        radius_m=30000,
    ),
    SampleLocation(
        location_id="london",
        name="London Region",
        description="UK monitoring station",
        region="Europe",
        lat=51.5074,
        lon=-0.1278,
        location_type="normal",
        intensity=0.3,
        radius_m=20000,
    ),
    SampleLocation(
        location_id="tokyo",
        name="Tokyo Region",
        description="Japan monitoring point",
        region="Asia",
        lat=35.6762,
        lon=139.6503,
        location_type="pyrocb",
        intensity=0.9,
        radius_m=60000,
    ),
    SampleLocation(
        location_id="sydney",
        name="Sydney Region",
        description="Australia monitoring station",
        region="Oceania",
        lat=-33.8688,
        lon=151.2093,
        location_type="warning",
        intensity=0.6,
        radius_m=40000,
    ),
)

LOCATION_INTENSITY_FACTOR = 0.2


class LocationLike(Protocol):
    name: str
    lat: float
    lon: float
    location_type: str
    intensity: float


def adjust_for_location(result: PredictionResult, location: LocationLike) -> PredictionResult:
    """Scale an ensemble risk score by the location's fire intensity, capped at 1."""
    adjusted = min(1.0, result.risk_score * (1 + location.intensity * LOCATION_INTENSITY_FACTOR))
    metadata = dict(result.metadata)
    metadata["location"] = {
        "name": location.name,
        "position": [location.lat, location.lon],
        "type": location.location_type,
        "intensity": location.intensity,
    }
    return replace(result, risk_score=adjusted, metadata=metadata)
