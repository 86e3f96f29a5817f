from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    status: str
    time_utc: datetime


class ModelStatusResponse(BaseModel):
    phase: str
    is_loaded: bool
    is_loading: bool
    source: str | None
    error: str | None


class AnalyzeImageRequest(BaseModel):
    image: str = Field(min_length=1, description="Data URI or base64-encoded image")
    lat: float | None = Field(default=None, ge=-90.0, le=90.0)
    lon: float | None = Field(default=None, ge=-180.0, le=180.0)
    image_url: str | None = None
    persist: bool = False


class ClassificationResponse(BaseModel):
    type: Literal["normal", "pyro"]
    confidence: float = Field(ge=0.0, le=100.0)
    prediction: str
    risk: Literal["low", "medium", "high"]
    estimated_time: str
    detection_id: int | None = None


class WildfirePredictRequest(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    temperature: float
    humidity: float
    wind_speed: float
    drought_index: float
    vegetation_density: float
    location_id: str | None = None
    persist: bool = False


class WildfirePredictionResponse(BaseModel):
    risk_score: float = Field(ge=0.0)
    confidence_score: float = Field(ge=0.0, le=1.0)
    model: str
    metadata: dict[str, Any]
    location_id: str | None = None
    prediction_id: int | None = None


class DetectionItem(BaseModel):
    id: int
    lat: float
    lon: float
    cloud_type: str
    confidence_score: float
    risk_level: str
    prediction: str
    image_url: str | None
    metadata: dict[str, Any]
    created_at: datetime


class DetectionsResponse(BaseModel):
    items: list[DetectionItem]


class WildfirePredictionItem(BaseModel):
    id: int
    location_id: str | None
    location_name: str | None
    temperature: float
    humidity: float
    wind_speed: float
    drought_index: float
    vegetation_density: float
    risk_score: float
    confidence_score: float
    prediction_model: str
    metadata: dict[str, Any]
    created_at: datetime


class WildfirePredictionsResponse(BaseModel):
    items: list[WildfirePredictionItem]


class LocationItem(BaseModel):
    location_id: str
    name: str
    description: str
    region: str | None
    lat: float
    lon: float
    location_type: str
    intensity: float = Field(ge=0.0, le=1.0)
    radius_m: float


class LocationsResponse(BaseModel):
    items: list[LocationItem]


class LocationStatisticsItem(BaseModel):
    location_id: str
    name: str
    prediction_count: int
    mean_risk_score: float | None
    max_risk_score: float | None


class LocationStatisticsResponse(BaseModel):
    items: list[LocationStatisticsItem]
