from fastapi import APIRouter

from pyrowatch.api.routes.classifier import router as classifier_router
from pyrowatch.api.routes.detections import router as detections_router
from pyrowatch.api.routes.health import router as health_router
from pyrowatch.api.routes.locations import router as locations_router
from pyrowatch.api.routes.wildfire import router as wildfire_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(health_router)
api_router.include_router(classifier_router)
api_router.include_router(wildfire_router)
api_router.include_router(detections_router)
api_router.include_router(locations_router)
