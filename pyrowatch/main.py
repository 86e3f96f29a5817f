from __future__ import annotations

import logging
import random
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pyrowatch.api.routes import api_router
from pyrowatch.core.config import Settings, get_settings
from pyrowatch.core.errors import ModelLoadFailure
from pyrowatch.db.bootstrap import init_db
from pyrowatch.providers.model_sources import TorchScriptModelSource, TorchvisionModelSource
from pyrowatch.services.cloud_classifier import CloudClassifier
from pyrowatch.services.risk_ensemble import RiskEnsembleEstimator


settings = get_settings()
LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger().setLevel(level)


_configure_logging()


def build_classifier(config: Settings) -> CloudClassifier:
    primary = TorchScriptModelSource(
        location=config.primary_model_location,
        cache_dir=config.model_cache_dir,
        timeout_seconds=config.model_download_timeout_seconds,
        max_retries=config.model_download_max_retries,
        backoff_seconds=config.model_download_backoff_seconds,
    )
    fallback = TorchvisionModelSource(arch=config.fallback_model_arch)
    return CloudClassifier(
        sources=[primary, fallback],
        rng=random.Random(config.random_seed),
        load_timeout_seconds=config.model_load_timeout_seconds,
    )


def _preload(classifier: CloudClassifier) -> None:
    try:
        classifier.load_model()
    except ModelLoadFailure:
        LOGGER.warning("Model preload failed; the next analysis request will retry", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db(reset_db=settings.reset_db_on_start)
    app.state.classifier = build_classifier(settings)
    app.state.estimator = RiskEnsembleEstimator(rng=random.Random(settings.random_seed))
    if settings.preload_model:
        threading.Thread(target=_preload, args=(app.state.classifier,), daemon=True).start()
    yield


app = FastAPI(title="PyroWatch API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
