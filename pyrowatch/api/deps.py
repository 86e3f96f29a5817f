from __future__ import annotations

from fastapi import Request

from pyrowatch.services.cloud_classifier import CloudClassifier
from pyrowatch.services.risk_ensemble import RiskEnsembleEstimator


def get_classifier(request: Request) -> CloudClassifier:
    return request.app.state.classifier


def get_estimator(request: Request) -> RiskEnsembleEstimator:
    return request.app.state.estimator
