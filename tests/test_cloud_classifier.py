from __future__ import annotations

import base64
import io
import random
import threading
from datetime import datetime, timedelta

import numpy as np
import pytest
from PIL import Image, PngImagePlugin

from pyrowatch.core.errors import (
    AnalysisFailed,
    ImageLoadError,
    ModelLoadFailure,
    ModelLoadTimeout,
    ModelNotInitialized,
    PreprocessingError,
)
from pyrowatch.providers.model_sources import ModelSource
from pyrowatch.services.cloud_classifier import (
    CloudClassifier,
    CloudType,
    LoadPhase,
    RiskLevel,
    classify_cloud_type,
    decode_image_payload,
    estimate_time,
    format_clock,
    get_prediction,
    get_risk_level,
)


class _FakeModel:
    def __init__(self, probabilities: list[float]):
        self.probabilities = probabilities
        self.batches: list[np.ndarray] = []

    def predict(self, batch: np.ndarray) -> np.ndarray:
        self.batches.append(batch.copy())
        return np.array([self.probabilities], dtype=np.float32)


class _BrokenModel:
    def predict(self, batch: np.ndarray) -> np.ndarray:
        raise RuntimeError("forward pass exploded")


class _FakeSource(ModelSource):
    def __init__(
        self,
        name: str,
        *,
        model: object | None = None,
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ):
        self.name = name
        self.model = model
        self.error = error
        self.gate = gate
        self.calls = 0
        self.entered = threading.Event()

    def load(self):  # noqa: ANN201
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return self.model


def _png_data_uri(color: tuple[int, int, int] = (200, 80, 20), size: tuple[int, int] = (64, 48)) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _classifier(*sources: ModelSource, seed: int = 7) -> CloudClassifier:
    return CloudClassifier(
        sources=list(sources),
        rng=random.Random(seed),
        now=lambda: datetime(2026, 7, 4, 14, 5),
    )


@pytest.mark.parametrize(
    ("confidence", "expected"),
    [
        (1.0, RiskLevel.HIGH),
        (0.8, RiskLevel.HIGH),
        (0.7999, RiskLevel.MEDIUM),
        (0.6, RiskLevel.MEDIUM),
        (0.5999, RiskLevel.LOW),
        (0.3, RiskLevel.LOW),
        (0.0, RiskLevel.LOW),
    ],
)
def test_get_risk_level_thresholds(confidence: float, expected: RiskLevel) -> None:
    assert get_risk_level(confidence) is expected


def test_classify_cloud_type_uses_strict_cutoff() -> None:
    assert classify_cloud_type(0.6) is CloudType.NORMAL
    assert classify_cloud_type(0.6001) is CloudType.PYRO
    assert classify_cloud_type(0.1) is CloudType.NORMAL


def test_get_prediction_indexes_by_confidence_and_clamps() -> None:
    assert get_prediction(CloudType.NORMAL, 0.0) == "Clear conditions expected"
    assert get_prediction(CloudType.NORMAL, 0.5) == "Light precipitation possible"
    assert get_prediction(CloudType.PYRO, 0.7) == "High risk of fire-triggered storms"
    assert get_prediction(CloudType.PYRO, 1.0) == "Severe convective activity likely"


def test_format_clock_matches_twelve_hour_style() -> None:
    assert format_clock(datetime(2026, 1, 1, 0, 5)) == "12:05 AM"
    assert format_clock(datetime(2026, 1, 1, 12, 0)) == "12:00 PM"
    assert format_clock(datetime(2026, 1, 1, 13, 30)) == "1:30 PM"


def test_estimate_time_is_reproducible_with_seeded_rng() -> None:
    now = datetime(2026, 7, 4, 10, 15)
    offset = random.Random(42).randint(1, 3)

    assert estimate_time(now, random.Random(42)) == format_clock(now + timedelta(hours=offset))
    assert 1 <= offset <= 3


def test_decode_image_payload_rejects_bad_base64() -> None:
    with pytest.raises(ImageLoadError):
        decode_image_payload("data:image/png;base64,not-an-image!")
    with pytest.raises(ImageLoadError):
        decode_image_payload("data:image/png,rawtext")
    with pytest.raises(ImageLoadError):
        decode_image_payload(b"")


def test_analyze_image_maps_probability_to_result() -> None:
    model = _FakeModel([0.1, 0.85, 0.05])
    classifier = _classifier(_FakeSource("primary", model=model))

    result = classifier.analyze_image(_png_data_uri())

    assert result.type is CloudType.PYRO
    assert result.confidence == pytest.approx(85.0)
    assert result.risk is RiskLevel.HIGH
    assert result.prediction == "Severe convective activity likely"
    offset = random.Random(7).randint(1, 3)
    assert result.estimated_time == format_clock(datetime(2026, 7, 4, 14, 5) + timedelta(hours=offset))

    assert len(model.batches) == 1
    batch = model.batches[0]
    assert batch.shape == (1, 224, 224, 3)
    assert batch.dtype == np.float32
    assert 0.0 <= batch.min() and batch.max() <= 1.0
    assert batch[0, 0, 0, 0] == pytest.approx(200 / 255, abs=1e-3)


def test_analyze_image_accepts_bare_base64_and_bytes() -> None:
    model = _FakeModel([0.55, 0.45])
    classifier = _classifier(_FakeSource("primary", model=model))
    data_uri = _png_data_uri()
    encoded = data_uri.split(",", 1)[1]

    from_base64 = classifier.analyze_image(encoded)
    from_bytes = classifier.analyze_image(base64.b64decode(encoded))

    assert from_base64.type is CloudType.NORMAL
    assert from_base64.risk is RiskLevel.LOW
    assert from_bytes.prediction == from_base64.prediction == "Light precipitation possible"


def test_deterministic_fields_repeat_for_identical_input() -> None:
    classifier = _classifier(_FakeSource("primary", model=_FakeModel([0.3, 0.7])))
    image = _png_data_uri()

    first = classifier.analyze_image(image)
    second = classifier.analyze_image(image)

    assert (first.type, first.risk, first.prediction, first.confidence) == (
        second.type,
        second.risk,
        second.prediction,
        second.confidence,
    )
    assert first.risk is RiskLevel.MEDIUM


def test_analyze_image_undecodable_input_skips_inference() -> None:
    model = _FakeModel([0.9, 0.1])
    classifier = _classifier(_FakeSource("primary", model=model))
    not_an_image = base64.b64encode(b"hello world, definitely not a png").decode("ascii")

    with pytest.raises(AnalysisFailed) as excinfo:
        classifier.analyze_image(not_an_image)

    assert isinstance(excinfo.value.__cause__, ImageLoadError)
    assert model.batches == []


def test_analyze_image_wraps_inference_errors() -> None:
    classifier = _classifier(_FakeSource("primary", model=_BrokenModel()))

    with pytest.raises(AnalysisFailed, match="forward pass exploded") as excinfo:
        classifier.analyze_image(_png_data_uri())

    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_analyze_image_rejects_oversized_image(monkeypatch: pytest.MonkeyPatch) -> None:
    model = _FakeModel([0.9, 0.1])
    classifier = _classifier(_FakeSource("primary", model=model))
    image = _png_data_uri(size=(64, 48))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)

    with pytest.raises(AnalysisFailed) as excinfo:
        classifier.analyze_image(image)

    assert isinstance(excinfo.value.__cause__, ImageLoadError)
    assert isinstance(excinfo.value.__cause__.__cause__, Image.DecompressionBombError)
    assert model.batches == []


def test_analyze_image_rejects_broken_png_chunks(monkeypatch: pytest.MonkeyPatch) -> None:
    model = _FakeModel([0.9, 0.1])
    classifier = _classifier(_FakeSource("primary", model=model))

    def _broken_load(self):  # noqa: ANN001, ANN202
        raise SyntaxError("broken PNG file (chunk b'\\x00\\x01\\x02\\x03')")

    monkeypatch.setattr(PngImagePlugin.PngImageFile, "load", _broken_load)

    with pytest.raises(AnalysisFailed, match="broken PNG file") as excinfo:
        classifier.analyze_image(_png_data_uri())

    assert isinstance(excinfo.value.__cause__, ImageLoadError)
    assert model.batches == []


def test_analyze_image_reports_preprocessing_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    model = _FakeModel([0.9, 0.1])
    classifier = _classifier(_FakeSource("primary", model=model))
    image = _png_data_uri()

    def _failing_convert(self, *args, **kwargs):  # noqa: ANN001, ANN002, ANN003, ANN202
        raise ValueError("conversion not supported")

    monkeypatch.setattr(Image.Image, "convert", _failing_convert)

    with pytest.raises(AnalysisFailed, match="Failed to process image") as excinfo:
        classifier.analyze_image(image)

    assert isinstance(excinfo.value.__cause__, PreprocessingError)
    assert model.batches == []


def test_analyze_image_closes_decoded_image_when_inference_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    classifier = _classifier(_FakeSource("primary", model=_BrokenModel()))
    opened: list[Image.Image] = []
    real_open = Image.open

    def _tracking_open(fp, *args, **kwargs):  # noqa: ANN001, ANN002, ANN003, ANN202
        image = real_open(fp, *args, **kwargs)
        opened.append(image)
        return image

    monkeypatch.setattr(Image, "open", _tracking_open)

    with pytest.raises(AnalysisFailed):
        classifier.analyze_image(_png_data_uri())

    assert len(opened) == 1
    with pytest.raises(ValueError, match="closed image"):
        opened[0].im.size  # noqa: B018


def test_load_model_falls_back_when_primary_fails() -> None:
    primary = _FakeSource("primary", error=FileNotFoundError("missing model.pt"))
    fallback = _FakeSource("fallback", model=_FakeModel([0.2, 0.8]))
    classifier = _classifier(primary, fallback)

    classifier.load_model()
    state = classifier.status()

    assert state.phase is LoadPhase.LOADED
    assert state.is_loaded is True
    assert state.is_loading is False
    assert state.source == "fallback"
    assert primary.calls == 1
    assert fallback.calls == 1

    classifier.load_model()
    assert primary.calls == 1


def test_load_failure_is_retained_until_next_attempt() -> None:
    primary = _FakeSource("primary", error=OSError("primary unreachable"))
    fallback = _FakeSource("fallback", error=OSError("fallback unreachable"))
    classifier = _classifier(primary, fallback)

    with pytest.raises(AnalysisFailed) as excinfo:
        classifier.analyze_image(_png_data_uri())

    assert isinstance(excinfo.value.__cause__, ModelLoadFailure)
    state = classifier.status()
    assert state.phase is LoadPhase.FAILED
    assert state.error == "Failed to load both primary and fallback models"

    primary.error = None
    primary.model = _FakeModel([0.95, 0.05])
    result = classifier.analyze_image(_png_data_uri())

    assert classifier.status().phase is LoadPhase.LOADED
    assert classifier.status().error is None
    assert result.type is CloudType.PYRO
    assert primary.calls == 2


def test_analyze_image_without_model_reports_not_initialized() -> None:
    classifier = _classifier(_FakeSource("primary", model=None))

    with pytest.raises(AnalysisFailed) as excinfo:
        classifier.analyze_image(_png_data_uri())

    assert isinstance(excinfo.value.__cause__, ModelNotInitialized)


def test_concurrent_load_model_calls_share_one_attempt() -> None:
    gate = threading.Event()
    source = _FakeSource("primary", model=_FakeModel([0.9, 0.1]), gate=gate)
    classifier = _classifier(source)
    errors: list[Exception] = []

    def _load() -> None:
        try:
            classifier.load_model()
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    first = threading.Thread(target=_load)
    first.start()
    assert source.entered.wait(2)
    assert classifier.status().is_loading is True

    second = threading.Thread(target=_load)
    second.start()
    gate.set()
    first.join(5)
    second.join(5)

    assert errors == []
    assert source.calls == 1
    assert classifier.status().is_loaded is True


def test_waiting_on_in_flight_load_honours_timeout() -> None:
    gate = threading.Event()
    source = _FakeSource("primary", model=_FakeModel([0.9, 0.1]), gate=gate)
    classifier = _classifier(source)

    owner = threading.Thread(target=classifier.load_model)
    owner.start()
    assert source.entered.wait(2)

    with pytest.raises(ModelLoadTimeout):
        classifier.load_model(timeout=0.05)

    gate.set()
    owner.join(5)
    assert source.calls == 1
    assert classifier.status().is_loaded is True


def test_load_model_timeout_bounds_the_starting_caller() -> None:
    gate = threading.Event()
    source = _FakeSource("primary", model=_FakeModel([0.9, 0.1]), gate=gate)
    classifier = _classifier(source)

    with pytest.raises(ModelLoadTimeout):
        classifier.load_model(timeout=0.05)

    assert classifier.status().is_loading is True
    gate.set()
    classifier.load_model(timeout=5)
    assert source.calls == 1
    assert classifier.status().is_loaded is True


def test_waiter_sees_its_own_attempt_failure_after_a_new_attempt_starts() -> None:
    first_gate = threading.Event()
    primary = _FakeSource("primary", error=OSError("primary unreachable"), gate=first_gate)
    fallback = _FakeSource("fallback", error=OSError("fallback unreachable"))
    classifier = _classifier(primary, fallback)

    with pytest.raises(ModelLoadTimeout):
        classifier.load_model(timeout=0.05)
    failed_attempt = classifier._in_flight
    first_gate.set()
    assert failed_attempt.done.wait(5)

    second_gate = threading.Event()
    primary.error = None
    primary.model = _FakeModel([0.9, 0.1])
    primary.gate = second_gate
    primary.entered.clear()
    with pytest.raises(ModelLoadTimeout):
        classifier.load_model(timeout=0.05)
    assert primary.entered.wait(2)
    assert classifier.status().is_loading is True

    with pytest.raises(ModelLoadFailure, match="Failed to load both primary and fallback models"):
        classifier._wait_for(failed_attempt, 1)

    second_gate.set()
    classifier.load_model(timeout=5)
    assert classifier.status().is_loaded is True


class _LoaderAborted(BaseException):
    pass


@pytest.mark.filterwarnings("ignore::pytest.PytestUnhandledThreadExceptionWarning")
def test_aborted_load_does_not_stay_loading() -> None:
    source = _FakeSource("primary", error=_LoaderAborted())
    classifier = _classifier(source)

    with pytest.raises(ModelLoadFailure, match="interrupted"):
        classifier.load_model(timeout=5)

    state = classifier.status()
    assert state.phase is LoadPhase.FAILED
    assert state.is_loading is False

    source.error = None
    source.model = _FakeModel([0.9, 0.1])
    classifier.load_model(timeout=5)
    assert classifier.status().is_loaded is True


def test_classifier_requires_sources() -> None:
    with pytest.raises(ValueError):
        CloudClassifier(sources=[])
