from __future__ import annotations

import hashlib
import logging
import time
from pathlib import Path
from typing import Protocol

import numpy as np
import requests
import torch
import torchvision


LOGGER = logging.getLogger(__name__)


class ImageModel(Protocol):
    def predict(self, batch: np.ndarray) -> np.ndarray:
        """Return one probability vector per row of an NHWC float batch."""
        ...


class ModelSource:
    name: str = "unknown"

    def load(self) -> ImageModel:
        raise NotImplementedError


class TorchImageModel:
    def __init__(self, module: torch.nn.Module, *, outputs_probabilities: bool = False):
        self.module = module.eval()
        self.outputs_probabilities = outputs_probabilities

    def predict(self, batch: np.ndarray) -> np.ndarray:
        if batch.ndim != 4 or batch.shape[-1] != 3:
            raise ValueError(f"Expected an NHWC batch with 3 channels; got shape={batch.shape}")

        with torch.inference_mode():
            inputs = torch.from_numpy(np.ascontiguousarray(batch, dtype=np.float32)).permute(0, 3, 1, 2)
            outputs = self.module(inputs)
            if not self.outputs_probabilities:
                outputs = torch.softmax(outputs, dim=-1)
            probabilities = outputs.detach().cpu().numpy().copy()
            del inputs, outputs
        return probabilities


class TorchScriptModelSource(ModelSource):
    """A TorchScript artifact addressed by a local path or an http(s) URL.

    Remote artifacts are downloaded once into ``cache_dir``; transport errors,
    429 and 5xx responses are retried with exponential backoff.
    """

    def __init__(
        self,
        *,
        location: str,
        cache_dir: Path,
        timeout_seconds: float = 30,
        max_retries: int = 3,
        backoff_seconds: float = 1.5,
        outputs_probabilities: bool = False,
        session: requests.Session | None = None,
    ):
        self.location = location
        self.cache_dir = cache_dir
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.outputs_probabilities = outputs_probabilities
        self.session = session or requests.Session()
        self.name = f"torchscript:{location}"

    @property
    def is_remote(self) -> bool:
        return self.location.startswith(("http://", "https://"))

    def load(self) -> ImageModel:
        artifact_path = self.resolve_artifact()
        module = torch.jit.load(str(artifact_path), map_location="cpu")
        LOGGER.info("event=model_source.loaded source=%s path=%s", self.name, artifact_path)
        return TorchImageModel(module, outputs_probabilities=self.outputs_probabilities)

    def resolve_artifact(self) -> Path:
        if not self.is_remote:
            path = Path(self.location)
            if not path.exists():
                raise FileNotFoundError(f"Missing model artifact: {path}")
            return path

        digest = hashlib.sha256(self.location.encode("utf-8")).hexdigest()[:16]
        suffix = Path(self.location.split("?", 1)[0]).suffix or ".pt"
        cached = self.cache_dir / f"model_{digest}{suffix}"
        if cached.exists():
            LOGGER.debug("event=model_source.cache_hit url=%s path=%s", self.location, cached)
            return cached

        payload = self._download()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        partial = cached.with_name(f"{cached.name}.part")
        partial.write_bytes(payload)
        partial.replace(cached)
        return cached

    def _download(self) -> bytes:
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.get(self.location, timeout=self.timeout_seconds)
            except requests.RequestException as exc:
                if attempt < self.max_retries:
                    time.sleep(self.backoff_seconds ** attempt)
                    continue
                raise ConnectionError(f"Model download failed after retries: {self.location}") from exc

            if response.status_code == 429 or 500 <= response.status_code < 600:
                if attempt < self.max_retries:
                    time.sleep(self.backoff_seconds ** attempt)
                    continue

            if response.status_code != 200:
                raise ConnectionError(
                    f"Model download returned status={response.status_code}: {self.location}"
                )

            LOGGER.debug(
                "event=model_source.downloaded url=%s bytes=%s attempts=%s",
                self.location,
                len(response.content),
                attempt,
            )
            return response.content

        raise ConnectionError(f"Model download failed after retries: {self.location}")


class TorchvisionModelSource(ModelSource):
    """Public ImageNet-pretrained weights fetched through torchvision."""

    def __init__(self, *, arch: str = "mobilenet_v3_small"):
        self.arch = arch
        self.name = f"torchvision:{arch}"

    def load(self) -> ImageModel:
        module = torchvision.models.get_model(self.arch, weights="DEFAULT")
        LOGGER.info("event=model_source.loaded source=%s", self.name)
        return TorchImageModel(module)
