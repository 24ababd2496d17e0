from __future__ import annotations

import asyncio
import sys

from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

# Ensure repo root is on sys.path so tests can import `faceattend` without installing.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from faceattend.errors import ExtractionError, ModelLoadError  # noqa: E402
from faceattend.interfaces import Geolocation  # noqa: E402


def vec(*values: float, dim: int = 4) -> np.ndarray:
    """Embedding of length `dim` starting with `values`, zero-padded."""
    out = np.zeros((dim,), dtype=np.float32)
    out[: len(values)] = values
    return out


class FakeDescriptorService:
    """In-memory descriptor service.

    `images` maps an image reference to its embedding; None means "no face",
    an Exception instance is raised on extraction. Images are passed around as
    their reference string.
    """

    def __init__(
        self,
        images: Optional[Dict[str, object]] = None,
        fail_models: bool = False,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.images: Dict[str, object] = dict(images or {})
        self.fail_models = fail_models
        self.delays: Dict[str, float] = dict(delays or {})
        self.models_loaded = False
        self.extract_calls: List[str] = []

    async def load_models(self) -> None:
        await asyncio.sleep(0)
        if self.fail_models:
            raise ModelLoadError("weights missing")
        self.models_loaded = True

    async def fetch_image(self, reference: str) -> str:
        if reference not in self.images:
            raise ExtractionError(f"image not found: {reference}")
        return reference

    async def extract_descriptor(self, image: str):
        self.extract_calls.append(image)
        await asyncio.sleep(self.delays.get(image, 0))
        value = self.images.get(image)
        if isinstance(value, Exception):
            raise value
        return value


class FakeCamera:
    def __init__(self, frame: Optional[str] = "live", error: Optional[Exception] = None):
        self.frame = frame
        self.error = error
        self.calls = 0

    async def capture_frame(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.frame


class FakeGeolocation:
    def __init__(self, lat: float = 40.4168, lon: float = -3.7038, error: Optional[Exception] = None):
        self.position = Geolocation(lat=lat, lon=lon)
        self.error = error

    async def current_position(self) -> Geolocation:
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.position
