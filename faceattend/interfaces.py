"""Contracts for the collaborators the engine consumes.

Concrete implementations backed by InsightFace/OpenCV live in
`faceattend.adapters`; tests supply in-memory fakes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

import numpy as np


@dataclass(frozen=True)
class Geolocation:
    lat: float
    lon: float


class FaceDescriptorService(Protocol):
    async def load_models(self) -> None:
        """Load detector/landmark/recognition models. Raises ModelLoadError."""
        ...

    async def fetch_image(self, reference: str) -> Any:
        """Load an enrollment image. Raises ExtractionError on I/O failure."""
        ...

    async def extract_descriptor(self, image: Any) -> Optional[np.ndarray]:
        """Detect a single face and return its embedding, or None when no face is found.

        Raises ExtractionError when the model itself fails.
        """
        ...


class CameraSource(Protocol):
    async def capture_frame(self) -> Optional[Any]:
        """Return one still frame, or None when the camera has nothing to give."""
        ...


class GeolocationSource(Protocol):
    async def current_position(self) -> Geolocation:
        ...
