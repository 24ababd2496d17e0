"""Exception types raised at the seams of the verification engine.

Loader and orchestrator catch these and turn them into warnings or typed
outcomes; only `NoUsableGalleryError` and `ModelLoadError` are fatal, and only
for readiness.
"""
from __future__ import annotations

from typing import List, Optional


class FaceAttendError(Exception):
    """Base class for all engine errors."""


class ModelLoadError(FaceAttendError):
    """The face descriptor service could not load its models."""


class NoUsableGalleryError(FaceAttendError):
    """Gallery loading finished without a single usable entry."""

    def __init__(self, message: str, warnings: Optional[List[str]] = None):
        super().__init__(message)
        self.warnings: List[str] = list(warnings or [])


class DimensionMismatchError(FaceAttendError):
    """Live descriptor and gallery embeddings have different lengths."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"descriptor dimension {actual} does not match gallery dimension {expected}")
        self.expected = int(expected)
        self.actual = int(actual)


class ExtractionError(FaceAttendError):
    """Image fetch or descriptor extraction failed (I/O, network, model)."""


class CaptureError(FaceAttendError):
    """The camera could not deliver a frame."""
