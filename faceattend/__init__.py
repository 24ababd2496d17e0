"""Face verification attendance engine.

This package provides:
- Gallery building from enrollment images (tolerant of per-image failures)
- A readiness latch gating verification on models + gallery being loaded
- Euclidean nearest-neighbour matching under a configurable threshold
- A verification orchestrator emitting attendance events on success

Concrete InsightFace/OpenCV collaborators live in `faceattend.adapters` and are
only imported when used.
"""

from __future__ import annotations

__version__ = "0.1.0"
