from typing import Dict, Optional

import numpy as np

from faceattend.verify.types import AttendanceEvent, VerificationAttempt


def _geo(loc) -> Optional[Dict]:
    if loc is None:
        return None
    try:
        return {"lat": float(loc.lat), "lon": float(loc.lon)}
    except (AttributeError, TypeError, ValueError):
        return None


def _finite_or_none(x) -> Optional[float]:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    return v if np.isfinite(v) else None


def serialize_event(event: AttendanceEvent) -> Dict:
    """Serialize an AttendanceEvent into JSON-safe form."""
    return {
        "identity": str(event.identity),
        "distance": _finite_or_none(event.distance),
        "timestamp_local": str(event.timestamp_local),
        "geolocation": _geo(event.geolocation),
    }


def serialize_attempt(attempt: VerificationAttempt) -> Dict:
    """Serialize a VerificationAttempt for JSON output.

    The live embedding itself is dropped; only its norm is kept.
    """
    out: Dict = {
        "outcome": attempt.outcome.value if attempt.outcome is not None else None,
        "identity": attempt.identity,
        "distance": _finite_or_none(attempt.distance),
        "error": attempt.error,
        "candidate_source": attempt.candidate_match.source if attempt.candidate_match is not None else None,
        "event": serialize_event(attempt.event) if attempt.event is not None else None,
    }
    if attempt.live_descriptor is not None:
        out["embedding_norm"] = float(np.linalg.norm(attempt.live_descriptor.embedding))
        out["embedding_dim"] = int(attempt.live_descriptor.dimension)
    return out
