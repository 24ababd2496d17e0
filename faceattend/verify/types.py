from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from faceattend.face.gallery import DescriptorVector, GalleryEntry
from faceattend.interfaces import Geolocation


class VerificationOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    NO_FACE_DETECTED = "no_face_detected"
    SYSTEM_NOT_READY = "system_not_ready"
    SYSTEM_ERROR = "system_error"


class AttemptPhase(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    EXTRACTING = "extracting"
    MATCHING = "matching"
    DONE = "done"


@dataclass(frozen=True)
class AttendanceEvent:
    identity: str
    distance: float
    timestamp_local: str
    geolocation: Optional[Geolocation] = None


@dataclass
class VerificationAttempt:
    outcome: Optional[VerificationOutcome] = None
    phase: AttemptPhase = AttemptPhase.IDLE
    live_descriptor: Optional[DescriptorVector] = None
    candidate_match: Optional[GalleryEntry] = None
    distance: float = float("inf")
    # Reason for SYSTEM_ERROR, or "empty_gallery" on a defensive reject.
    error: Optional[str] = None
    event: Optional[AttendanceEvent] = None

    @property
    def identity(self) -> Optional[str]:
        return self.candidate_match.identity if self.candidate_match is not None else None

    @property
    def accepted(self) -> bool:
        return self.outcome == VerificationOutcome.ACCEPTED
