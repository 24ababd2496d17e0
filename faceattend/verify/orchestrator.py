from __future__ import annotations

import asyncio
import inspect

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from faceattend.errors import DimensionMismatchError
from faceattend.face.gallery import DescriptorVector
from faceattend.face.matcher import EuclideanMatcher
from faceattend.interfaces import CameraSource, FaceDescriptorService
from faceattend.utils.log import get_logger
from faceattend.verify.geolocation import LocationCell
from faceattend.verify.readiness import ReadinessStateMachine
from faceattend.verify.types import AttemptPhase, AttendanceEvent, VerificationAttempt, VerificationOutcome

logger = get_logger(__name__)

# Label carried by the live descriptor until it is matched.
LIVE_IDENTITY = "<live>"

SuccessCallback = Callable[[AttendanceEvent], Any]


@dataclass
class VerifierConfig:
    # Seconds allowed for one extraction call; None = wait as long as it takes.
    extraction_timeout: Optional[float] = None
    timestamp_format: str = "%H:%M:%S"


class VerificationOrchestrator:
    """Runs one verification per `verify()` call.

    capture -> extract -> match -> (event). Every failure is returned as a
    typed outcome on the attempt; nothing raises out of `verify()`. Attempts
    only read the gallery and readiness, so abandoning one midway is harmless.
    """

    def __init__(
        self,
        readiness: ReadinessStateMachine,
        service: FaceDescriptorService,
        camera: CameraSource,
        matcher: Optional[EuclideanMatcher] = None,
        location: Optional[LocationCell] = None,
        on_success: Optional[SuccessCallback] = None,
        config: Optional[VerifierConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.readiness = readiness
        self.service = service
        self.camera = camera
        self.matcher = matcher or EuclideanMatcher()
        self.location = location or LocationCell()
        self.on_success = on_success
        self.config = config or VerifierConfig()
        self.clock = clock

    async def verify(self) -> VerificationAttempt:
        attempt = VerificationAttempt()

        gallery = self.readiness.gallery
        if not self.readiness.is_ready or gallery is None:
            return self._finish(attempt, VerificationOutcome.SYSTEM_NOT_READY)

        attempt.phase = AttemptPhase.CAPTURING
        try:
            frame = await self.camera.capture_frame()
        except Exception as e:
            return self._finish(attempt, VerificationOutcome.SYSTEM_ERROR, f"capture failed: {e}")
        if frame is None:
            return self._finish(attempt, VerificationOutcome.SYSTEM_ERROR, "capture failed")

        attempt.phase = AttemptPhase.EXTRACTING
        try:
            embedding = await self._extract(frame)
        except asyncio.TimeoutError:
            return self._finish(
                attempt,
                VerificationOutcome.SYSTEM_ERROR,
                f"extraction timed out after {self.config.extraction_timeout}s",
            )
        except Exception as e:
            return self._finish(attempt, VerificationOutcome.SYSTEM_ERROR, f"extraction failed: {e}")
        if embedding is None:
            return self._finish(attempt, VerificationOutcome.NO_FACE_DETECTED)

        try:
            live = DescriptorVector(identity=LIVE_IDENTITY, embedding=embedding)
        except ValueError as e:
            return self._finish(attempt, VerificationOutcome.SYSTEM_ERROR, f"invalid descriptor: {e}")
        attempt.live_descriptor = live

        attempt.phase = AttemptPhase.MATCHING
        try:
            result = self.matcher.match(live, gallery)
        except DimensionMismatchError as e:
            return self._finish(attempt, VerificationOutcome.SYSTEM_ERROR, str(e))

        attempt.candidate_match = result.best_entry
        attempt.distance = result.best_distance
        logger.debug(f"top-k: {result.topk}")

        if result.empty_gallery:
            return self._finish(attempt, VerificationOutcome.REJECTED, "empty_gallery")
        if not result.accepted:
            return self._finish(attempt, VerificationOutcome.REJECTED)

        event = AttendanceEvent(
            identity=result.best_entry.identity,
            distance=result.best_distance,
            timestamp_local=self.clock().strftime(self.config.timestamp_format),
            geolocation=self.location.get(),
        )
        attempt.event = event
        self._finish(attempt, VerificationOutcome.ACCEPTED)
        await self._emit(event)
        return attempt

    async def _extract(self, frame: Any):
        call = self.service.extract_descriptor(frame)
        if self.config.extraction_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=float(self.config.extraction_timeout))

    async def _emit(self, event: AttendanceEvent) -> None:
        if self.on_success is None:
            return
        try:
            ret = self.on_success(event)
            if inspect.isawaitable(ret):
                await ret
        except Exception as e:
            logger.error(f"success callback failed for {event.identity}: {e}")

    def _finish(
        self, attempt: VerificationAttempt, outcome: VerificationOutcome, error: Optional[str] = None
    ) -> VerificationAttempt:
        attempt.outcome = outcome
        attempt.error = error
        attempt.phase = AttemptPhase.DONE
        if outcome == VerificationOutcome.ACCEPTED:
            logger.info(f"✅ 验证通过: {attempt.identity} (距离: {attempt.distance:.4f})")
        elif outcome == VerificationOutcome.REJECTED:
            logger.info(f"❌ 人脸不匹配 (最近: {attempt.identity}, 距离: {attempt.distance:.4f})")
        elif outcome == VerificationOutcome.SYSTEM_ERROR:
            logger.warning(f"验证失败: {error}")
        else:
            logger.info(f"verification outcome: {outcome.value}")
        return attempt
