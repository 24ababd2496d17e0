from __future__ import annotations

import asyncio

from datetime import datetime

import pytest

from conftest import FakeCamera, FakeDescriptorService, vec
from faceattend.errors import ExtractionError
from faceattend.face.gallery import DescriptorVector, Gallery, GalleryEntry
from faceattend.face.matcher import EuclideanMatcher, MatcherConfig
from faceattend.interfaces import Geolocation
from faceattend.verify.geolocation import LocationCell
from faceattend.verify.orchestrator import VerificationOrchestrator, VerifierConfig
from faceattend.verify.readiness import ReadinessState, ReadinessStateMachine
from faceattend.verify.types import AttemptPhase, VerificationOutcome


def _fixed_clock():
    return datetime(2024, 5, 6, 9, 15, 42)


def _ready(*pairs) -> ReadinessStateMachine:
    rsm = ReadinessStateMachine()
    rsm.models_loaded()
    rsm.gallery_loaded(Gallery(GalleryEntry(DescriptorVector(n, e), f"{n}.jpg") for n, e in pairs))
    return rsm


def _orchestrator(readiness, live, camera=None, events=None, location=None, threshold=0.4, **kwargs):
    service = FakeDescriptorService({"live": live})
    sink = events if events is not None else []
    return VerificationOrchestrator(
        readiness=readiness,
        service=service,
        camera=camera or FakeCamera(),
        matcher=EuclideanMatcher(MatcherConfig(threshold=threshold)),
        location=location,
        on_success=sink.append,
        clock=_fixed_clock,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_accepts_single_enrolled_identity():
    events = []
    orch = _orchestrator(_ready(("Alice", vec(0.0))), live=vec(0.35), events=events)

    attempt = await orch.verify()

    assert attempt.outcome == VerificationOutcome.ACCEPTED
    assert attempt.identity == "Alice"
    assert attempt.distance == pytest.approx(0.35, abs=1e-6)
    assert attempt.phase == AttemptPhase.DONE
    assert len(events) == 1
    event = events[0]
    assert event.identity == "Alice"
    assert event.timestamp_local == "09:15:42"
    assert event.geolocation is None
    assert attempt.event is event


@pytest.mark.asyncio
async def test_accepts_nearest_of_two_identities():
    events = []
    orch = _orchestrator(_ready(("Alice", vec(0.0)), ("Bob", vec(0.8))), live=vec(0.6), events=events)

    attempt = await orch.verify()

    assert attempt.outcome == VerificationOutcome.ACCEPTED
    assert attempt.identity == "Bob"
    assert attempt.distance == pytest.approx(0.2, abs=1e-6)
    assert [e.identity for e in events] == ["Bob"]


@pytest.mark.asyncio
async def test_rejects_beyond_threshold_without_event():
    events = []
    orch = _orchestrator(_ready(("Alice", vec(0.0))), live=vec(0.45), events=events)

    attempt = await orch.verify()

    assert attempt.outcome == VerificationOutcome.REJECTED
    assert attempt.distance == pytest.approx(0.45, abs=1e-6)
    assert attempt.event is None
    assert events == []


@pytest.mark.asyncio
async def test_not_ready_skips_capture():
    camera = FakeCamera()
    rsm = ReadinessStateMachine()
    rsm.models_loaded()
    orch = _orchestrator(rsm, live=vec(0.0), camera=camera)

    attempt = await orch.verify()

    assert attempt.outcome == VerificationOutcome.SYSTEM_NOT_READY
    assert camera.calls == 0


@pytest.mark.asyncio
async def test_failed_readiness_is_not_ready():
    camera = FakeCamera()
    rsm = ReadinessStateMachine()
    rsm.gallery_failed("no faces")
    attempt = await _orchestrator(rsm, live=vec(0.0), camera=camera).verify()
    assert attempt.outcome == VerificationOutcome.SYSTEM_NOT_READY
    assert camera.calls == 0


@pytest.mark.asyncio
async def test_camera_without_frame_is_system_error():
    rsm = _ready(("Alice", vec(0.0)))
    orch = _orchestrator(rsm, live=vec(0.0), camera=FakeCamera(frame=None))

    attempt = await orch.verify()

    assert attempt.outcome == VerificationOutcome.SYSTEM_ERROR
    assert attempt.error == "capture failed"
    assert rsm.state == ReadinessState.READY


@pytest.mark.asyncio
async def test_camera_exception_is_system_error():
    rsm = _ready(("Alice", vec(0.0)))
    orch = _orchestrator(rsm, live=vec(0.0), camera=FakeCamera(error=OSError("device busy")))
    attempt = await orch.verify()
    assert attempt.outcome == VerificationOutcome.SYSTEM_ERROR
    assert "capture failed" in attempt.error


@pytest.mark.asyncio
async def test_no_face_in_live_frame():
    orch = _orchestrator(_ready(("Alice", vec(0.0))), live=None)
    attempt = await orch.verify()
    assert attempt.outcome == VerificationOutcome.NO_FACE_DETECTED
    assert attempt.live_descriptor is None


@pytest.mark.asyncio
async def test_extraction_error_is_system_error_and_keeps_readiness():
    rsm = _ready(("Alice", vec(0.0)))
    orch = _orchestrator(rsm, live=ExtractionError("onnx session died"))

    attempt = await orch.verify()

    assert attempt.outcome == VerificationOutcome.SYSTEM_ERROR
    assert "onnx session died" in attempt.error
    assert rsm.state == ReadinessState.READY
    # no automatic retry
    assert orch.service.extract_calls == ["live"]


@pytest.mark.asyncio
async def test_extraction_timeout_is_system_error():
    rsm = _ready(("Alice", vec(0.0)))
    orch = _orchestrator(rsm, live=vec(0.0), config=VerifierConfig(extraction_timeout=0.01))
    orch.service.delays["live"] = 0.5

    attempt = await orch.verify()

    assert attempt.outcome == VerificationOutcome.SYSTEM_ERROR
    assert "timed out" in attempt.error


@pytest.mark.asyncio
async def test_dimension_mismatch_fails_attempt_only():
    rsm = _ready(("Alice", vec(0.0, dim=4)))
    orch = _orchestrator(rsm, live=vec(0.0, dim=8))

    attempt = await orch.verify()

    assert attempt.outcome == VerificationOutcome.SYSTEM_ERROR
    assert "dimension" in attempt.error
    assert rsm.state == ReadinessState.READY


@pytest.mark.asyncio
async def test_event_carries_last_known_location():
    cell = LocationCell()
    cell.set(Geolocation(lat=19.4326, lon=-99.1332))
    events = []
    orch = _orchestrator(_ready(("Alice", vec(0.0))), live=vec(0.1), events=events, location=cell)

    await orch.verify()

    assert events[0].geolocation == Geolocation(lat=19.4326, lon=-99.1332)


@pytest.mark.asyncio
async def test_failing_callback_does_not_change_outcome():
    def boom(event):
        raise RuntimeError("backend down")

    orch = _orchestrator(_ready(("Alice", vec(0.0))), live=vec(0.1))
    orch.on_success = boom

    attempt = await orch.verify()

    assert attempt.outcome == VerificationOutcome.ACCEPTED


@pytest.mark.asyncio
async def test_async_callback_is_awaited_once():
    received = []

    async def on_success(event):
        await asyncio.sleep(0)
        received.append(event.identity)

    orch = _orchestrator(_ready(("Alice", vec(0.0))), live=vec(0.1))
    orch.on_success = on_success

    await orch.verify()

    assert received == ["Alice"]


@pytest.mark.asyncio
async def test_repeated_verify_is_idempotent():
    events = []
    rsm = _ready(("Alice", vec(0.0)), ("Bob", vec(0.8)))
    orch = _orchestrator(rsm, live=vec(0.6), events=events)
    gallery_before = rsm.gallery

    first = await orch.verify()
    second = await orch.verify()

    assert first.outcome == second.outcome == VerificationOutcome.ACCEPTED
    assert first.identity == second.identity == "Bob"
    assert first.distance == second.distance
    assert len(events) == 2
    assert rsm.gallery is gallery_before
    assert rsm.state == ReadinessState.READY


@pytest.mark.asyncio
async def test_abandoned_attempt_leaves_shared_state_intact():
    rsm = _ready(("Alice", vec(0.0)))
    orch = _orchestrator(rsm, live=vec(0.1))
    orch.service.delays["live"] = 0.5

    task = asyncio.ensure_future(orch.verify())
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    orch.service.delays["live"] = 0
    attempt = await orch.verify()
    assert attempt.outcome == VerificationOutcome.ACCEPTED
    assert rsm.state == ReadinessState.READY
