from __future__ import annotations

import asyncio

from enum import Enum
from typing import Callable, List, Optional

from faceattend.face.gallery import Gallery
from faceattend.utils.log import get_logger

logger = get_logger(__name__)


class ReadinessState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


Listener = Callable[["ReadinessState", Optional[str]], None]


class ReadinessStateMachine:
    """Latch tracking whether verification may run.

    LOADING -> READY once models are loaded and a non-empty gallery arrived.
    LOADING -> FAILED on a fatal model or gallery load error. Both terminal
    states stick until `reset()`; inputs arriving after that are ignored.
    The gallery is only handed out while READY.
    """

    def __init__(self) -> None:
        self._state = ReadinessState.LOADING
        self._models_loaded = False
        self._pending_gallery: Optional[Gallery] = None
        self._gallery: Optional[Gallery] = None
        self._failure: Optional[str] = None
        self._listeners: List[Listener] = []
        self._settled: Optional[asyncio.Event] = None

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ReadinessState.READY

    @property
    def failure(self) -> Optional[str]:
        return self._failure

    @property
    def gallery(self) -> Optional[Gallery]:
        return self._gallery if self._state == ReadinessState.READY else None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(state, failure)` on every transition. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def models_loaded(self) -> None:
        if self._state != ReadinessState.LOADING:
            return
        self._models_loaded = True
        self._maybe_ready()

    def models_failed(self, reason: str) -> None:
        self._fail(f"model load failed: {reason}")

    def gallery_loaded(self, gallery: Gallery) -> None:
        if self._state != ReadinessState.LOADING:
            return
        if gallery is None or len(gallery) == 0:
            self._fail("no usable gallery")
            return
        self._pending_gallery = gallery
        self._maybe_ready()

    def gallery_failed(self, reason: str) -> None:
        self._fail(f"no usable gallery: {reason}")

    def reset(self) -> None:
        """Explicit reload: back to LOADING with nothing loaded."""
        self._models_loaded = False
        self._pending_gallery = None
        self._gallery = None
        self._failure = None
        if self._settled is not None:
            self._settled.clear()
        self._transition(ReadinessState.LOADING)

    async def wait_ready(self) -> ReadinessState:
        """Suspend until READY or FAILED and return that state."""
        if self._state != ReadinessState.LOADING:
            return self._state
        if self._settled is None:
            self._settled = asyncio.Event()
        await self._settled.wait()
        return self._state

    def _maybe_ready(self) -> None:
        if self._models_loaded and self._pending_gallery is not None and len(self._pending_gallery) > 0:
            self._gallery = self._pending_gallery
            self._pending_gallery = None
            self._transition(ReadinessState.READY)

    def _fail(self, reason: str) -> None:
        if self._state != ReadinessState.LOADING:
            return
        self._failure = reason
        self._pending_gallery = None
        self._transition(ReadinessState.FAILED)

    def _transition(self, new_state: ReadinessState) -> None:
        old = self._state
        self._state = new_state
        if new_state == ReadinessState.FAILED:
            logger.error(f"readiness: {old.value} -> {new_state.value} ({self._failure})")
        else:
            logger.info(f"readiness: {old.value} -> {new_state.value}")
        if new_state != ReadinessState.LOADING and self._settled is not None:
            self._settled.set()
        for listener in list(self._listeners):
            try:
                listener(new_state, self._failure)
            except Exception as e:
                logger.error(f"readiness listener failed on {new_state.value}: {e}")
