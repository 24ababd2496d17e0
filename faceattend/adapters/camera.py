import asyncio

from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from faceattend.errors import CaptureError
from faceattend.interfaces import Geolocation
from faceattend.utils.log import get_logger

logger = get_logger(__name__)


class OpenCVCamera:
    """Grabs a single still frame from a `cv2.VideoCapture` device per call."""

    def __init__(self, device: Union[int, str] = 0, warmup_frames: int = 3):
        self.device = device
        self.warmup_frames = int(max(0, warmup_frames))

    def _grab(self) -> Optional[np.ndarray]:
        cap = cv2.VideoCapture(self.device)
        if not cap.isOpened():
            raise CaptureError(f"failed to open camera: {self.device}")
        try:
            # Auto-exposure needs a few frames before the image is usable.
            for _ in range(self.warmup_frames):
                cap.read()
            ok, frame = cap.read()
            if not ok or frame is None:
                return None
            return frame
        finally:
            cap.release()

    async def capture_frame(self) -> Optional[np.ndarray]:
        return await asyncio.to_thread(self._grab)


class ImageFileCamera:
    """Serves a still image from disk as the captured frame."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def capture_frame(self) -> Optional[np.ndarray]:
        if not self.path.is_file():
            logger.warning(f"图像不存在: {self.path}")
            return None
        return await asyncio.to_thread(cv2.imread, str(self.path))


class StaticGeolocationSource:
    """Fixed coordinates, e.g. the configured site location of a kiosk."""

    def __init__(self, lat: float, lon: float):
        self._position = Geolocation(lat=float(lat), lon=float(lon))

    async def current_position(self) -> Geolocation:
        return self._position
