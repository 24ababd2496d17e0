from __future__ import annotations

import asyncio

from typing import Optional

from faceattend.interfaces import Geolocation, GeolocationSource
from faceattend.utils.log import get_logger

logger = get_logger(__name__)


class LocationCell:
    """Single slot holding the last known position (None until acquired)."""

    def __init__(self) -> None:
        self._value: Optional[Geolocation] = None

    def get(self) -> Optional[Geolocation]:
        return self._value

    def set(self, value: Geolocation) -> None:
        self._value = value


async def acquire_location(source: GeolocationSource, cell: LocationCell) -> Optional[Geolocation]:
    """One-shot acquisition. Failures are logged and leave the cell untouched."""
    try:
        pos = await source.current_position()
    except Exception as e:
        logger.error(f"geolocation failed: {e}")
        return None
    if pos is None:
        logger.warning("geolocation source returned no position")
        return None
    loc = Geolocation(lat=float(pos.lat), lon=float(pos.lon))
    cell.set(loc)
    logger.info(f"geolocation acquired: lat={loc.lat:.6f}, lon={loc.lon:.6f}")
    return loc


def start_location_tracking(source: GeolocationSource, cell: LocationCell) -> "asyncio.Task[Optional[Geolocation]]":
    """Fire-and-forget acquisition running next to model/gallery loading."""
    return asyncio.ensure_future(acquire_location(source, cell))
