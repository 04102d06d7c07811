"""SQLAlchemy models."""

from hotspots.models.hotspot import Hotspot, HotspotSignal
from hotspots.models.signal import Signal

__all__ = [
    "Signal",
    "Hotspot",
    "HotspotSignal",
]
