"""Point-in-zone engines"""

from typing import Optional

from oz_locator.config import settings
from oz_locator.engines.base import LoadedZones, ZoneEngine, ZoneMatch
from oz_locator.engines.memory import InMemoryZoneEngine
from oz_locator.engines.postgis import PostGISZoneEngine


def create_engine_for(name: Optional[str] = None) -> ZoneEngine:
    """Build the engine selected by name (defaults to settings.zone_engine)"""
    name = (name or settings.zone_engine).lower()
    if name == InMemoryZoneEngine.name:
        return InMemoryZoneEngine()
    if name == PostGISZoneEngine.name:
        return PostGISZoneEngine()
    raise ValueError(f"Unknown zone engine: {name}")


__all__ = [
    "LoadedZones",
    "ZoneEngine",
    "ZoneMatch",
    "InMemoryZoneEngine",
    "PostGISZoneEngine",
    "create_engine_for",
]
