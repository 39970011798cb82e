"""Base zone engine"""

from abc import ABC, abstractmethod
from typing import NamedTuple, Optional

from oz_locator.services.zone_cache import CacheSnapshot


class ZoneMatch(NamedTuple):
    """Outcome of one point lookup"""
    zone_id: Optional[str]
    candidates: int

    @property
    def in_zone(self) -> bool:
        return self.zone_id is not None


class LoadedZones(ABC):
    """Queryable state built from one snapshot; immutable once built"""

    engine_name: str = ""

    def __init__(self, snapshot: CacheSnapshot):
        self.snapshot = snapshot

    def activate(self):
        """Called when this state becomes the one answering lookups"""
        pass

    @abstractmethod
    async def locate(self, lat: float, lon: float) -> ZoneMatch:
        """Find the zone containing (lat, lon); the first match in dataset order wins"""
        pass


class ZoneEngine(ABC):
    """Base class for zone engines"""

    name: str = ""

    @abstractmethod
    def load(self, snapshot: CacheSnapshot) -> LoadedZones:
        """Build queryable state for a snapshot; may block, callers run it off the event loop"""
        pass
