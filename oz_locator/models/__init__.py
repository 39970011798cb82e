"""Database models for the Opportunity Zone locator"""

from .zone_cache import ZoneCacheSnapshot
from .geocoding_cache import GeocodingCacheEntry

__all__ = [
    "ZoneCacheSnapshot",
    "GeocodingCacheEntry",
]
