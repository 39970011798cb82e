"""Error taxonomy for zone lookups, dataset refreshes and geocoding"""

from typing import Dict, Optional


class ZoneLocatorError(Exception):
    """Base exception for the zone locator."""
    pass


class TransientFetchError(ZoneLocatorError):
    """Network, HTTP or timeout failure while downloading the zone dataset.

    Retryable. The refresh attempt is abandoned and the prior snapshot keeps serving.
    """
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedDatasetError(ZoneLocatorError):
    """The downloaded payload is not a usable FeatureCollection."""
    pass


class FeatureGeometryError(ZoneLocatorError):
    """A single feature has unusable geometry; the feature is skipped."""
    def __init__(self, message: str, feature_index: Optional[int] = None):
        super().__init__(message)
        self.feature_index = feature_index


class CacheUnavailableError(ZoneLocatorError):
    """The storage backend holding the snapshot (or the geometry table) is unreachable."""
    pass


class NotInitializedError(ZoneLocatorError):
    """No snapshot is available yet (cold start), distinct from "not in zone"."""
    pass


class GeocodingError(ZoneLocatorError):
    """The external geocoding provider failed or returned an unusable response."""
    pass


class GeocodingRateLimitError(GeocodingError):
    """The geocoding provider answered HTTP 429."""

    status_code = 429
    code = "GEOCODER_RATE_LIMITED"

    def __init__(self, message: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.retry_after = headers.get("retry-after")
        self.rate_limit_limit = headers.get("x-ratelimit-limit") or headers.get("ratelimit-limit")
        self.rate_limit_remaining = headers.get("x-ratelimit-remaining") or headers.get("ratelimit-remaining")
        self.rate_limit_reset = headers.get("x-ratelimit-reset") or headers.get("ratelimit-reset")
        self.raw_headers = headers
