"""Prometheus metrics for zone lookups, refreshes and geocoding"""

from prometheus_client import Counter, Gauge, Histogram

ZONE_LOOKUPS = Counter(
    'zone_lookups_total',
    'Point-in-zone lookups',
    ['result', 'engine']
)
ZONE_LOOKUP_CANDIDATES = Histogram(
    'zone_lookup_candidates',
    'Bounding-box candidates per lookup',
    buckets=(0, 1, 2, 3, 5, 10, 25)
)
ZONE_REFRESHES = Counter(
    'zone_refreshes_total',
    'Zone dataset refresh attempts',
    ['outcome']
)
ZONE_REFRESH_DURATION = Histogram(
    'zone_refresh_duration_seconds',
    'Zone dataset refresh duration'
)
ZONE_SNAPSHOT_FEATURES = Gauge(
    'zone_snapshot_features',
    'Features in the active zone snapshot'
)
STALE_SNAPSHOT_SERVED = Counter(
    'zone_stale_snapshot_served_total',
    'Lookups answered from a snapshot past its refresh time'
)
GEOCODE_CACHE_HITS = Counter('geocode_cache_hits_total', 'Geocode cache hits')
GEOCODE_CACHE_MISSES = Counter('geocode_cache_misses_total', 'Geocode cache misses')
GEOCODE_REQUESTS = Counter(
    'geocode_provider_requests_total',
    'Requests to the external geocoding provider',
    ['outcome']
)
