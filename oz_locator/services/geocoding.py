"""Address geocoding with a durable TTL cache in front of the external provider"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, Optional

import httpx
import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from oz_locator.config import settings
from oz_locator.database import SessionLocal
from oz_locator.errors import CacheUnavailableError, GeocodingError, GeocodingRateLimitError
from oz_locator.models.geocoding_cache import GeocodingCacheEntry
from oz_locator.observability.metrics import GEOCODE_CACHE_HITS, GEOCODE_CACHE_MISSES, GEOCODE_REQUESTS
from oz_locator.utils import utcnow

logger = structlog.get_logger()


@dataclass
class GeocodingResult:
    latitude: float
    longitude: float
    display_name: str
    not_found: bool = False
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "display_name": self.display_name,
            "not_found": self.not_found,
            "cached": self.cached,
        }


def normalize_address(address: str) -> str:
    return address.strip().lower()


def sanitize_display_name(display_name: Optional[str], address: str) -> str:
    """Drop the trailing two comma-separated parts (typically postcode and country)"""
    if not display_name:
        return address
    parts = display_name.split(",")
    if len(parts) > 2:
        return ",".join(parts[:-2]).strip()
    return display_name


class GeocodingCache:
    """
    Durable geocode cache keyed by normalized address.

    Entries expire after the TTL; an expired entry found on read is deleted
    and reported as a miss. Not-found answers are cached like any other.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.ttl = ttl or timedelta(days=settings.geocoding_cache_ttl_days)
        self.clock = clock

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheUnavailableError(f"Geocoding cache unavailable: {e}") from e
        finally:
            db.close()

    def get(self, address: str) -> Optional[GeocodingResult]:
        key = normalize_address(address)
        with self._session() as db:
            entry = db.query(GeocodingCacheEntry).filter(GeocodingCacheEntry.address == key).first()
            if entry is None:
                return None

            if self.clock() >= entry.expires_at:
                logger.info("Geocoding cache entry expired", address=key)
                db.delete(entry)
                db.commit()
                return None

            return GeocodingResult(
                latitude=entry.latitude,
                longitude=entry.longitude,
                display_name=entry.display_name,
                not_found=entry.not_found,
                cached=True,
            )

    def put(self, address: str, result: GeocodingResult):
        """Upsert the result for the normalized address"""
        key = normalize_address(address)
        now = self.clock()
        values = {
            "latitude": result.latitude,
            "longitude": result.longitude,
            "display_name": result.display_name,
            "not_found": result.not_found,
            "expires_at": now + self.ttl,
            "updated_at": now,
        }

        with self._session() as db:
            try:
                self._upsert(db, key, values, now)
            except IntegrityError:
                # Another writer inserted the same address first
                db.rollback()
                self._upsert(db, key, values, now)

    @staticmethod
    def _upsert(db: Session, key: str, values: Dict[str, Any], now: datetime):
        entry = db.query(GeocodingCacheEntry).filter(GeocodingCacheEntry.address == key).first()
        if entry is None:
            db.add(GeocodingCacheEntry(address=key, created_at=now, **values))
        else:
            for field, value in values.items():
                setattr(entry, field, value)
        db.commit()

    def clear_expired(self) -> int:
        with self._session() as db:
            deleted = db.query(GeocodingCacheEntry).filter(
                GeocodingCacheEntry.expires_at < self.clock()
            ).delete(synchronize_session=False)
            db.commit()

        logger.info("Cleared expired geocoding cache entries", deleted=deleted)
        return deleted

    def stats(self) -> Dict[str, int]:
        with self._session() as db:
            total = db.query(GeocodingCacheEntry).count()
            expired = db.query(GeocodingCacheEntry).filter(
                GeocodingCacheEntry.expires_at < self.clock()
            ).count()
        return {"total_cached": total, "expired_entries": expired}


class GeocodingClient:
    """Client for the geocode.maps.co search API"""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url or settings.geocoding_api_url
        self.api_key = api_key if api_key is not None else settings.geocoding_api_key
        self.timeout_seconds = timeout_seconds or settings.geocoding_timeout_seconds
        self.user_agent = user_agent or settings.geocoding_user_agent
        self.transport = transport

    async def geocode(self, address: str) -> GeocodingResult:
        if not self.api_key:
            raise GeocodingError("Geocoding API key not configured")

        logger.info("Geocoding address", address=address)

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.get(
                    self.api_url,
                    params={"q": address, "api_key": self.api_key},
                    headers={"User-Agent": self.user_agent},
                )
        except httpx.TimeoutException as e:
            GEOCODE_REQUESTS.labels(outcome="timeout").inc()
            raise GeocodingError(f"Geocoding request timed out after {self.timeout_seconds} seconds") from e
        except httpx.HTTPError as e:
            GEOCODE_REQUESTS.labels(outcome="error").inc()
            raise GeocodingError(f"Geocoding request failed: {e}") from e

        if response.status_code == 429:
            GEOCODE_REQUESTS.labels(outcome="rate_limited").inc()
            message = f"Geocoding rate limited: {response.status_code} {response.reason_phrase}"
            logger.warning(message, retry_after=response.headers.get("retry-after"))
            raise GeocodingRateLimitError(message, dict(response.headers))

        if response.status_code >= 400:
            GEOCODE_REQUESTS.labels(outcome="error").inc()
            logger.error("Geocoding failed", status_code=response.status_code)
            raise GeocodingError(f"Geocoding API error: {response.status_code} {response.reason_phrase}")

        try:
            data = response.json()
        except ValueError as e:
            GEOCODE_REQUESTS.labels(outcome="error").inc()
            raise GeocodingError("Invalid geocoding response: body is not JSON") from e

        GEOCODE_REQUESTS.labels(outcome="success").inc()

        if not isinstance(data, list) or not data:
            logger.warning("No geocoding results found", address=address)
            return GeocodingResult(latitude=0.0, longitude=0.0, display_name=address, not_found=True)

        first = data[0]
        if not first.get("lat") or not first.get("lon"):
            raise GeocodingError("Invalid geocoding response: missing coordinates")

        try:
            latitude, longitude = float(first["lat"]), float(first["lon"])
        except (TypeError, ValueError) as e:
            raise GeocodingError("Invalid geocoding response: coordinates are not numeric") from e

        result = GeocodingResult(
            latitude=latitude,
            longitude=longitude,
            display_name=sanitize_display_name(first.get("display_name"), address),
        )
        logger.info("Geocoded address", address=address, latitude=latitude, longitude=longitude)
        return result


class GeocodingService:
    """Consults the cache before falling back to the live provider"""

    def __init__(self, cache: Optional[GeocodingCache] = None, client: Optional[GeocodingClient] = None):
        self.cache = cache or GeocodingCache()
        self.client = client or GeocodingClient()

    async def geocode_address(self, address: str) -> GeocodingResult:
        """
        Resolve an address to coordinates.

        Cache read and write failures are logged and bypassed; provider
        failures propagate.

        Raises:
            ValueError: empty address
            GeocodingError: provider failure
            GeocodingRateLimitError: provider answered 429
        """
        if not address or not address.strip():
            raise ValueError("Address cannot be empty")

        try:
            cached = self.cache.get(address)
        except CacheUnavailableError as e:
            logger.warning("Geocoding cache read failed", address=address, error=str(e))
            cached = None

        if cached is not None:
            GEOCODE_CACHE_HITS.inc()
            logger.info("Using cached geocoding result", address=address)
            return cached

        GEOCODE_CACHE_MISSES.inc()
        result = await self.client.geocode(address)

        try:
            self.cache.put(address, result)
        except CacheUnavailableError as e:
            logger.warning("Failed to cache geocoding result", address=address, error=str(e))

        return result

    def clear_expired_cache(self) -> int:
        return self.cache.clear_expired()

    def get_cache_stats(self) -> Dict[str, int]:
        return self.cache.stats()
