"""
Test configuration and fixtures for the Opportunity Zone locator test suite.

Every test runs against its own in-memory SQLite database; outbound HTTP is
replaced by stubs or httpx.MockTransport.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "console")

from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from oz_locator.database import Base, build_engine
from oz_locator.engines.memory import InMemoryZoneEngine
from oz_locator.geometry.preprocess import GeometryPreprocessor
from oz_locator.services.zone_cache import ZoneCacheStore
from oz_locator.services.zone_service import ZoneService

# Import all models to ensure they're registered
from oz_locator.models import GeocodingCacheEntry, ZoneCacheSnapshot  # noqa: F401
from tests.zone_fixtures import FakeClock, StubZoneSource


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test"""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(session_factory):
    return ZoneCacheStore(session_factory)


@pytest.fixture
def preprocessor():
    return GeometryPreprocessor(tolerance=0.0001)


@pytest.fixture
def source():
    return StubZoneSource()


@pytest.fixture
def zone_service(store, source, preprocessor, clock):
    return ZoneService(
        store=store,
        source=source,
        preprocessor=preprocessor,
        engine=InMemoryZoneEngine(),
        refresh_interval=timedelta(hours=24),
        refresh_timeout=5.0,
        db_load_timeout=5.0,
        backoff_initial=60.0,
        backoff_max=600.0,
        clock=clock,
    )
