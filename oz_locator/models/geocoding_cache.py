"""Address to coordinate cache"""

from sqlalchemy import Boolean, Column, DateTime, Float, Index, String, Text, Uuid
from oz_locator.database import Base
import uuid


class GeocodingCacheEntry(Base):
    """Geocoding result keyed by normalized (trimmed, lower-cased) address"""

    __tablename__ = "geocoding_cache"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    address = Column(String(512), nullable=False, unique=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    display_name = Column(Text, nullable=False)
    not_found = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_geocoding_cache_expires", "expires_at"),
    )
