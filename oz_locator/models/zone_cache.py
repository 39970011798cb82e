"""Persisted zone snapshot: the single latest processed dataset plus its index"""

from sqlalchemy import Column, DateTime, Index, Integer, LargeBinary, String, Uuid
from oz_locator.database import Base
import uuid


class ZoneCacheSnapshot(Base):
    """One row per snapshot; only the latest row is retained"""

    __tablename__ = "zone_cache_snapshots"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    version = Column(String(40), nullable=False)
    data_hash = Column(String(64), nullable=False, index=True)  # SHA256 of canonical feature collection
    feature_count = Column(Integer, nullable=False)
    last_updated = Column(DateTime, nullable=False)
    next_refresh = Column(DateTime, nullable=False)
    geojson_data = Column(LargeBinary, nullable=False)  # gzip'd canonical FeatureCollection
    spatial_index = Column(LargeBinary, nullable=False)  # gzip'd index entry records
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_zone_cache_created", "created_at"),
    )

    def __repr__(self):
        return f"<ZoneCacheSnapshot(version='{self.version}', data_hash='{self.data_hash[:8]}', features={self.feature_count})>"
