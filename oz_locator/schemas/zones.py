"""Zone lookup and geocoding Pydantic schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SnapshotMetadataResponse(BaseModel):
    """Identity and freshness of the snapshot that answered a lookup"""
    version: str = Field(..., description="Snapshot version (creation timestamp)")
    data_hash: str = Field(..., description="SHA-256 of the canonical feature collection")
    feature_count: int = Field(..., description="Number of zones in the snapshot")
    last_updated: datetime = Field(..., description="When the snapshot was last confirmed current")
    next_refresh_due: datetime = Field(..., description="When the snapshot becomes stale")


class ZoneCheckResponse(BaseModel):
    """Point-in-zone lookup result"""
    lat: float = Field(..., description="Latitude queried")
    lon: float = Field(..., description="Longitude queried")
    in_zone: bool = Field(..., description="Whether the point lies inside an opportunity zone")
    zone_id: Optional[str] = Field(None, description="Identifier of the containing zone")
    stale: bool = Field(default=False, description="Answered from a snapshot past its refresh time")
    engine: str = Field(..., description="Engine that answered the lookup")
    metadata: SnapshotMetadataResponse


class GeocodeResponse(BaseModel):
    """Address geocoding result"""
    address: str = Field(..., description="Address as submitted")
    lat: float = Field(..., description="Latitude")
    lon: float = Field(..., description="Longitude")
    display_name: str = Field(..., description="Provider display name, shortened")
    not_found: bool = Field(default=False, description="Provider returned no match")
    cached: bool = Field(default=False, description="Served from the geocoding cache")


class AddressCheckResponse(BaseModel):
    """Geocode an address, then look up its zone"""
    address: str
    geocode: GeocodeResponse
    zone: Optional[ZoneCheckResponse] = Field(None, description="Absent when the address could not be geocoded")


class ZoneStatusResponse(BaseModel):
    """Zone service status"""
    is_initialized: bool
    is_initializing: bool
    state: str
    engine: str
    feature_count: int
    last_updated: Optional[datetime] = None
    next_refresh_due: Optional[datetime] = None
    data_hash: Optional[str] = None
    version: Optional[str] = None
    stale: bool = False
    db_has_data: Optional[bool] = None
    last_refresh_error: Optional[str] = None
    next_refresh_attempt_at: Optional[datetime] = None


class RefreshResponse(BaseModel):
    """Outcome of a forced refresh"""
    status: str = Field(default="refreshed")
    metadata: SnapshotMetadataResponse
