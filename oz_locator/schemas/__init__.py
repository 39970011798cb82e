"""Pydantic schemas for API responses"""

from .common import ErrorResponse
from .zones import (
    AddressCheckResponse, GeocodeResponse, RefreshResponse,
    SnapshotMetadataResponse, ZoneCheckResponse, ZoneStatusResponse
)
