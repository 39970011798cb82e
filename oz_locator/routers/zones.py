"""Opportunity zone lookup endpoints"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from oz_locator.schemas.common import ErrorResponse
from oz_locator.schemas.zones import (
    AddressCheckResponse,
    GeocodeResponse,
    RefreshResponse,
    SnapshotMetadataResponse,
    ZoneCheckResponse,
    ZoneStatusResponse,
)
from oz_locator.services.geocoding import GeocodingResult, GeocodingService
from oz_locator.services.zone_service import ZoneLookupResult, ZoneService

router = APIRouter()

ERROR_RESPONSES = {
    502: {"model": ErrorResponse, "description": "Upstream dataset or geocoder failure"},
    503: {"model": ErrorResponse, "description": "Zone data not initialized or storage unavailable"},
}


def get_zone_service(request: Request) -> ZoneService:
    """Dependency returning the process-wide zone service"""
    return request.app.state.zone_service


def get_geocoding_service(request: Request) -> GeocodingService:
    """Dependency returning the process-wide geocoding service"""
    return request.app.state.geocoding_service


def _zone_response(lat: float, lon: float, result: ZoneLookupResult) -> ZoneCheckResponse:
    return ZoneCheckResponse(
        lat=lat,
        lon=lon,
        in_zone=result.in_zone,
        zone_id=result.zone_id,
        stale=result.stale,
        engine=result.engine,
        metadata=SnapshotMetadataResponse(**result.metadata.to_dict()),
    )


def _geocode_response(address: str, result: GeocodingResult) -> GeocodeResponse:
    return GeocodeResponse(
        address=address,
        lat=result.latitude,
        lon=result.longitude,
        display_name=result.display_name,
        not_found=result.not_found,
        cached=result.cached,
    )


@router.get("/check", response_model=ZoneCheckResponse, responses=ERROR_RESPONSES)
async def check_point(
    lat: float = Query(..., ge=-90, le=90, description="Latitude in decimal degrees"),
    lon: float = Query(..., ge=-180, le=180, description="Longitude in decimal degrees"),
    service: ZoneService = Depends(get_zone_service),
):
    """Check whether a point lies inside an opportunity zone"""
    try:
        result = await service.resolve_point(lat, lon)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return _zone_response(lat, lon, result)


@router.get("/geocode", response_model=GeocodeResponse, responses={404: {"model": ErrorResponse}, **ERROR_RESPONSES})
async def geocode(
    address: str = Query(..., min_length=1, description="Free-form street address"),
    geocoding: GeocodingService = Depends(get_geocoding_service),
):
    """Resolve an address to coordinates (cached)"""
    try:
        result = await geocoding.geocode_address(address)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if result.not_found:
        raise HTTPException(status_code=404, detail=f"Address not found: {address}")

    return _geocode_response(address, result)


@router.get("/check-address", response_model=AddressCheckResponse, responses=ERROR_RESPONSES)
async def check_address(
    address: str = Query(..., min_length=1, description="Free-form street address"),
    service: ZoneService = Depends(get_zone_service),
    geocoding: GeocodingService = Depends(get_geocoding_service),
):
    """Geocode an address and check whether it lies inside an opportunity zone"""
    try:
        location = await geocoding.geocode_address(address)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    response = AddressCheckResponse(address=address, geocode=_geocode_response(address, location))
    if location.not_found:
        return response

    result = await service.resolve_point(location.latitude, location.longitude)
    response.zone = _zone_response(location.latitude, location.longitude, result)
    return response


@router.get("/status", response_model=ZoneStatusResponse)
async def status(service: ZoneService = Depends(get_zone_service)):
    """Snapshot and refresh state of the zone service"""
    return ZoneStatusResponse(**await service.get_status())


@router.post("/refresh", response_model=RefreshResponse, responses=ERROR_RESPONSES)
async def refresh(service: ZoneService = Depends(get_zone_service)):
    """Download and rebuild the zone snapshot now"""
    metadata = await service.force_refresh()
    return RefreshResponse(metadata=SnapshotMetadataResponse(**metadata.to_dict()))
