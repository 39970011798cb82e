"""Remote GeoJSON source for the opportunity zone dataset"""

import json
from typing import Any, Dict, Optional

import httpx
import structlog

from oz_locator.config import settings
from oz_locator.errors import MalformedDatasetError, TransientFetchError

logger = structlog.get_logger()


class ZoneDatasetSource:
    """Downloads the raw zone FeatureCollection over HTTP"""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.oz_data_url
        self.timeout_seconds = timeout_seconds or settings.refresh_timeout_seconds
        self.user_agent = user_agent or settings.geocoding_user_agent
        self.transport = transport

    async def fetch(self) -> Dict[str, Any]:
        """
        Fetch and decode the dataset.

        Raises:
            TransientFetchError: network failure, timeout or non-2xx response
            MalformedDatasetError: body is not a FeatureCollection with features
        """
        logger.info("Downloading zone dataset", url=self.url)

        headers = {
            "Cache-Control": "no-cache",
            "User-Agent": self.user_agent,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.get(self.url, headers=headers, follow_redirects=True)
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Timed out downloading zone dataset: {e}") from e
        except httpx.HTTPError as e:
            raise TransientFetchError(f"Failed to download zone dataset: {e}") from e

        if response.status_code >= 400:
            raise TransientFetchError(
                f"Zone dataset download failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedDatasetError(f"Zone dataset is not valid JSON: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("features"), list):
            raise MalformedDatasetError("Invalid GeoJSON format: missing features array")

        logger.info(
            "Zone dataset downloaded",
            url=self.url,
            feature_count=len(data["features"]),
            bytes=len(response.content),
        )
        return data
