"""
Google Maps Web Services Client
Geocoding, nearby places and directions over plain HTTPS.
"""
import math
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger()

MAPS_API_URL = "https://maps.googleapis.com/maps/api"

# Statuses that mean "nothing found" rather than a failed request
_EMPTY_STATUSES = ("ZERO_RESULTS", "NOT_FOUND")


class PlacesError(Exception):
    """A Maps request failed (transport, HTTP status or API status)."""


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres."""
    earth_radius_km = 6371.0
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return earth_radius_km * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class GoogleMapsClient:
    """Async client for the Geocoding, Places Nearby and Directions APIs."""

    def __init__(self, api_key: str, timeout: float = 10.0, base_url: str = MAPS_API_URL):
        self.api_key = api_key
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _get(self, path: str, params: dict) -> dict:
        if not self.api_key:
            raise PlacesError("Google Maps API key not configured")

        params = {**params, "key": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(f"{self.base_url}/{path}", params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error("maps_request_failed", path=path, error=str(e))
            raise PlacesError(f"Maps request to {path} failed: {e}") from e
        except ValueError as e:
            raise PlacesError(f"Maps response from {path} was not JSON") from e

        status = data.get("status", "OK")
        if status != "OK" and status not in _EMPTY_STATUSES:
            message = data.get("error_message") or status
            logger.error("maps_api_error", path=path, status=status, error=message)
            raise PlacesError(f"Maps API error: {message}")
        return data

    async def geocode(self, address: str) -> Optional[tuple[float, float]]:
        """Coordinates (lat, lng) of the best match, or None when nothing matched."""
        data = await self._get("geocode/json", {"address": address})
        results = data.get("results") or []
        if not results:
            return None
        location = results[0].get("geometry", {}).get("location", {})
        if "lat" not in location or "lng" not in location:
            return None
        return float(location["lat"]), float(location["lng"])

    async def places_nearby(
        self,
        lat: float,
        lng: float,
        radius_m: int,
        place_type: str,
        keyword: Optional[str] = None,
    ) -> list[dict]:
        params = {
            "location": f"{lat},{lng}",
            "radius": int(radius_m),
            "type": place_type,
        }
        if keyword:
            params["keyword"] = keyword
        data = await self._get("place/nearbysearch/json", params)
        return data.get("results") or []

    async def directions(self, origin: str, destination: str, mode: str = "walking") -> list[dict]:
        """Routes between two places; mode is a Directions API travel mode."""
        data = await self._get(
            "directions/json",
            {"origin": origin, "destination": destination, "mode": mode},
        )
        return data.get("routes") or []
