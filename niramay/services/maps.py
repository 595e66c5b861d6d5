import logging
from typing import Any, Dict, Optional
import requests
from niramay.schemas.schemas import PlaceResult

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
DIRECTIONS_BASE_URL = "https://www.google.com/maps/dir/"

# Approximate bounding box of India
INDIA_BOUNDS = {"north": 37.6, "south": 6.4, "east": 97.25, "west": 68.7}


class MapsService:
    """Handle on the Google Maps web services.

    Created once when the application starts and kept on ``app.state`` for the
    life of the process; routes receive it through a dependency.
    """

    def __init__(self, api_key: Optional[str], timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def close(self) -> None:
        self.session.close()

    def reverse_geocode(self, lat: float, lng: float) -> PlaceResult:
        """Address, ward and city for a coordinate. Degrades to an empty address on any failure."""
        empty = PlaceResult(latitude=lat, longitude=lng)
        if not self.enabled:
            return empty

        try:
            r = self.session.get(
                GEOCODE_URL,
                params={"latlng": f"{lat},{lng}", "key": self.api_key},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError):
            logger.exception("Reverse geocoding failed for (%s, %s)", lat, lng)
            return empty

        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            logger.warning("Reverse geocoding returned status %s", data.get("status"))
            return empty

        return self._place_from_result(results[0], lat, lng)

    @staticmethod
    def _place_from_result(result: Dict[str, Any], lat: float, lng: float) -> PlaceResult:
        place = PlaceResult(address=result.get("formatted_address") or "", latitude=lat, longitude=lng)
        for component in result.get("address_components") or []:
            types = component.get("types") or []
            name = component.get("long_name")
            if "sublocality_level_1" in types or "sublocality" in types:
                place.ward = place.ward or name
            elif "locality" in types:
                place.city = name
            elif "administrative_area_level_1" in types:
                place.state = name
            elif "postal_code" in types:
                place.postal_code = name
        return place

    @staticmethod
    def directions_url(origin_lat: float, origin_lng: float, dest_lat: float, dest_lng: float, travel_mode: str = "driving") -> str:
        mode = "" if travel_mode == "driving" else f"?dirflg={travel_mode[0]}"
        return f"{DIRECTIONS_BASE_URL}{origin_lat},{origin_lng}/{dest_lat},{dest_lng}{mode}"

    @staticmethod
    def is_location_in_india(lat: float, lng: float) -> bool:
        return (
            INDIA_BOUNDS["south"] <= lat <= INDIA_BOUNDS["north"]
            and INDIA_BOUNDS["west"] <= lng <= INDIA_BOUNDS["east"]
        )
