"""
Google Maps Platform client used to collect scoring inputs.

Covers geocoding, reverse geocoding, nearby search, transit station search,
place details, and address autocomplete.  Every request is recorded on the
active trace (see geo_trace.py).  Provider failures raise ValueError before
any scoring happens; the client never retries.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from geo_trace import get_trace, set_trace

logger = logging.getLogger(__name__)

# Search radius for nearby POIs and transit stations.
SEARCH_RADIUS_M = 2000

# Station types queried by transit_stations(), in result order.
TRANSIT_SEARCH_TYPES = ("bus_station", "train_station", "subway_station")

AUTOCOMPLETE_MIN_CHARS = 3

PLACE_DETAILS_FIELDS = [
    "place_id",
    "name",
    "vicinity",
    "formatted_address",
    "geometry",
    "types",
    "rating",
    "user_ratings_total",
    "price_level",
    "opening_hours",
    "website",
    "formatted_phone_number",
    "business_status",
]


@dataclass(frozen=True)
class GeocodeResult:
    lat: float
    lng: float
    formatted_address: str


def dedupe_by_place_id(places: List[Dict]) -> List[Dict]:
    """Remove duplicate places by place_id, preserving first occurrence.

    Places without a place_id are kept as-is.
    """
    seen: set = set()
    unique: List[Dict] = []
    for p in places:
        pid = p.get("place_id")
        if pid:
            if pid in seen:
                continue
            seen.add(pid)
        unique.append(p)
    return unique


class GoogleMapsClient:
    """Client for Google Maps APIs"""

    # Per-call timeout in seconds.  Keeps any single request from hanging
    # the whole evaluation.
    DEFAULT_TIMEOUT = 10

    def __init__(self, api_key: str):
        self.api_key = api_key
        self.base_url = "https://maps.googleapis.com/maps/api"
        self.session = requests.Session()
        self.session.trust_env = False

    def _traced_get(self, endpoint_name: str, url: str, params: dict) -> dict:
        """GET request with automatic trace recording."""
        t0 = time.time()
        response = self.session.get(url, params=params, timeout=self.DEFAULT_TIMEOUT)
        elapsed_ms = int((time.time() - t0) * 1000)
        data = response.json() if response.ok else {}
        provider_status = data.get("status", "") if isinstance(data, dict) else ""
        trace = get_trace()
        if trace:
            trace.record_api_call(
                endpoint=endpoint_name,
                elapsed_ms=elapsed_ms,
                status_code=response.status_code,
                provider_status=provider_status,
            )
        response.raise_for_status()
        return data

    @staticmethod
    def _check_status(data: dict, api_name: str):
        status = data.get("status")
        if status not in ("OK", "ZERO_RESULTS"):
            message = data.get("error_message")
            if message:
                logger.warning("%s returned %s: %s", api_name, status, message)
            raise ValueError(f"{api_name} failed: {status}")

    def geocode(self, address: str) -> GeocodeResult:
        """Convert address to lat/lng coordinates."""
        url = f"{self.base_url}/geocode/json"
        params = {"address": address, "key": self.api_key}
        data = self._traced_get("geocode", url, params)

        if data.get("status") != "OK" or not data.get("results"):
            raise ValueError(f"Geocoding failed: {data.get('status')}")

        first = data["results"][0]
        location = first["geometry"]["location"]
        return GeocodeResult(
            lat=location["lat"],
            lng=location["lng"],
            formatted_address=first.get("formatted_address", address),
        )

    def reverse_geocode(self, lat: float, lng: float) -> List[Dict]:
        """Return geocoder results for a coordinate pair (may be empty)."""
        url = f"{self.base_url}/geocode/json"
        params = {"latlng": f"{lat},{lng}", "key": self.api_key}
        data = self._traced_get("reverse_geocode", url, params)
        self._check_status(data, "Reverse geocoding")
        return data.get("results", [])

    def places_nearby(
        self,
        lat: float,
        lng: float,
        place_type: str = "establishment",
        radius_meters: int = SEARCH_RADIUS_M,
    ) -> List[Dict]:
        """Search for places near a location"""
        url = f"{self.base_url}/place/nearbysearch/json"
        params = {
            "location": f"{lat},{lng}",
            "radius": radius_meters,
            "type": place_type,
            "key": self.api_key,
        }
        data = self._traced_get("places_nearby", url, params)
        self._check_status(data, "Places API")
        return data.get("results", [])

    def transit_stations(
        self,
        lat: float,
        lng: float,
        radius_meters: int = SEARCH_RADIUS_M,
    ) -> List[Dict]:
        """Bus, train, and subway stations near a location, de-duplicated.

        The three searches run concurrently; results keep bus -> train ->
        subway order regardless of completion order.
        """
        parent_trace = get_trace()

        def _search(place_type: str) -> List[Dict]:
            set_trace(parent_trace)
            return self.places_nearby(lat, lng, place_type, radius_meters)

        with ThreadPoolExecutor(max_workers=len(TRANSIT_SEARCH_TYPES)) as pool:
            batches = list(pool.map(_search, TRANSIT_SEARCH_TYPES))

        combined = [place for batch in batches for place in batch]
        unique = dedupe_by_place_id(combined)
        logger.info("Transit stations found: %d (%d before de-dup)", len(unique), len(combined))
        return unique

    def place_details(self, place_id: str, fields: Optional[List[str]] = None) -> Dict:
        """Get detailed information about a place"""
        url = f"{self.base_url}/place/details/json"
        params = {
            "place_id": place_id,
            "fields": ",".join(fields or PLACE_DETAILS_FIELDS),
            "key": self.api_key,
        }
        data = self._traced_get("place_details", url, params)
        self._check_status(data, "Place Details API")
        return data.get("result", {})

    def autocomplete(self, text: str) -> List[Dict]:
        """Address predictions for partial input.

        Inputs shorter than AUTOCOMPLETE_MIN_CHARS return [] without a request.
        """
        if not text or len(text) < AUTOCOMPLETE_MIN_CHARS:
            return []
        url = f"{self.base_url}/place/autocomplete/json"
        params = {"input": text, "types": "address", "key": self.api_key}
        data = self._traced_get("autocomplete", url, params)
        self._check_status(data, "Autocomplete API")
        return data.get("predictions", [])
