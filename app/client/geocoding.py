"""Address lookup through an OpenStreetMap Nominatim server.

Forward geocoding turns a typed address into a position the user can
pin; reverse geocoding turns a photo's GPS fix (or a manual pin) into
the human-readable ``address`` stored with the tree.

Usage:
    async with Geocoder.from_settings(settings) as geocoder:
        result = await geocoder.reverse(40.7829, -73.9654)
        print(result.formatted_address)

Nominatim's usage policy requires an identifying User-Agent and at most
one request per second; callers doing bulk lookups must throttle.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.client.errors import GeocodingError
from app.imaging.coordinates import validate_coordinates

logger = logging.getLogger(__name__)

DEFAULT_GEOCODER_URL = "https://nominatim.openstreetmap.org"
DEFAULT_USER_AGENT = "pin-a-tree/0.1"

LOCALITY_KEYS = ("city", "town", "village", "hamlet", "suburb")


@dataclass(frozen=True)
class AddressComponents:
    street_number: Optional[str] = None
    route: Optional[str] = None
    locality: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None

    @classmethod
    def from_nominatim(cls, address: Dict[str, Any]) -> "AddressComponents":
        return cls(
            street_number=address.get("house_number"),
            route=address.get("road"),
            locality=next((address[k] for k in LOCALITY_KEYS if address.get(k)), None),
            region=address.get("state"),
            country=address.get("country"),
            postal_code=address.get("postcode"),
        )


@dataclass(frozen=True)
class GeocodeResult:
    """A resolved place.

    Attributes:
        latitude: Decimal degrees.
        longitude: Decimal degrees.
        formatted_address: Nominatim's ``display_name``.
        components: Structured parts of the address.
    """

    latitude: float
    longitude: float
    formatted_address: str
    components: AddressComponents

    @classmethod
    def from_nominatim(cls, place: Dict[str, Any]) -> "GeocodeResult":
        try:
            latitude = float(place["lat"])
            longitude = float(place["lon"])
            formatted = str(place["display_name"])
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingError(f"Unexpected geocoder result: {e}") from e
        return cls(
            latitude=latitude,
            longitude=longitude,
            formatted_address=formatted,
            components=AddressComponents.from_nominatim(place.get("address") or {}),
        )


class Geocoder:
    """Async Nominatim client.

    Args:
        base_url: Server root.
        user_agent: Identifying User-Agent header.
        language: Preferred language of returned names.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests, proxies).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_GEOCODER_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        language: str = "en",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.language = language
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Any) -> "Geocoder":
        return cls(
            base_url=settings.GEOCODER_URL,
            user_agent=settings.GEOCODER_USER_AGENT,
            timeout=settings.GEOCODER_TIMEOUT,
        )

    async def __aenter__(self) -> "Geocoder":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        params = {
            **params,
            "format": "jsonv2",
            "addressdetails": 1,
            "accept-language": self.language,
        }
        try:
            response = await self.client.get(path, params=params)
        except httpx.RequestError as e:
            raise GeocodingError(f"Geocoder unreachable: {e}") from e

        if response.status_code >= 400:
            logger.warning(f"Geocoder returned {response.status_code} for {path}")
            raise GeocodingError(
                f"Geocoder returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise GeocodingError(
                "Invalid JSON from geocoder", status_code=response.status_code
            ) from e

    async def geocode(self, address: str) -> Optional[GeocodeResult]:
        """Resolve an address to its best-matching place.

        Returns:
            The top match, or None if nothing matched.

        Raises:
            GeocodingError: If the address is blank or the lookup fails.
        """
        if not address or not address.strip():
            raise GeocodingError("Address is required")

        places = await self._get("/search", {"q": address.strip(), "limit": 1})
        if not isinstance(places, list):
            raise GeocodingError("Unexpected geocoder response")
        if not places:
            logger.info(f"No geocoding match for {address.strip()!r}")
            return None
        return GeocodeResult.from_nominatim(places[0])

    async def reverse(self, latitude: float, longitude: float) -> Optional[GeocodeResult]:
        """Find the address at a position.

        Returns:
            The place, or None when the position has no address (open sea).

        Raises:
            CoordinateError: If the coordinates are out of range.
            GeocodingError: If the lookup fails.
        """
        latitude, longitude = validate_coordinates(latitude, longitude)

        place = await self._get("/reverse", {"lat": latitude, "lon": longitude})
        if not isinstance(place, dict):
            raise GeocodingError("Unexpected geocoder response")
        if "error" in place:
            logger.info(f"No address at {latitude:.5f}, {longitude:.5f}: {place['error']}")
            return None
        return GeocodeResult.from_nominatim(place)
