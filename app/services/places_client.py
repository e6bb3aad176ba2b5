# Google Places nearby-search and Geocoding client.

import asyncio
import random
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from app.core.config import Settings, settings as default_settings
from app.core.errors import UpstreamRejected
from app.models.domain import CompetitorListing, CompetitorPage, Coordinates, GeocodedPoint
from app.utils.haversine import compute_distance_meters

logger = structlog.get_logger(__name__)

NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
PLACE_URL = "https://www.google.com/maps/place/?q=place_id:{place_id}"

OK_STATUSES = {"OK", "ZERO_RESULTS"}

# Upstream rejects larger nearby-search radii
MAX_SEARCH_RADIUS = 50000

# "lat,lng" or "lat lng", dot or comma decimals
COORD_PATTERN = re.compile(r'^([-+]?\d{1,3}(?:[.,]\d+)?)\s*[,;\s]\s*([-+]?\d{1,3}(?:[.,]\d+)?)$')


class PageTokenNotReady(Exception):
    def __init__(self, payload: Dict[str, Any]):
        super().__init__("page token not ready")
        self.payload = payload


def _log_page_token_retry(retry_state: RetryCallState) -> None:
    logger.info("places_page_token_not_ready", attempt=retry_state.attempt_number)


def parse_coordinates(query: str) -> Optional[Tuple[float, float]]:
    """
    Recognize a typed coordinate pair such as ``-23.5505, -46.6333``.

    Returns (lat, lng), or None when the text is not a valid pair.
    """
    match = COORD_PATTERN.match(query.strip())
    if not match:
        return None
    try:
        first = float(match.group(1).replace(',', '.'))
        second = float(match.group(2).replace(',', '.'))
    except ValueError:
        return None

    if abs(first) <= 90 and abs(second) <= 180:
        return first, second
    # Longitude typed first
    if abs(first) <= 180 and abs(second) <= 90:
        return second, first
    return None


def listing_from_place(place: Dict[str, Any], center: Coordinates) -> CompetitorListing:
    location = (place.get("geometry") or {}).get("location") or {}
    lat = location.get("lat") if isinstance(location.get("lat"), (int, float)) else 0.0
    lng = location.get("lng") if isinstance(location.get("lng"), (int, float)) else 0.0
    place_id = place.get("place_id") or None
    rating = place.get("rating")
    rating_count = place.get("user_ratings_total")
    open_now = (place.get("opening_hours") or {}).get("open_now")

    return CompetitorListing(
        id=place_id or f"{lat},{lng}",
        name=place.get("name") or "",
        lat=lat,
        lng=lng,
        distance_m=compute_distance_meters(center, Coordinates(lat=lat, lng=lng)),
        rating=float(rating) if isinstance(rating, (int, float)) and not isinstance(rating, bool) else None,
        rating_count=rating_count if isinstance(rating_count, int) else None,
        open_now=open_now if isinstance(open_now, bool) else None,
        address=place.get("vicinity") or place.get("formatted_address") or None,
        external_url=PLACE_URL.format(place_id=place_id) if place_id else None,
    )


def synthetic_listings(center: Coordinates, label: str, rng: Optional[random.Random] = None) -> List[CompetitorListing]:
    """Demo competitors scattered around ``center``, for when no API key is set."""
    rng = rng or random.Random()
    listings = []
    for index, suffix in enumerate(("Central", "Premium", "Express", "Popular", "da Praça")):
        lat = center.lat + (rng.random() - 0.5) * 0.01
        lng = center.lng + (rng.random() - 0.5) * 0.01
        listings.append(
            CompetitorListing(
                id=f"mock_place_{index}",
                name=f"{label} {suffix}",
                lat=lat,
                lng=lng,
                distance_m=compute_distance_meters(center, Coordinates(lat=lat, lng=lng)),
                rating=round(3.5 + rng.random() * 1.5, 1),
                rating_count=rng.randint(50, 550),
                open_now=rng.random() > 0.5,
                address=f"Rua Exemplo, {100 + index * 50}",
            )
        )
    return listings


class PlacesClient:
    def __init__(
        self,
        config: Settings = default_settings,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self._http_client = http_client
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def configured(self) -> bool:
        return bool(self.config.GOOGLE_PLACES_API_KEY)

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, params=params, timeout=self.config.PLACES_TIMEOUT)
            else:
                async with httpx.AsyncClient(timeout=self.config.PLACES_TIMEOUT) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            logger.warning("places_timeout", url=url)
            raise UpstreamRejected("Places service timed out.") from e
        except httpx.HTTPStatusError as e:
            logger.error("places_http_error", url=url, status_code=e.response.status_code)
            raise UpstreamRejected(f"Places service returned HTTP {e.response.status_code}.") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("places_request_failed", url=url, error=str(e))
            raise UpstreamRejected("Places service request failed.") from e
        if not isinstance(payload, dict):
            raise UpstreamRejected("Places service returned an unexpected body.")
        return payload

    async def _fetch_page(self, params: Dict[str, Any], page_token: Optional[str]) -> Dict[str, Any]:
        payload = await self._get_json(NEARBY_SEARCH_URL, params)
        # A fresh next_page_token is INVALID_REQUEST for a moment upstream
        if page_token and payload.get("status") == "INVALID_REQUEST":
            raise PageTokenNotReady(payload)
        return payload

    async def nearby_search(
        self,
        center: Coordinates,
        radius_m: int,
        types: List[str],
        page_token: Optional[str] = None,
    ) -> CompetitorPage:
        """
        Fetch one page of nearby places. ``types[0]`` is sent as the place type
        and any further entries as keywords.

        Raises:
            UpstreamRejected: status other than OK/ZERO_RESULTS, after page
                token retries are exhausted.
        """
        if not self.configured:
            logger.warning("places_not_configured", fallback="synthetic")
            label = types[0] if types else "Negócio"
            return CompetitorPage(listings=synthetic_listings(center, label, self._rng), synthetic=True)

        params: Dict[str, Any] = {
            "key": self.config.GOOGLE_PLACES_API_KEY,
            "language": self.config.PLACES_LANGUAGE,
        }
        if page_token:
            params["pagetoken"] = page_token
        else:
            params["location"] = f"{center.lat},{center.lng}"
            params["radius"] = radius_m
            if types:
                params["type"] = types[0]
                if len(types) > 1:
                    params["keyword"] = " ".join(types[1:])

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(PageTokenNotReady),
            stop=stop_after_attempt(self.config.PLACES_PAGE_TOKEN_RETRIES + 1),
            wait=wait_fixed(self.config.PLACES_PAGE_TOKEN_DELAY),
            sleep=self._sleep,
            before_sleep=_log_page_token_retry,
            # out of retries: fall through to the status check below
            retry_error_callback=lambda state: state.outcome.exception().payload,
        )
        payload = await retrying(self._fetch_page, params, page_token)
        status = payload.get("status")

        if status not in OK_STATUSES:
            logger.error("nearby_search_failed", status=status, error_message=payload.get("error_message"))
            raise UpstreamRejected(
                payload.get("error_message") or f"Nearby search returned status {status}",
                upstream_status=status,
            )

        listings = [listing_from_place(place, center) for place in payload.get("results") or []]
        return CompetitorPage(listings=listings, next_page_token=payload.get("next_page_token") or None)

    async def geocode(self, query: str) -> Optional[GeocodedPoint]:
        """Resolve an address (or a typed ``lat,lng`` pair) to a point. None when nothing matches."""
        query = query.strip()
        coords = parse_coordinates(query)
        if coords:
            lat, lng = coords
            logger.info("direct_coordinate_input", lat=lat, lng=lng)
            return GeocodedPoint(name=query, address=query, lat=lat, lng=lng)

        if not self.configured:
            logger.warning("places_not_configured", operation="geocode")
            return None

        payload = await self._get_json(
            GEOCODE_URL,
            {"address": query, "key": self.config.GOOGLE_PLACES_API_KEY, "language": self.config.PLACES_LANGUAGE},
        )
        return self._first_geocode_result(payload, query)

    async def reverse_geocode(self, lat: float, lng: float) -> Optional[GeocodedPoint]:
        if not self.configured:
            logger.warning("places_not_configured", operation="reverse_geocode")
            return None
        payload = await self._get_json(
            GEOCODE_URL,
            {"latlng": f"{lat},{lng}", "key": self.config.GOOGLE_PLACES_API_KEY, "language": self.config.PLACES_LANGUAGE},
        )
        return self._first_geocode_result(payload, f"{lat},{lng}")

    def _first_geocode_result(self, payload: Dict[str, Any], query: str) -> Optional[GeocodedPoint]:
        status = payload.get("status")
        if status not in OK_STATUSES:
            logger.error("geocode_failed", status=status, error_message=payload.get("error_message"))
            raise UpstreamRejected(payload.get("error_message") or f"Geocoding returned status {status}", upstream_status=status)
        if not payload.get("results"):
            logger.info("geocode_no_results", query=query)
            return None

        result = payload["results"][0]
        location = (result.get("geometry") or {}).get("location") or {}
        lat, lng = location.get("lat"), location.get("lng")
        if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
            logger.warning("geocode_result_without_location", query=query, place_id=result.get("place_id"))
            return None
        return GeocodedPoint(
            name=result.get("formatted_address", query),
            address=result.get("formatted_address", query),
            lat=lat,
            lng=lng,
            place_id=result.get("place_id"),
        )
