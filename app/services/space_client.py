# Upstream demographic (Space) API client.
# Failures never escape fetch_demographics: they degrade to synthetic data.

import random
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Union

import httpx
import structlog

from app.core.config import Settings, settings as default_settings
from app.core.errors import InvalidArgument, UpstreamUnavailable
from app.models.domain import QueryPoint
from app.services.space_normalizer import AGE_BANDS, CONSUMPTION_CATEGORIES, SOCIAL_CLASSES

logger = structlog.get_logger(__name__)

SYNTHETIC_MARKER = "_synthetic"
SYNTHETIC_LOCALITY = "Localização de exemplo"


@dataclass(frozen=True)
class Fetched:
    """Payload returned by the real upstream API."""
    raw: Dict[str, Any]
    synthetic: ClassVar[bool] = False


@dataclass(frozen=True)
class Degraded:
    """Locally generated placeholder payload, with why the real one was not used."""
    raw: Dict[str, Any]
    reason: str
    synthetic: ClassVar[bool] = True


FetchResult = Union[Fetched, Degraded]


def generate_synthetic_payload(point: QueryPoint, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Raw-shaped demo payload, using the same field names the real API sends."""
    rng = rng or random.Random()
    people = rng.randint(10_000, 60_000)
    payload: Dict[str, Any] = {
        "muni": SYNTHETIC_LOCALITY,
        "people": people,
        "income": rng.randint(2_000, 7_000),
        "cons_a_total": rng.randint(5_000_000, 15_000_000),
        "cons_b_current": rng.randint(3_000_000, 9_000_000),
        "cons_c_expenditure": rng.randint(1_000_000, 4_000_000),
        "lat": point.lat,
        "lng": point.lng,
        "radius": point.radius_m,
        SYNTHETIC_MARKER: True,
    }
    for key, _, _ in CONSUMPTION_CATEGORIES:
        payload[key] = rng.randint(100_000, 2_000_000)
    for key, _ in SOCIAL_CLASSES:
        payload[key] = rng.randint(50, 3_000)
    for key, _ in AGE_BANDS:
        payload[key] = rng.randint(300, people // len(AGE_BANDS))
    return payload


class SpaceClient:
    """
    Wrapper around the demographic API. The API key never leaves the server.

    ``fetch_demographics`` returns a tagged result: ``Fetched`` for real data,
    ``Degraded`` for the synthetic substitute used when credentials are
    missing or the call fails.
    """

    def __init__(
        self,
        config: Settings = default_settings,
        http_client: Optional[httpx.AsyncClient] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self._http_client = http_client
        self._rng = rng or random.Random()

    def validate(self, point: QueryPoint) -> None:
        if point.radius_m > self.config.SPACE_MAX_RADIUS:
            raise InvalidArgument(
                f"Maximum radius allowed: {self.config.SPACE_MAX_RADIUS}m",
                code="RADIUS_TOO_LARGE",
            )

    async def _get(self, params: Dict[str, Any]) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self._http_client is not None:
            return await self._http_client.get(
                self.config.SPACE_API_BASE_URL, params=params, headers=headers, timeout=self.config.SPACE_TIMEOUT
            )
        async with httpx.AsyncClient(timeout=self.config.SPACE_TIMEOUT) as client:
            return await client.get(self.config.SPACE_API_BASE_URL, params=params, headers=headers)

    async def _request(self, point: QueryPoint) -> Dict[str, Any]:
        params = {
            "lat": point.lat,
            "lng": point.lng,
            "radius": point.radius_m,
            "key": self.config.SPACE_API_KEY,
        }
        try:
            response = await self._get(params)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable("timeout", code="SPACE_TIMEOUT") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(f"http_status_{e.response.status_code}", code="SPACE_HTTP_ERROR") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable("network_error", code="SPACE_NETWORK_ERROR") from e

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable("invalid_body", code="SPACE_INVALID_BODY") from e
        if not isinstance(data, dict):
            raise UpstreamUnavailable("invalid_body", code="SPACE_INVALID_BODY")
        return data

    def _degrade(self, point: QueryPoint, reason: str) -> Degraded:
        return Degraded(raw=generate_synthetic_payload(point, self._rng), reason=reason)

    async def fetch_demographics(self, point: QueryPoint) -> FetchResult:
        """
        Fetch the raw demographic payload for ``point``.

        Raises:
            InvalidArgument: radius above SPACE_MAX_RADIUS (checked before any I/O).
        """
        self.validate(point)

        if not self.config.space_api_configured:
            logger.warning("space_api_not_configured", fallback="synthetic")
            return self._degrade(point, "not_configured")

        logger.info("space_api_request", lat=point.lat, lng=point.lng, radius=point.radius_m)
        try:
            data = await self._request(point)
        except UpstreamUnavailable as e:
            logger.warning("space_api_fallback", reason=e.message, code=e.code)
            return self._degrade(point, e.message)
        return Fetched(raw=data)
