"""
Competitor search: free-text segment -> place categories -> paginated,
deduplicated, distance-annotated listings.
"""

from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from app.core.errors import InvalidArgument, UpstreamRejected
from app.models.domain import CompetitorListing, CompetitorPage, Coordinates
from app.services.places_client import PlacesClient

logger = structlog.get_logger(__name__)

_GYM = ("gym", "fitness_center")
_PHARMACY = ("pharmacy", "drugstore")
_PET = ("pet_store", "veterinary_care")
_FOOD = ("restaurant", "cafe", "bakery")
_SHOP = ("shopping_mall", "store", "supermarket")
_BANK = ("bank", "atm")
_HEALTH = ("hospital", "doctor", "health")
_SCHOOL = ("school", "university")
_HOTEL = ("hotel", "lodging")
_SALON = ("hair_care", "beauty_salon")

SEGMENT_TYPE_MAPPING: Dict[str, Tuple[str, ...]] = {
    "academia": _GYM,
    "academias": _GYM,
    "gym": _GYM,
    "crossfit": _GYM,
    "farmacia": _PHARMACY,
    "farmacias": _PHARMACY,
    "farmácia": _PHARMACY,
    "farmácias": _PHARMACY,
    "pet": _PET,
    "petshop": _PET,
    "petshops": _PET,
    "restaurante": _FOOD,
    "restaurantes": _FOOD,
    "loja": _SHOP,
    "lojas": _SHOP,
    "banco": _BANK,
    "bancos": _BANK,
    "hospital": _HEALTH,
    "hospitais": _HEALTH,
    "escola": _SCHOOL,
    "escolas": _SCHOOL,
    "hotel": _HOTEL,
    "hotéis": _HOTEL,
    "hoteis": _HOTEL,
    "salão": _SALON,
    "salões": _SALON,
    "salao": _SALON,
    "saloes": _SALON,
}

SORT_OPTIONS = ("distance", "rating")


def map_segment_to_types(segment: Optional[str]) -> List[str]:
    """
    Map a free-text business segment to place categories.

    Unknown segments are passed through as a single category; blank input
    maps to an empty list.
    """
    normalized = (segment or "").strip().lower()
    if not normalized:
        return []
    mapped = SEGMENT_TYPE_MAPPING.get(normalized)
    if mapped:
        return list(mapped)
    return [normalized]


def dedupe_listings(listings: Iterable[CompetitorListing]) -> List[CompetitorListing]:
    """Collapse listings sharing an id, keeping the first one seen, in first-seen order."""
    seen: Dict[str, CompetitorListing] = {}
    for listing in listings:
        if listing.id not in seen:
            seen[listing.id] = listing
    return list(seen.values())


def sort_listings(listings: Iterable[CompetitorListing], sort: str = "distance") -> List[CompetitorListing]:
    """Nearest first, or best rated first (unrated counts as 0). Ties keep their order."""
    if sort not in SORT_OPTIONS:
        raise InvalidArgument(f"sort must be one of {', '.join(SORT_OPTIONS)}.")
    if sort == "rating":
        return sorted(listings, key=lambda l: -(l.rating or 0.0))
    return sorted(listings, key=lambda l: l.distance_m)


class CompetitorSearch:
    """
    One competitor search interaction. Pages are fetched one at a time via
    ``load_more``; listings accumulated so far survive a failed page.
    """

    def __init__(
        self,
        client: PlacesClient,
        center: Coordinates,
        radius_m: int,
        types: List[str],
        page_token: Optional[str] = None,
    ):
        if not types:
            raise InvalidArgument("Segment not recognized.", code="SEGMENT_NOT_RECOGNIZED")
        if radius_m <= 0:
            raise InvalidArgument("radius must be positive.")
        self.client = client
        self.center = center
        self.radius_m = radius_m
        self.types = list(types)
        self.pages: List[CompetitorPage] = []
        # Set when resuming a search whose earlier pages were served elsewhere
        self.next_page_token: Optional[str] = page_token
        self.last_error: Optional[UpstreamRejected] = None

    @property
    def started(self) -> bool:
        return bool(self.pages)

    @property
    def has_more(self) -> bool:
        return not self.started or self.next_page_token is not None

    async def load_more(self) -> CompetitorPage:
        """
        Fetch the next page. Raises ``UpstreamRejected`` on failure; pages
        already loaded stay available.
        """
        if not self.has_more:
            return CompetitorPage()
        try:
            page = await self.client.nearby_search(
                self.center,
                self.radius_m,
                self.types,
                page_token=self.next_page_token,
            )
        except UpstreamRejected as e:
            self.last_error = e
            logger.warning("competitor_page_failed", loaded_pages=len(self.pages), error=e.message)
            raise
        self.last_error = None
        self.pages.append(page)
        self.next_page_token = page.next_page_token
        return page

    @property
    def listings(self) -> List[CompetitorListing]:
        return dedupe_listings(listing for page in self.pages for listing in page.listings)

    @property
    def synthetic(self) -> bool:
        return any(page.synthetic for page in self.pages)

    def sorted(self, sort: str = "distance") -> List[CompetitorListing]:
        return sort_listings(self.listings, sort)


async def search_competitors(
    client: PlacesClient,
    center: Coordinates,
    radius_m: int,
    segment_text: str,
) -> CompetitorSearch:
    """Start a search for ``segment_text`` around ``center`` and load its first page."""
    search = CompetitorSearch(client, center, radius_m, map_segment_to_types(segment_text))
    await search.load_more()
    return search
