from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote
import os

import httpx

from routegen.config import Settings
from routegen.errors import RouteValidationError, SearchUnavailable
from routegen.llm import RetryPolicy, with_backoff
from routegen.schemas import Candidate, CandidatePool, Coordinate, SearchRegion
from routegen.tools.text import cap_words

import logging

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("ROUTEGEN_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False


class PlaceSearch(Protocol):
    async def search(
        self, region: SearchRegion, query: str, starting_key: int
    ) -> Tuple[CandidatePool, int]:
        ...


class PlaceResolver(Protocol):
    async def resolve_place(self, name: str) -> Tuple[Coordinate, str]:
        ...


@dataclass
class SearchPolicy:
    max_places: int = 5
    page_size: int = 20
    reviews_per_place: int = 3
    timeout: float = 10.0


def pluck_review_texts(reviews: Optional[List[Dict[str, Any]]], limit: int = 3) -> List[str]:
    """Return up to ``limit`` non-empty review strings from a Places payload."""
    texts: List[str] = []
    for review in reviews or []:
        text_block = (review or {}).get("text") or {}
        text = str(text_block.get("text") or "").strip() if isinstance(text_block, dict) else ""
        if text:
            texts.append(text)
        if len(texts) >= limit:
            break
    return texts


class PlaceSearcher:
    """
    Google Places (v1) text search restricted to a rectangle, followed by one
    details lookup per kept place to collect review snippets.
    """
    SEARCH_ENDPOINT = "https://places.googleapis.com/v1/places:searchText"
    DETAILS_ENDPOINT = "https://places.googleapis.com/v1/places/{place_id}"
    SEARCH_FIELD_MASK = "places.id,places.displayName,places.location,nextPageToken"
    DETAILS_FIELD_MASK = "id,displayName,reviews"
    RESOLVE_FIELD_MASK = "places.id,places.location"

    def __init__(
        self,
        policy: Optional[SearchPolicy] = None,
        *,
        api_key: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.policy = policy or SearchPolicy()
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlaceSearcher":
        return cls(
            SearchPolicy(max_places=settings.places_per_search, timeout=settings.http_timeout),
            api_key=settings.google_api_key,
            retry_policy=RetryPolicy.from_settings(settings),
        )

    async def search(
        self, region: SearchRegion, query: str, starting_key: int
    ) -> Tuple[CandidatePool, int]:
        """Return candidates keyed ``starting_key``, ``starting_key + 1``, ... and the next free key.

        Raises ``SearchUnavailable`` when the text search itself fails. A failed
        details lookup only leaves that place without reviews.
        """
        if not self.api_key:
            raise SearchUnavailable("GOOGLE_API_KEY environment variable not configured")

        text_query = cap_words(query)
        rect = region.rectangle
        body = {
            "textQuery": text_query,
            "pageSize": self.policy.page_size,
            "locationRestriction": {
                "rectangle": {
                    "low": rect.low.model_dump(),
                    "high": rect.high.model_dump(),
                }
            },
        }

        async with httpx.AsyncClient(timeout=self.policy.timeout) as client:
            data = await self._post_search(client, body, self.SEARCH_FIELD_MASK)

            found: List[Dict[str, Any]] = data.get("places") or []
            logger.info(
                "Place search around (%.5f, %.5f) returned %d result(s)",
                region.center.latitude,
                region.center.longitude,
                len(found),
            )

            pool = CandidatePool()
            key = int(starting_key)
            for place in found:
                if len(pool) >= self.policy.max_places:
                    break
                location = place.get("location") or {}
                lat, lng = location.get("latitude"), location.get("longitude")
                if lat is None or lng is None:
                    logger.debug("Skipping place without coordinates: %s", place.get("id"))
                    continue
                place_id = place.get("id")
                name = ((place.get("displayName") or {}).get("text")) or "(no name)"
                reviews = await self._reviews_for(client, place_id, name)

                pool.add(
                    Candidate(
                        id=str(key),
                        coordinate=Coordinate(latitude=lat, longitude=lng),
                        display_name=name,
                        external_ref=place_id,
                        review_snippets=reviews,
                    )
                )
                logger.info("Collected id=%s: %s (reviews: %d)", key, name, len(reviews))
                key += 1

        return pool, key

    async def resolve_place(self, name: str) -> Tuple[Coordinate, str]:
        """Look up a free-text place name and return its coordinate and place id.

        Raises ``RouteValidationError`` when the name is blank or matches
        nothing, ``SearchUnavailable`` when the lookup itself fails.
        """
        query = cap_words(name)
        if not query:
            raise RouteValidationError("place name must not be empty")
        if not self.api_key:
            raise SearchUnavailable("GOOGLE_API_KEY environment variable not configured")

        body = {"textQuery": query, "pageSize": 1}
        async with httpx.AsyncClient(timeout=self.policy.timeout) as client:
            data = await self._post_search(client, body, self.RESOLVE_FIELD_MASK)

        for place in data.get("places") or []:
            location = place.get("location") or {}
            lat, lng = location.get("latitude"), location.get("longitude")
            if lat is None or lng is None or not place.get("id"):
                continue
            logger.info("Resolved %r to %s (%.5f, %.5f)", query, place["id"], lat, lng)
            return Coordinate(latitude=lat, longitude=lng), place["id"]

        raise RouteValidationError(f'No results found for "{query}"')

    async def _post_search(
        self, client: httpx.AsyncClient, body: Dict[str, Any], field_mask: str
    ) -> Dict[str, Any]:
        async def _search() -> Dict[str, Any]:
            response = await client.post(
                self.SEARCH_ENDPOINT,
                json=body,
                headers=self._headers(field_mask),
            )
            response.raise_for_status()
            return response.json()

        try:
            data = await with_backoff(_search, self.retry_policy)
        except (httpx.HTTPError, ValueError) as exc:
            raise SearchUnavailable(f"Place search failed: {exc}") from exc
        return data if isinstance(data, dict) else {}

    async def _reviews_for(self, client: httpx.AsyncClient, place_id: Optional[str], name: str) -> List[str]:
        if not place_id:
            return []
        url = self.DETAILS_ENDPOINT.format(place_id=quote(place_id, safe=""))
        try:
            response = await client.get(url, headers=self._headers(self.DETAILS_FIELD_MASK))
            response.raise_for_status()
            details = response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Details failed for %s (%s)", name, place_id, exc_info=True)
            return []
        return pluck_review_texts(details.get("reviews"), self.policy.reviews_per_place)

    def _headers(self, field_mask: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key or "",
            "X-Goog-FieldMask": field_mask,
        }
