"""
Algolia search index client
"""
import httpx
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode
import logging

from ..config import settings
from ..domain.exceptions import SearchUnavailableError
from ..domain.models import Record
from ..domain.repositories import ISearchIndex

logger = logging.getLogger(__name__)


class AlgoliaSearchIndex(ISearchIndex):
    """HTTP client for the hosted posts index"""

    def __init__(self):
        self.timeout = httpx.Timeout(5.0, connect=3.0)
        self.client: Optional[httpx.AsyncClient] = None

    @property
    def enabled(self) -> bool:
        return settings.SEARCH_ENABLED and bool(settings.ALGOLIA_APP_ID and settings.ALGOLIA_API_KEY)

    async def start(self):
        """Initialize HTTP client"""
        if not self.enabled:
            logger.warning("Search index is disabled")
            return

        self.client = httpx.AsyncClient(
            base_url=f"https://{settings.ALGOLIA_APP_ID}-dsn.algolia.net",
            timeout=self.timeout,
            headers={
                "X-Algolia-Application-Id": settings.ALGOLIA_APP_ID,
                "X-Algolia-API-Key": settings.ALGOLIA_API_KEY,
            }
        )
        logger.info("Search index client initialized")

    async def stop(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            logger.info("Search index client closed")

    async def _make_request(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a query to the index; raises SearchUnavailableError on any failure"""
        if not self.client:
            raise SearchUnavailableError("Search index client not initialized")

        try:
            response = await self.client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Search HTTP error {e.response.status_code} for {path}: {e}")
            raise SearchUnavailableError(str(e)) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Search request failed for {path}: {e}")
            raise SearchUnavailableError(str(e)) from e

    async def search_posts(self, query: str, limit: int = 40) -> List[Record]:
        """Full-text search over posts"""
        index = settings.ALGOLIA_POSTS_INDEX
        response = await self._make_request(
            f"/1/indexes/{index}/query",
            {"params": urlencode({"query": query, "hitsPerPage": limit})}
        )
        hits = response.get("hits", [])
        return [
            Record(id=str(hit["objectID"]), data=hit)
            for hit in hits
            if isinstance(hit, dict) and hit.get("objectID")
        ]

    async def suggest_hashtags(self, prefix: str, limit: int = 10) -> List[str]:
        """Facet search on the hashtags attribute"""
        index = settings.ALGOLIA_POSTS_INDEX
        response = await self._make_request(
            f"/1/indexes/{index}/facets/hashtags/query",
            {"facetQuery": prefix, "maxFacetHits": limit}
        )
        return [hit["value"] for hit in response.get("facetHits", []) if hit.get("value")]


# Global search index instance
search_index = AlgoliaSearchIndex()


async def get_search_index() -> Optional[AlgoliaSearchIndex]:
    """Dependency for getting the search index, None when disabled"""
    return search_index if search_index.enabled else None
