"""Tavily search backend."""
import logging
from typing import Optional

import httpx

from supportline.services.backends.base import SearchBackend, SearchResponse, SearchResult

logger = logging.getLogger(__name__)


class TavilySearchBackend(SearchBackend):
    """Search backend backed by the Tavily REST API."""

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        url: str = "https://api.tavily.com/search",
        max_results: int = 5,
    ):
        self.api_key = api_key
        self.client = client
        self.url = url
        self.max_results = max_results

    def build_query(self, query: str, location_hint: Optional[str] = None) -> str:
        """Add the location hint to the query when it is not already there."""
        query = query.strip()
        if location_hint and location_hint.lower() not in query.lower():
            query = f"{query} in {location_hint}"
        return query

    async def search(self, query: str, location_hint: Optional[str] = None) -> SearchResponse:
        search_query = self.build_query(query, location_hint)
        logger.info(f"[SEARCH] Tavily query: '{search_query}'")

        response = await self.client.post(
            self.url,
            json={
                "api_key": self.api_key,
                "query": search_query,
                "search_depth": "basic",
                "include_answer": True,
                "max_results": self.max_results,
            },
        )
        response.raise_for_status()
        payload = response.json()

        results = [
            SearchResult(
                title=item.get("title") or "",
                url=item.get("url"),
                content=item.get("content") or "",
                score=float(item.get("score") or 0.0),
            )
            for item in payload.get("results", [])
            if item.get("title")
        ]
        logger.info(f"[SEARCH] Tavily returned {len(results)} results")
        return SearchResponse(results=results, answer=payload.get("answer"))
