"""Tavily web search client used by the market research pipeline."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from compass.config import get_settings
from compass.exceptions import InvalidResponse, NetworkError, ProviderTimeout, RateLimited

logger = logging.getLogger(__name__)

PROVIDER = "tavily"


class SearchResult(BaseModel):
    title: str = ""
    url: str = ""
    content: str = ""
    score: Optional[float] = None


class SearchResponse(BaseModel):
    query: str
    answer: Optional[str] = None
    results: list[SearchResult] = []


def _parse_results(raw_results: Any) -> list[SearchResult]:
    results: list[SearchResult] = []
    if not isinstance(raw_results, list):
        return results
    for item in raw_results:
        if not isinstance(item, dict):
            continue
        score = item.get("score")
        results.append(
            SearchResult(
                title=item.get("title") or "",
                url=item.get("url") or "",
                content=item.get("content") or "",
                score=score if isinstance(score, (int, float)) else None,
            )
        )
    return results


class TavilySearchClient:
    BASE_URL = "https://api.tavily.com/search"

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.tavily_api_key
        self.timeout = settings.http_timeout_seconds
        self._transport = transport

    async def search(
        self,
        query: str,
        max_results: int = 10,
        depth: str = "advanced",
        include_answer: bool = True,
    ) -> SearchResponse:
        """
        Run one search. Returns an empty result list when nothing matched.
        Raises NetworkError, RateLimited, InvalidResponse or ProviderTimeout.
        """
        if not self.api_key:
            raise InvalidResponse("TAVILY_API_KEY not configured", provider=PROVIDER)

        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": depth,
            "max_results": max_results,
            "include_answer": include_answer,
        }
        data = await self._post(payload)
        results = _parse_results(data.get("results"))
        answer = data.get("answer") if isinstance(data.get("answer"), str) else None
        logger.info("Tavily search returned %d results for query: %s", len(results), query[:100])
        return SearchResponse(query=query, answer=answer, results=results)

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(get_settings().provider_max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(NetworkError),
            reraise=True,
        ):
            with attempt:
                return await self._post_once(payload)

    async def _post_once(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.BASE_URL, json=payload)
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Tavily request timed out: {e}", provider=PROVIDER, cause=e) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Tavily request failed: {e}", provider=PROVIDER, cause=e) from e

        if resp.status_code == 429 or resp.status_code in (430, 431, 432):
            raise RateLimited(f"Tavily rate limited ({resp.status_code})", provider=PROVIDER)
        if resp.status_code >= 500:
            raise NetworkError(f"Tavily server error ({resp.status_code})", provider=PROVIDER)
        if resp.status_code != 200:
            raise InvalidResponse(
                f"Tavily returned {resp.status_code}: {resp.text[:200]}", provider=PROVIDER
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise InvalidResponse("Tavily returned non-JSON body", provider=PROVIDER, cause=e) from e
        if not isinstance(data, dict):
            raise InvalidResponse("Tavily response is not an object", provider=PROVIDER)
        return data
