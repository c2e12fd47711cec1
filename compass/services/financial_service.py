"""Alpha Vantage client: ticker lookup plus quote, overview and earnings."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from compass.config import get_settings
from compass.exceptions import (
    InvalidResponse,
    NetworkError,
    ProviderTimeout,
    RateLimited,
)

logger = logging.getLogger(__name__)

PROVIDER = "alpha_vantage"

# Alpha Vantage reports throttling in a 200 body rather than a status code
_THROTTLE_KEYS = ("Note", "Information")


class FinancialBundle(BaseModel):
    """Quote, overview and earnings for one symbol. A failed sub-call leaves its part None."""

    symbol: str
    quote: Optional[dict[str, Any]] = None
    overview: Optional[dict[str, Any]] = None
    earnings: Optional[dict[str, Any]] = None
    errors: dict[str, str] = {}

    @property
    def is_empty(self) -> bool:
        return self.quote is None and self.overview is None and self.earnings is None

    @property
    def missing(self) -> list[str]:
        return [part for part in ("quote", "overview", "earnings") if getattr(self, part) is None]


class AlphaVantageClient:
    BASE_URL = "https://www.alphavantage.co/query"

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.alpha_vantage_api_key
        self.timeout = settings.http_timeout_seconds
        self._transport = transport

    async def lookup_symbol(self, company_name: str) -> Optional[str]:
        """Best matching ticker for a company name, or None when nothing matches."""
        data = await self._query({"function": "SYMBOL_SEARCH", "keywords": company_name})
        matches = data.get("bestMatches") or []
        if not isinstance(matches, list) or not matches:
            return None
        first = matches[0]
        if not isinstance(first, dict):
            return None
        return first.get("1. symbol") or None

    async def get_financial_data(self, symbol: str) -> FinancialBundle:
        """Fetch quote, overview and earnings concurrently. Failed parts are left empty."""
        functions = {"quote": "GLOBAL_QUOTE", "overview": "OVERVIEW", "earnings": "EARNINGS"}
        outcomes = await asyncio.gather(
            *(self._query({"function": fn, "symbol": symbol}) for fn in functions.values()),
            return_exceptions=True,
        )

        bundle = FinancialBundle(symbol=symbol)
        for part, outcome in zip(functions, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning("Alpha Vantage %s failed for %s: %s", part, symbol, outcome)
                bundle.errors[part] = str(outcome)
            elif not outcome:
                bundle.errors[part] = "empty response"
            else:
                setattr(bundle, part, outcome)
        return bundle

    async def _query(self, params: dict[str, str]) -> dict[str, Any]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(get_settings().provider_max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(NetworkError),
            reraise=True,
        ):
            with attempt:
                return await self._query_once(params)

    async def _query_once(self, params: dict[str, str]) -> dict[str, Any]:
        if not self.api_key:
            raise InvalidResponse("ALPHA_VANTAGE_API_KEY not configured", provider=PROVIDER)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(self.BASE_URL, params={**params, "apikey": self.api_key})
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Alpha Vantage request timed out: {e}", provider=PROVIDER, cause=e) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Alpha Vantage request failed: {e}", provider=PROVIDER, cause=e) from e

        if resp.status_code == 429:
            raise RateLimited("Alpha Vantage rate limited (429)", provider=PROVIDER)
        if resp.status_code >= 500:
            raise NetworkError(f"Alpha Vantage server error ({resp.status_code})", provider=PROVIDER)
        if resp.status_code != 200:
            raise InvalidResponse(f"Alpha Vantage returned {resp.status_code}", provider=PROVIDER)

        try:
            data = resp.json()
        except ValueError as e:
            raise InvalidResponse("Alpha Vantage returned non-JSON body", provider=PROVIDER, cause=e) from e
        if not isinstance(data, dict):
            raise InvalidResponse("Alpha Vantage response is not an object", provider=PROVIDER)
        if "Error Message" in data:
            raise InvalidResponse(str(data["Error Message"]), provider=PROVIDER)
        for key in _THROTTLE_KEYS:
            if key in data and len(data) == 1:
                raise RateLimited(str(data[key]), provider=PROVIDER)
        return data

