"""
PM-Fit Backend - Web Search

Serper (primary) → Tavily (fallback). Every provider call goes through the
shared RequestQueue so a burst of keyword searches stays under the provider's
rate limit, and each provider sits behind its own circuit breaker.
"""

import asyncio
import time
from dataclasses import dataclass
from functools import partial
from typing import Optional

import httpx

from pmfit.circuit import CircuitBreaker
from pmfit.config import generate_error_code, log
from pmfit.queue import RequestQueue


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str


class SearchError(Exception):
    pass


SERPER_URL = "https://google.serper.dev/search"
TAVILY_URL = "https://api.tavily.com/search"
SEARCH_TIMEOUT_SECONDS = 10.0


class SearchService:
    def __init__(
        self,
        queue: RequestQueue,
        http_client: httpx.AsyncClient,
        *,
        serper_api_key: str = "",
        tavily_api_key: str = "",
        breakers: Optional[dict[str, CircuitBreaker]] = None,
    ):
        self.queue = queue
        self.http_client = http_client
        self.serper_api_key = serper_api_key
        self.tavily_api_key = tavily_api_key
        self.breakers = breakers or {
            "serper": CircuitBreaker("serper"),
            "tavily": CircuitBreaker("tavily"),
        }

    def providers(self) -> list[str]:
        """Configured providers in fallback order."""
        chain = []
        if self.serper_api_key:
            chain.append("serper")
        if self.tavily_api_key:
            chain.append("tavily")
        return chain

    async def search(self, query: str, num_results: int = 10) -> list[SearchResult]:
        """Search the web with fallback chain: Serper → Tavily.

        Raises SearchError if no provider is configured or all of them fail.
        """
        chain = self.providers()
        if not chain:
            raise SearchError("no search provider configured")

        log("INFO", "search started", query=query, providers=",".join(chain), num_results=num_results)
        start = time.monotonic()
        last_error: Optional[Exception] = None

        for provider in chain:
            fetch = self._serper_search if provider == "serper" else self._tavily_search
            try:
                results = await self.breakers[provider].call(
                    lambda: self.queue.add(
                        partial(fetch, query, num_results),
                        label=f"search:{provider}",
                    )
                )
                log("INFO", "search completed", provider=provider, results_count=len(results), duration_ms=int((time.monotonic() - start) * 1000))
                return results
            except Exception as e:
                last_error = e
                log("WARN", "search provider failed, trying fallback", provider=provider, error=str(e))

        code = generate_error_code()
        log("ERROR", "search failed", provider="all", error=str(last_error), error_code=code, duration_ms=int((time.monotonic() - start) * 1000))
        raise SearchError(str(last_error)) from last_error

    async def search_keywords(self, keywords: list[str], num_results: int = 5) -> dict[str, Optional[list[SearchResult]]]:
        """One queued search per keyword. A keyword whose search failed maps to None."""
        outcomes = await asyncio.gather(
            *(self.search(keyword, num_results) for keyword in keywords),
            return_exceptions=True,
        )
        results: dict[str, Optional[list[SearchResult]]] = {}
        for keyword, outcome in zip(keywords, outcomes):
            if isinstance(outcome, SearchError):
                results[keyword] = None
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[keyword] = outcome
        return results

    async def _serper_search(self, query: str, num_results: int) -> list[SearchResult]:
        """Serper API. HTTP errors propagate so the queue can classify them."""
        response = await self.http_client.post(
            SERPER_URL,
            headers={"X-API-KEY": self.serper_api_key, "Content-Type": "application/json"},
            json={"q": query, "num": num_results},
            timeout=SEARCH_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        data = response.json()

        return [
            SearchResult(
                title=r.get("title", ""),
                url=r.get("link", ""),
                snippet=r.get("snippet", ""),
            )
            for r in data.get("organic", [])[:num_results]
        ]

    async def _tavily_search(self, query: str, num_results: int) -> list[SearchResult]:
        """Tavily Search API."""
        response = await self.http_client.post(
            TAVILY_URL,
            json={
                "api_key": self.tavily_api_key,
                "query": query,
                "max_results": num_results,
                "search_depth": "basic",
            },
            timeout=SEARCH_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        data = response.json()

        return [
            SearchResult(
                title=r.get("title", ""),
                url=r.get("url", ""),
                snippet=r.get("content", ""),
            )
            for r in data.get("results", [])[:num_results]
        ]
