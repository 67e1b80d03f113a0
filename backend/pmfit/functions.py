"""
PM-Fit Backend - Serverless Function Client

POSTs a JSON payload to `{functions_base_url}/{name}` and returns the JSON
response. Every failure is raised as FunctionCallError tagged retryable or not,
so the request queue knows whether another attempt is worth making.
"""

import json
import re
from typing import Any, Optional

import httpx

from pmfit.queue import is_retryable_status


FUNCTION_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,99}$")
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; PMFit/0.1)"


class FunctionCallError(Exception):
    def __init__(
        self,
        name: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        super().__init__(f"{name}: {message}")
        self.name = name
        self.status_code = status_code
        self.retryable = retryable


class FunctionsClient:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = httpx.Timeout(timeout_seconds, connect=5.0)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(headers={"User-Agent": DEFAULT_USER_AGENT})

    async def invoke(self, name: str, payload: Optional[dict] = None) -> Any:
        """Call one function. Raises FunctionCallError on any failure."""
        body = payload or {}
        # Malformed requests are caught before dispatch and never retried
        if not FUNCTION_NAME_PATTERN.match(name):
            raise FunctionCallError(name, "invalid function name", retryable=False)
        try:
            json.dumps(body)
        except (TypeError, ValueError) as e:
            raise FunctionCallError(name, f"payload is not JSON-serializable: {e}", retryable=False) from e

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self._client.post(
                f"{self.base_url}/{name}",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise FunctionCallError(name, f"timed out after {self.timeout.read}s") from e
        except httpx.HTTPError as e:
            raise FunctionCallError(name, f"request failed: {e}") from e

        if not response.is_success:
            raise FunctionCallError(
                name,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                retryable=is_retryable_status(response.status_code),
            )

        try:
            return response.json()
        except ValueError as e:
            raise FunctionCallError(name, "response was not valid JSON", status_code=response.status_code) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
