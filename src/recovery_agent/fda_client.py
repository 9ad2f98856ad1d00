"""HTTP client for the openFDA drug label API.

openFDA publishes the structured product labels (the package inserts) of
US-marketed drugs. The medication lookup tool uses it as a second source
when a drug is not in the local knowledge base.

The API is public; an API key is optional and only raises the rate limit.
A search with no matches comes back as HTTP 404 with a NOT_FOUND error
body, which ``get_drug_label`` turns into ``None``.

Usage:
    client = OpenFDAClient()
    label = await client.get_drug_label("lisinopril")
    await client.close()
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from recovery_agent.config import OPENFDA_API_KEY, OPENFDA_BASE_URL

logger = logging.getLogger(__name__)


class OpenFDAAPIError(Exception):
    """Raised when an openFDA request fails or returns an error response."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


class OpenFDAClient:
    """Async HTTP client for openFDA.

    Attributes:
        base_url: The openFDA server URL (e.g., "https://api.fda.gov").
    """

    def __init__(
        self,
        base_url: str = OPENFDA_BASE_URL,
        api_key: str = OPENFDA_API_KEY,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._http = httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """Make a GET request to the openFDA API.

        Args:
            endpoint: API path (e.g., "/drug/label.json").
            params: Query parameters; the API key is added when configured.

        Returns:
            The parsed JSON response body.

        Raises:
            OpenFDAAPIError: On transport failure or a non-2xx status.
        """
        url = f"{self.base_url}{endpoint}"
        query = dict(params or {})
        if self.api_key:
            query["api_key"] = self.api_key

        try:
            response = await self._http.get(url, params=query)
        except httpx.HTTPError as exc:
            raise OpenFDAAPIError(
                status_code=0,
                detail=f"Request to {url} failed: {exc}",
            ) from exc

        if response.status_code >= 400:
            raise OpenFDAAPIError(status_code=response.status_code, detail=response.text)

        return response.json()

    async def get_drug_label(self, drug_name: str) -> dict[str, Any] | None:
        """Fetch the first label matching a generic or brand name.

        Returns:
            The raw label record, or None if openFDA has no match.

        Raises:
            OpenFDAAPIError: For failures other than "no match".
        """
        name = drug_name.strip().replace('"', "")
        search = f'openfda.generic_name:"{name}" OR openfda.brand_name:"{name}"'
        try:
            data = await self.get("/drug/label.json", params={"search": search, "limit": 1})
        except OpenFDAAPIError as exc:
            if exc.status_code == 404:
                logger.debug("openFDA has no label for %r", drug_name)
                return None
            raise

        results = data.get("results", [])
        return results[0] if results else None
