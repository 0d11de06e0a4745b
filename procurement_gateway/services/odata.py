"""Thin async client for the IMS OData API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


def bearer_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def odata_string(value: str) -> str:
    """Quote a value as an OData string literal."""
    return "'" + value.replace("'", "''") + "'"


class ODataClient:
    """Issue OData reads and writes against the IMS server.

    The underlying ``httpx.AsyncClient`` belongs to the caller and lives
    for one incoming request; the bearer token is passed on every call
    since the gateway never stores it.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str) -> None:
        self._http = http_client
        self._base_url = base_url if base_url.endswith("/") else f"{base_url}/"

    @property
    def base_url(self) -> str:
        return self._base_url

    def url(self, path: str) -> str:
        return f"{self._base_url}{path.lstrip('/')}"

    async def get(
        self,
        path: str,
        token: str,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        """GET an entity set or entity, returning the raw response."""
        url = self.url(path)
        logger.debug("OData GET %s", url)
        return await self._http.get(url, params=params, headers=bearer_headers(token))

    async def post_json(
        self,
        path: str,
        token: str,
        payload: dict[str, Any],
        prefer: str = "return=representation",
    ) -> httpx.Response:
        """POST a JSON entity, returning the raw response."""
        url = self.url(path)
        headers = {
            **bearer_headers(token),
            "Content-Type": "application/json",
            "Prefer": prefer,
        }
        logger.debug("OData POST %s", url)
        return await self._http.post(url, json=payload, headers=headers)
