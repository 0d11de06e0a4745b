"""Password-grant login against the Aras OAuth server."""

from __future__ import annotations

import hashlib
import logging

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class LoginFailed(Exception):
    """Token server rejected the login or could not be reached."""

    def __init__(self, status_code: int | None, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Failed to obtain OAuth token (status {status_code}): {body[:200]}")


class TokenGrant(BaseModel):
    """Access token handed back to the frontend."""

    access_token: str
    expires_in: int


class LoginService:
    """Exchange IMS user credentials for a bearer token.

    Aras expects the password as an MD5 hex digest and the target database
    name alongside the usual password-grant fields.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        token_url: str,
        client_id: str,
        scope: str,
        database: str,
    ) -> None:
        self._http = http_client
        self._token_url = token_url
        self._client_id = client_id
        self._scope = scope
        self._database = database

    async def request_access_token(self, username: str, password: str) -> TokenGrant:
        """Request a token for ``username``.

        Raises:
            LoginFailed: If the token server answers with an error or is unreachable.
        """
        form = {
            "grant_type": "password",
            "client_id": self._client_id,
            "username": username,
            "password": hashlib.md5(password.encode("utf-8")).hexdigest(),
            "scope": self._scope,
            "database": self._database,
        }
        try:
            response = await self._http.post(self._token_url, data=form)
        except httpx.HTTPError as e:
            raise LoginFailed(None, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            logger.warning("Login rejected", extra={"status_code": response.status_code})
            raise LoginFailed(response.status_code, response.text)

        try:
            data = response.json()
            return TokenGrant(access_token=data["access_token"], expires_in=int(data["expires_in"]))
        except (KeyError, TypeError, ValueError) as e:
            raise LoginFailed(response.status_code, response.text) from e
