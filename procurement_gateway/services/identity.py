"""Resolve an IMS bearer token to a login name and that user's vault."""

from __future__ import annotations

import logging
from typing import Any

import httpx
import jwt

from procurement_gateway.models.identity import (
    IdentityClaims,
    UserRecord,
    VaultBinding,
    extract_vault_id,
)
from procurement_gateway.services.errors import (
    IdentityNotFound,
    MalformedCredential,
    UserLookupFailed,
    UserNotFound,
    VaultNotConfigured,
)
from procurement_gateway.services.odata import ODataClient, odata_string

logger = logging.getLogger(__name__)


def strip_bearer(credential: str) -> str:
    """Drop an optional ``Bearer`` prefix and surrounding whitespace."""
    token = credential.strip()
    if token[:7].lower() == "bearer ":
        token = token[7:].strip()
    return token


def decode_claims(credential: str) -> IdentityClaims:
    """Decode the payload of a bearer token without verifying its signature.

    The IMS server issued the token and re-checks it on every OData call,
    so the gateway only reads the claims.

    Raises:
        MalformedCredential: If the token is not three dot-separated parts
            or the payload is not base64url-encoded JSON.
    """
    token = strip_bearer(credential)
    parts = token.split(".")
    if len(parts) != 3:
        raise MalformedCredential(f"expected 3 token segments, got {len(parts)}")

    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.exceptions.PyJWTError as e:
        raise MalformedCredential(f"Invalid token format: {e}") from e

    return IdentityClaims(claims=payload)


class IdentityResolver:
    """Map a caller's bearer token to their IMS user and default vault.

    Handles:
    1. Login name extraction from token claims
    2. User lookup by login name
    3. Default vault lookup (with the two id shapes IMS returns)
    4. Best-effort read of the vault's advertised URL
    """

    def __init__(self, odata: ODataClient) -> None:
        self._odata = odata

    def resolve_login_name(self, credential: str) -> str:
        """Return the login name carried by the token.

        Raises:
            MalformedCredential: If the token cannot be decoded.
            IdentityNotFound: If no login claim is present.
        """
        login_name = decode_claims(credential).login_name
        if login_name is None:
            raise IdentityNotFound("token carries no login name claim")
        return login_name

    async def resolve_vault(self, credential: str) -> VaultBinding:
        """Resolve the default vault of the token's user.

        Args:
            credential: Bearer token, with or without the ``Bearer`` prefix.

        Returns:
            VaultBinding with the vault id and, when readable, its URL.

        Raises:
            UserLookupFailed: If a User query fails.
            UserNotFound: If no User has the token's login name.
            VaultNotConfigured: If the User has no default vault.
        """
        token = strip_bearer(credential)
        login_name = self.resolve_login_name(token)

        user = await self._find_user(token, login_name)
        vault_id = await self._read_vault_id(token, user)
        vault_url = await self._read_vault_url(token, vault_id)

        logger.info(
            "Resolved user vault",
            extra={"login_name": login_name, "vault_id": vault_id},
        )
        return VaultBinding(vault_id=vault_id, vault_url=vault_url)

    async def _find_user(self, token: str, login_name: str) -> UserRecord:
        params = {
            "$filter": f"login_name eq {odata_string(login_name)}",
            "$select": "id,login_name,default_vault",
        }
        data = await self._read_json("User", token, params, f"User lookup for {login_name!r}")

        rows = data.get("value") or []
        if not isinstance(rows, list):
            raise UserLookupFailed(f"User lookup for {login_name!r} returned no value list")
        if not rows:
            raise UserNotFound(login_name)

        row = rows[0]
        if not isinstance(row, dict):
            raise UserLookupFailed(f"User lookup for {login_name!r} returned a malformed row")
        user_id = row.get("id")
        if not isinstance(user_id, str) or not user_id:
            raise UserLookupFailed(f"User lookup for {login_name!r} returned a row without id")
        return UserRecord(
            id=user_id,
            login_name=str(row.get("login_name") or login_name),
            default_vault=extract_vault_id(row),
        )

    async def _read_vault_id(self, token: str, user: UserRecord) -> str:
        data = await self._read_json(
            f"User('{user.id}')",
            token,
            {"$select": "default_vault"},
            f"default_vault lookup for user {user.id}",
        )
        vault_id = extract_vault_id(data)
        if vault_id is None:
            raise VaultNotConfigured(user.id)
        if user.default_vault and user.default_vault != vault_id:
            logger.warning(
                "default_vault differs between User queries; using the by-id value",
                extra={"login_name": user.login_name, "vault_id": vault_id},
            )
        return vault_id

    async def _read_vault_url(self, token: str, vault_id: str) -> str | None:
        try:
            response = await self._odata.get(f"Vault('{vault_id}')", token, {"$select": "*"})
            response.raise_for_status()
            vault_url = response.json().get("vault_url")
        except (httpx.HTTPError, ValueError, AttributeError):
            logger.warning(
                "Could not read Vault item; continuing without vault_url",
                extra={"vault_id": vault_id},
                exc_info=True,
            )
            return None
        return vault_url or None

    async def _read_json(
        self,
        path: str,
        token: str,
        params: dict[str, str],
        what: str,
    ) -> dict[str, Any]:
        try:
            response = await self._odata.get(path, token, params)
        except httpx.HTTPError as e:
            raise UserLookupFailed(f"{what} failed: {e}") from e

        if not response.is_success:
            logger.error(
                "IMS User query failed",
                extra={"status_code": response.status_code},
            )
            raise UserLookupFailed(
                f"{what} failed: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise UserLookupFailed(f"{what} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise UserLookupFailed(f"{what} returned unexpected payload")
        return data
