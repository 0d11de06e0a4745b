"""Shared fixtures: a fake IMS server reachable through httpx.MockTransport."""

from __future__ import annotations

import json
import re
from typing import Any
from urllib.parse import unquote

import httpx
import jwt
import pytest

from procurement_gateway.config import Settings

ODATA_BASE = "https://ims.test/IMS/Server/odata/"
VAULT_A = "https://vault-a.test/IMS/vault/odata/"
VAULT_B = "https://vault-b.test/IMS/vault/odata/"
VAULT_C = "https://vault-c.test/IMS/vault/odata/"
VAULT_CANDIDATES = [VAULT_A, VAULT_B, VAULT_C]
TOKEN_URL = "https://ims.test/IMS/OAuthServer/connect/token"

_SIGNING_KEY = "test-signing-key-not-used-for-verification"


def make_token(claims: dict[str, Any] | None = None) -> str:
    """Signed three-part token carrying the given claims."""
    payload = claims if claims is not None else {"preferred_username": "jdoe"}
    return jwt.encode(payload, _SIGNING_KEY, algorithm="HS256")


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "ims_base_url": ODATA_BASE,
        "vault_base_urls": list(VAULT_CANDIDATES),
        "oauth_token_url": TOKEN_URL,
        "ims_database": "IMS",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[call-arg]


class FakeIms:
    """In-memory stand-in for the IMS OData server and its vault endpoints.

    Tests flip the status attributes to simulate failures and inspect
    ``requests`` afterwards.
    """

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {
            "jdoe": {
                "id": "U1",
                "login_name": "jdoe",
                "default_vault@aras.id": "V1",
            }
        }
        self.vault_url: str | None = "https://vault-a.test/IMS/vault/vaultserver.aspx"
        self.user_lookup_status = 200
        self.vault_item_status = 200
        self.begin_status = {url: 200 for url in VAULT_CANDIDATES}
        self.upload_status = 200
        self.commit_status = 200
        self.commit_error: dict[str, Any] | None = None
        self.file_create_status = 201
        self.file_create_body: Any = None
        self.user_lookup_body: Any = None
        self.request_create_status = 201
        self.request_create_error: dict[str, Any] | None = None
        self.token_status = 200
        self.requests: list[httpx.Request] = []

    # -- inspection helpers -------------------------------------------------

    def calls(self, marker: str) -> list[httpx.Request]:
        return [r for r in self.requests if marker in unquote(str(r.url))]

    def json_body(self, request: httpx.Request) -> Any:
        return json.loads(request.content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    # -- dispatch ------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = unquote(str(request.url))
        path = unquote(request.url.path)

        if url.startswith(TOKEN_URL):
            return self._token()
        if "vault.BeginTransaction" in path:
            return self._begin(url)
        if "vault.UploadFile" in path:
            return self._status_only(self.upload_status, "upload rejected")
        if "vault.CommitTransaction" in path:
            return self._commit()
        if path.endswith("/User"):
            return self._user_lookup(request)
        if "/User(" in path:
            return self._user_by_id(path)
        if "/Vault(" in path:
            return self._vault_item(path)
        if path.endswith("/File"):
            return self._file_create(request)
        if path.endswith("/m_Procurement_Request_Files"):
            return httpx.Response(201, json={"id": "PRF-1", **self.json_body(request)})
        if path.endswith("/m_Procurement_Request"):
            return self._request_create(request)
        return httpx.Response(404, json={"error": {"code": "404", "message": f"no route {path}"}})

    def _token(self) -> httpx.Response:
        if self.token_status != 200:
            return httpx.Response(self.token_status, text='{"error":"invalid_grant"}')
        return httpx.Response(200, json={"access_token": "ims-access-token", "expires_in": 3600})

    def _begin(self, url: str) -> httpx.Response:
        base = url.split("vault.BeginTransaction")[0]
        status = self.begin_status.get(base, 404)
        if status != 200:
            return httpx.Response(status, text=f"{base} unavailable")
        host = httpx.URL(base).host
        return httpx.Response(200, json={"transactionId": f"T-{host}"})

    def _commit(self) -> httpx.Response:
        if self.commit_status != 200:
            if self.commit_error is not None:
                return httpx.Response(self.commit_status, json=self.commit_error)
            return httpx.Response(self.commit_status, text="commit rejected")
        return httpx.Response(200, text="--batchresponse_1--")

    @staticmethod
    def _status_only(status: int, text: str) -> httpx.Response:
        if status == 200:
            return httpx.Response(200)
        return httpx.Response(status, text=text)

    def _user_lookup(self, request: httpx.Request) -> httpx.Response:
        if self.user_lookup_status != 200:
            return httpx.Response(self.user_lookup_status, text="lookup failed")
        if self.user_lookup_body is not None:
            return httpx.Response(200, json=self.user_lookup_body)
        match = re.search(r"login_name eq '(.*)'$", request.url.params.get("$filter", ""))
        login_name = match.group(1).replace("''", "'") if match else ""
        user = self.users.get(login_name)
        return httpx.Response(200, json={"value": [user] if user else []})

    def _user_by_id(self, path: str) -> httpx.Response:
        user_id = re.search(r"User\('([^']+)'\)", path).group(1)  # type: ignore[union-attr]
        for user in self.users.values():
            if user["id"] == user_id:
                return httpx.Response(
                    200,
                    json={k: v for k, v in user.items() if k.startswith("default_vault")},
                )
        return httpx.Response(404, json={"error": {"code": "404", "message": "no user"}})

    def _vault_item(self, path: str) -> httpx.Response:
        if self.vault_item_status != 200:
            return httpx.Response(self.vault_item_status, text="vault item unavailable")
        vault_id = re.search(r"Vault\('([^']+)'\)", path).group(1)  # type: ignore[union-attr]
        return httpx.Response(200, json={"id": vault_id, "vault_url": self.vault_url})

    def _file_create(self, request: httpx.Request) -> httpx.Response:
        if self.file_create_status not in (200, 201):
            return httpx.Response(self.file_create_status, text="file create rejected")
        if self.file_create_body is not None:
            return httpx.Response(self.file_create_status, json=self.file_create_body)
        body = self.json_body(request)
        return httpx.Response(self.file_create_status, json={"id": body["id"], **body})

    def _request_create(self, request: httpx.Request) -> httpx.Response:
        if self.request_create_status not in (200, 201, 204):
            error = self.request_create_error or {
                "error": {"code": "SOAP-ENV:Server", "message": "create failed"}
            }
            return httpx.Response(self.request_create_status, json=error)
        headers = {"Location": f"{ODATA_BASE}m_Procurement_Request('PR1')"}
        if self.request_create_status == 204:
            return httpx.Response(204, headers=headers)
        return httpx.Response(
            self.request_create_status,
            json={"id": "PR1", "item_number": "REQ-000071"},
            headers=headers,
        )


@pytest.fixture
def fake_ims() -> FakeIms:
    return FakeIms()


@pytest.fixture
def token() -> str:
    return make_token()
