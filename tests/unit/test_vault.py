"""Unit tests for the vault transaction client."""

from __future__ import annotations

import httpx
import pytest
from conftest import VAULT_A, VAULT_B, VAULT_C, VAULT_CANDIDATES, FakeIms

from procurement_gateway.models.files import CommitBatch, TransactionState, VaultTransaction
from procurement_gateway.services.errors import (
    CommitFailed,
    UploadFailed,
    VaultStateError,
    VaultUnreachable,
)
from procurement_gateway.services.vault import (
    VaultTransactionClient,
    content_disposition,
    content_range,
)

FILE_ID = "ABCDEF0123456789ABCDEF0123456789"
BATCH = CommitBatch(body="--b\r\n--b--\r\n", boundary="b", changeset_boundary="c")


def _client(fake: FakeIms, **kwargs: object) -> VaultTransactionClient:
    return VaultTransactionClient(fake.client(), list(VAULT_CANDIDATES), **kwargs)  # type: ignore[arg-type]


class TestBeginTransaction:
    """Tests for candidate probing in begin_transaction."""

    @pytest.mark.asyncio
    async def test_first_candidate_wins(self, fake_ims: FakeIms, token: str) -> None:
        transaction = await _client(fake_ims).begin_transaction(token, "V1")

        assert transaction.base_url == VAULT_A
        assert transaction.transaction_id == "T-vault-a.test"
        assert transaction.vault_id == "V1"
        assert transaction.state is TransactionState.TRANSACTION_OPEN
        assert len(fake_ims.calls("vault.BeginTransaction")) == 1

    @pytest.mark.asyncio
    async def test_stops_at_first_success(self, fake_ims: FakeIms, token: str) -> None:
        fake_ims.begin_status[VAULT_A] = 503

        transaction = await _client(fake_ims).begin_transaction(token, "V1")

        assert transaction.base_url == VAULT_B
        probed = [str(r.url) for r in fake_ims.calls("vault.BeginTransaction")]
        assert probed == [f"{VAULT_A}vault.BeginTransaction", f"{VAULT_B}vault.BeginTransaction"]
        assert fake_ims.calls("vault-c.test") == []

    @pytest.mark.asyncio
    async def test_begin_request_shape(self, fake_ims: FakeIms, token: str) -> None:
        await _client(fake_ims).begin_transaction(f"Bearer {token}", "V1")

        request = fake_ims.calls("vault.BeginTransaction")[0]
        assert request.method == "POST"
        assert request.headers["Authorization"] == f"Bearer {token}"
        assert request.headers["VAULTID"] == "V1"
        assert fake_ims.json_body(request) == {}

    @pytest.mark.asyncio
    async def test_all_candidates_fail(self, fake_ims: FakeIms, token: str) -> None:
        for url in VAULT_CANDIDATES:
            fake_ims.begin_status[url] = 502

        with pytest.raises(VaultUnreachable) as exc_info:
            await _client(fake_ims).begin_transaction(token, "V1")

        err = exc_info.value
        assert [a.base_url for a in err.attempts] == VAULT_CANDIDATES
        assert all(a.status_code == 502 for a in err.attempts)
        assert err.last_candidate == VAULT_C
        assert "vault-c.test" in err.last_error
        assert VAULT_C in str(err)

    @pytest.mark.asyncio
    async def test_transport_error_moves_to_next_candidate(self, token: str) -> None:
        fake = FakeIms()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "vault-a.test":
                raise httpx.ConnectError("Connection refused")
            return fake.handler(request)

        client = VaultTransactionClient(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)), VAULT_CANDIDATES
        )
        transaction = await client.begin_transaction(token, "V1")
        assert transaction.base_url == VAULT_B

    @pytest.mark.asyncio
    async def test_success_without_transaction_id_counts_as_failure(self, token: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "vault-a.test":
                return httpx.Response(200, json={})
            return httpx.Response(200, json={"transactionId": "T2"})

        client = VaultTransactionClient(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)), VAULT_CANDIDATES
        )
        transaction = await client.begin_transaction(token, "V1")
        assert transaction.transaction_id == "T2"
        assert transaction.base_url == VAULT_B

    @pytest.mark.asyncio
    async def test_no_candidates(self, fake_ims: FakeIms, token: str) -> None:
        client = VaultTransactionClient(fake_ims.client(), [])
        with pytest.raises(VaultUnreachable) as exc_info:
            await client.begin_transaction(token, "V1")
        assert exc_info.value.attempts == []

    def test_candidates_are_normalised(self, fake_ims: FakeIms) -> None:
        client = VaultTransactionClient(fake_ims.client(), ["https://v.test/odata"])
        assert client.candidates == ["https://v.test/odata/"]


class TestUploadFile:
    """Tests for the single-chunk upload."""

    @pytest.mark.asyncio
    async def test_upload_request_shape(self, fake_ims: FakeIms, token: str) -> None:
        fake_ims.begin_status[VAULT_A] = 503
        client = _client(fake_ims)
        transaction = await client.begin_transaction(token, "V1")

        await client.upload_file(token, transaction, FILE_ID, b"%PDF-1.7 data", "Quote été.pdf")

        request = fake_ims.calls("vault.UploadFile")[0]
        assert str(request.url).startswith(f"{VAULT_B}vault.UploadFile")
        assert request.url.params["fileId"] == FILE_ID
        assert request.headers["VAULTID"] == "V1"
        assert request.headers["transactionid"] == "T-vault-b.test"
        assert request.headers["Content-Type"] == "application/octet-stream"
        assert request.headers["Content-Length"] == "13"
        assert request.headers["Content-Range"] == "bytes 0-12/13"
        assert (
            request.headers["Content-Disposition"]
            == "attachment; filename*=utf-8''Quote%20%C3%A9t%C3%A9.pdf"
        )
        assert request.content == b"%PDF-1.7 data"
        assert transaction.state is TransactionState.CHUNK_UPLOADED

    @pytest.mark.asyncio
    async def test_upload_rejected(self, fake_ims: FakeIms, token: str) -> None:
        fake_ims.upload_status = 500
        client = _client(fake_ims)
        transaction = await client.begin_transaction(token, "V1")

        with pytest.raises(UploadFailed) as exc_info:
            await client.upload_file(token, transaction, FILE_ID, b"data", "a.pdf")

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "upload rejected"
        assert transaction.state is TransactionState.ABANDONED

    @pytest.mark.asyncio
    async def test_upload_requires_open_transaction(self, fake_ims: FakeIms, token: str) -> None:
        transaction = VaultTransaction(
            transaction_id="T1",
            vault_id="V1",
            base_url=VAULT_A,
            state=TransactionState.COMMITTED,
        )
        with pytest.raises(VaultStateError):
            await _client(fake_ims).upload_file(token, transaction, FILE_ID, b"x", "a.pdf")
        assert fake_ims.requests == []

    def test_content_range(self) -> None:
        assert content_range(1) == "bytes 0-0/1"
        assert content_range(2048) == "bytes 0-2047/2048"

    def test_content_disposition_escapes_reserved_characters(self) -> None:
        assert content_disposition("a;b\"c.pdf") == "attachment; filename*=utf-8''a%3Bb%22c.pdf"


class TestCommitTransaction:
    """Tests for commit_transaction."""

    async def _uploaded(self, fake: FakeIms, token: str) -> tuple[VaultTransactionClient, VaultTransaction]:
        client = _client(fake)
        transaction = await client.begin_transaction(token, "V1")
        await client.upload_file(token, transaction, FILE_ID, b"data", "a.pdf")
        return client, transaction

    @pytest.mark.asyncio
    async def test_commit_request_shape(self, fake_ims: FakeIms, token: str) -> None:
        client, transaction = await self._uploaded(fake_ims, token)

        text = await client.commit_transaction(token, transaction, BATCH)

        assert text == "--batchresponse_1--"
        request = fake_ims.calls("vault.CommitTransaction")[0]
        assert str(request.url) == f"{VAULT_A}vault.CommitTransaction"
        assert request.headers["VAULTID"] == "V1"
        assert request.headers["transactionid"] == "T-vault-a.test"
        assert request.headers["Content-Type"] == "multipart/mixed; boundary=b"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["Prefer"] == "return=representation"
        assert request.headers["OData-Version"] == "4.0"
        assert request.content == BATCH.body.encode()
        assert transaction.state is TransactionState.COMMITTED

    @pytest.mark.asyncio
    async def test_commit_rejected_with_odata_error(self, fake_ims: FakeIms, token: str) -> None:
        fake_ims.commit_status = 400
        fake_ims.commit_error = {
            "error": {"code": "X", "message": "Y", "target": "File", "innererror": {"trace": "t"}}
        }
        client, transaction = await self._uploaded(fake_ims, token)

        with pytest.raises(CommitFailed) as exc_info:
            await client.commit_transaction(token, transaction, BATCH)

        err = exc_info.value
        assert err.status_code == 400
        assert err.odata_error is not None
        assert err.odata_error.code == "X"
        assert err.odata_error.message == "Y"
        assert err.odata_error.target == "File"
        assert transaction.state is TransactionState.ABANDONED

    @pytest.mark.asyncio
    async def test_commit_rejected_with_numeric_error_code(
        self, fake_ims: FakeIms, token: str
    ) -> None:
        fake_ims.commit_status = 400
        fake_ims.commit_error = {"error": {"code": 400, "message": "Y", "details": {"x": 1}}}
        client, transaction = await self._uploaded(fake_ims, token)

        with pytest.raises(CommitFailed) as exc_info:
            await client.commit_transaction(token, transaction, BATCH)

        assert exc_info.value.odata_error is not None
        assert exc_info.value.odata_error.code == "400"
        assert exc_info.value.odata_error.details == [{"x": 1}]
        assert transaction.state is TransactionState.ABANDONED

    @pytest.mark.asyncio
    async def test_commit_rejected_with_plain_text(self, fake_ims: FakeIms, token: str) -> None:
        fake_ims.commit_status = 500
        client, transaction = await self._uploaded(fake_ims, token)

        with pytest.raises(CommitFailed) as exc_info:
            await client.commit_transaction(token, transaction, BATCH)

        assert exc_info.value.odata_error is None
        assert exc_info.value.body == "commit rejected"

    @pytest.mark.asyncio
    async def test_commit_requires_uploaded_chunk(self, fake_ims: FakeIms, token: str) -> None:
        client = _client(fake_ims)
        transaction = await client.begin_transaction(token, "V1")
        with pytest.raises(VaultStateError):
            await client.commit_transaction(token, transaction, BATCH)
