"""Client for the IMS vault transaction protocol.

One upload attempt walks ``BeginTransaction -> UploadFile ->
CommitTransaction``. The vault is reachable through one of several base
URLs that cannot be discovered reliably, so BeginTransaction probes the
configured candidates in order and the winner is pinned on the returned
transaction for the remaining two calls.
"""

from __future__ import annotations

import hashlib
import logging
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from procurement_gateway.models.errors import ODataError
from procurement_gateway.models.files import CommitBatch, TransactionState, VaultTransaction
from procurement_gateway.services.errors import (
    CommitFailed,
    UploadFailed,
    VaultStateError,
    VaultUnreachable,
)
from procurement_gateway.services.identity import strip_bearer
from procurement_gateway.services.odata import bearer_headers

logger = logging.getLogger(__name__)


class CandidateOutcome(BaseModel):
    """Result of probing one candidate base URL with BeginTransaction."""

    base_url: str
    transaction_id: str | None = None
    status_code: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.transaction_id is not None


def content_disposition(filename: str) -> str:
    """RFC 5987 ``attachment`` disposition safe for any file name."""
    return f"attachment; filename*=utf-8''{quote(filename, safe='')}"


def content_range(size: int) -> str:
    """Range header covering the whole body as a single chunk."""
    if size == 0:
        return "bytes */0"
    return f"bytes 0-{size - 1}/{size}"


class VaultTransactionClient:
    """Execute begin/upload/commit against the vault subsystem.

    Args:
        http_client: Request-scoped async HTTP client.
        candidate_urls: Vault base URLs in probing order.
        upload_timeout: Timeout in seconds for the binary upload call.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        candidate_urls: list[str],
        upload_timeout: float | None = None,
    ) -> None:
        self._http = http_client
        self._candidates = [u if u.endswith("/") else f"{u}/" for u in candidate_urls]
        self._upload_timeout = upload_timeout

    @property
    def candidates(self) -> list[str]:
        return list(self._candidates)

    async def begin_transaction(self, credential: str, vault_id: str) -> VaultTransaction:
        """Open a transaction on the first candidate that accepts it.

        Raises:
            VaultUnreachable: If every candidate fails; carries all outcomes.
        """
        token = strip_bearer(credential)
        attempts: list[CandidateOutcome] = []

        for base_url in self._candidates:
            outcome = await self._probe(base_url, token, vault_id)
            attempts.append(outcome)
            if outcome.ok:
                logger.info(
                    "Vault transaction opened",
                    extra={
                        "vault_id": vault_id,
                        "transaction_id": outcome.transaction_id,
                        "candidate": base_url,
                    },
                )
                return VaultTransaction(
                    transaction_id=outcome.transaction_id,  # type: ignore[arg-type]
                    vault_id=vault_id,
                    base_url=base_url,
                )
            logger.warning(
                "Vault candidate refused BeginTransaction",
                extra={
                    "vault_id": vault_id,
                    "candidate": base_url,
                    "status_code": outcome.status_code,
                },
            )

        raise VaultUnreachable(attempts)

    async def _probe(self, base_url: str, token: str, vault_id: str) -> CandidateOutcome:
        headers = {**bearer_headers(token), "VAULTID": vault_id}
        try:
            response = await self._http.post(
                f"{base_url}vault.BeginTransaction",
                json={},
                headers=headers,
            )
        except httpx.HTTPError as e:
            return CandidateOutcome(base_url=base_url, error=f"{type(e).__name__}: {e}")

        if not response.is_success:
            return CandidateOutcome(
                base_url=base_url,
                status_code=response.status_code,
                error=response.text[:500] or response.reason_phrase,
            )

        try:
            transaction_id = response.json().get("transactionId")
        except (ValueError, AttributeError):
            transaction_id = None
        if not transaction_id:
            return CandidateOutcome(
                base_url=base_url,
                status_code=response.status_code,
                error="response carries no transactionId",
            )
        return CandidateOutcome(
            base_url=base_url,
            status_code=response.status_code,
            transaction_id=str(transaction_id),
        )

    async def upload_file(
        self,
        credential: str,
        transaction: VaultTransaction,
        file_id: str,
        content: bytes,
        filename: str,
    ) -> None:
        """Send the whole file as one chunk under the open transaction.

        Raises:
            VaultStateError: If the transaction is not open.
            UploadFailed: If the vault rejects the upload or the call fails.
        """
        self._require_state(transaction, TransactionState.TRANSACTION_OPEN)
        size = len(content)
        headers = {
            **bearer_headers(strip_bearer(credential)),
            "VAULTID": transaction.vault_id,
            "transactionid": transaction.transaction_id,
            "Content-Disposition": content_disposition(filename),
            "Content-Length": str(size),
            "Content-Range": content_range(size),
            "Content-Type": "application/octet-stream",
        }
        url = f"{transaction.base_url}vault.UploadFile"
        request_kwargs = {}
        if self._upload_timeout is not None:
            request_kwargs["timeout"] = self._upload_timeout

        try:
            response = await self._http.post(
                url,
                params={"fileId": file_id},
                content=content,
                headers=headers,
                **request_kwargs,
            )
        except httpx.HTTPError as e:
            self._abandon(transaction, file_id, "upload")
            raise UploadFailed(None, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            self._abandon(transaction, file_id, "upload")
            raise UploadFailed(response.status_code, response.text)

        transaction.state = TransactionState.CHUNK_UPLOADED
        # No checksum header exists in the vault API; log the digest for later comparison
        logger.info(
            "Vault upload complete (%d bytes, sha256=%s)",
            size,
            hashlib.sha256(content).hexdigest(),
            extra={
                "vault_id": transaction.vault_id,
                "transaction_id": transaction.transaction_id,
                "file_id": file_id,
            },
        )

    async def commit_transaction(
        self,
        credential: str,
        transaction: VaultTransaction,
        batch: CommitBatch,
    ) -> str:
        """Commit the transaction with the encoded File creation batch.

        Returns:
            Raw response text of the commit call.

        Raises:
            VaultStateError: If no chunk has been uploaded.
            CommitFailed: If the vault rejects the commit or the call fails.
        """
        self._require_state(transaction, TransactionState.CHUNK_UPLOADED)
        headers = {
            **bearer_headers(strip_bearer(credential)),
            "VAULTID": transaction.vault_id,
            "transactionid": transaction.transaction_id,
            "Content-Type": batch.content_type,
            "Accept": "application/json",
            "Prefer": "return=representation",
            "OData-Version": "4.0",
        }
        try:
            response = await self._http.post(
                f"{transaction.base_url}vault.CommitTransaction",
                content=batch.body.encode("utf-8"),
                headers=headers,
            )
        except httpx.HTTPError as e:
            self._abandon(transaction, None, "commit")
            raise CommitFailed(None, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            odata_error = _parse_odata_error(response)
            logger.error(
                "Vault commit rejected",
                extra={
                    "vault_id": transaction.vault_id,
                    "transaction_id": transaction.transaction_id,
                    "status_code": response.status_code,
                    "error_code": odata_error.code if odata_error else None,
                },
            )
            self._abandon(transaction, None, "commit")
            raise CommitFailed(response.status_code, response.text, odata_error)

        transaction.state = TransactionState.COMMITTED
        logger.info(
            "Vault transaction committed",
            extra={"vault_id": transaction.vault_id, "transaction_id": transaction.transaction_id},
        )
        return response.text

    @staticmethod
    def _require_state(transaction: VaultTransaction, expected: TransactionState) -> None:
        if transaction.state is not expected:
            raise VaultStateError(
                f"transaction {transaction.transaction_id} is {transaction.state.value}, "
                f"expected {expected.value}"
            )

    @staticmethod
    def _abandon(transaction: VaultTransaction, file_id: str | None, step: str) -> None:
        # The vault expires unfinished transactions; nothing is rolled back here
        transaction.state = TransactionState.ABANDONED
        logger.warning(
            "Vault transaction abandoned after failed %s",
            step,
            extra={
                "vault_id": transaction.vault_id,
                "transaction_id": transaction.transaction_id,
                "file_id": file_id,
            },
        )


def _parse_odata_error(response: httpx.Response) -> ODataError | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    return ODataError.from_payload(payload)
