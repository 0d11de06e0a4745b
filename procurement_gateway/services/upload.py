"""Upload one attachment into the user's vault and register it in IMS."""

from __future__ import annotations

import logging
import time

import httpx

from procurement_gateway.models.files import FileMetadataRecord, UploadedFile, new_file_id
from procurement_gateway.services.batch import encode_file_creation_batch
from procurement_gateway.services.errors import MetadataCreateFailed
from procurement_gateway.services.identity import IdentityResolver, strip_bearer
from procurement_gateway.services.odata import ODataClient
from procurement_gateway.services.vault import VaultTransactionClient

logger = logging.getLogger(__name__)

FILE_ENTITY_SET = "File"


class UploadOrchestrator:
    """Sequence identity resolution, the vault transaction and File creation.

    Every step needs the previous step's output, so nothing runs in
    parallel and nothing is retried here. Any failure propagates as a
    ``VaultUploadError`` subclass; falling back is the caller's decision.
    """

    def __init__(
        self,
        odata: ODataClient,
        resolver: IdentityResolver,
        vault: VaultTransactionClient,
    ) -> None:
        self._odata = odata
        self._resolver = resolver
        self._vault = vault

    async def upload_and_register(self, credential: str, file: UploadedFile) -> FileMetadataRecord:
        """Upload ``file`` and return the IMS File item that references it.

        Args:
            credential: Caller's bearer token.
            file: Attachment to store.

        Returns:
            FileMetadataRecord whose id goes into ``m_quote``.

        Raises:
            VaultUploadError: Any subclass, from whichever step failed.
        """
        start = time.monotonic()
        token = strip_bearer(credential)

        binding = await self._resolver.resolve_vault(token)
        file_id = new_file_id()

        transaction = await self._vault.begin_transaction(token, binding.vault_id)
        await self._vault.upload_file(token, transaction, file_id, file.content, file.filename)

        batch = encode_file_creation_batch(
            file_id,
            file.filename,
            file.mime_type,
            file.size,
            binding.vault_id,
            target_url=self._odata.url(FILE_ENTITY_SET),
        )
        await self._vault.commit_transaction(token, transaction, batch)

        record = await self._create_file_record(token, file_id, file, binding.vault_id)

        logger.info(
            "Attachment stored in vault",
            extra={
                "vault_id": binding.vault_id,
                "transaction_id": transaction.transaction_id,
                "file_id": file_id,
                "latency_ms": int((time.monotonic() - start) * 1000),
            },
        )
        return record

    async def _create_file_record(
        self,
        token: str,
        file_id: str,
        file: UploadedFile,
        vault_id: str,
    ) -> FileMetadataRecord:
        # Same file id and vault id as the batch so both resolve to one file
        payload = {
            "id": file_id,
            "filename": file.filename,
            "file_type": file.mime_type,
            "file_size": file.size,
            "located": [{"file_version": 1, "related_id": vault_id}],
        }
        try:
            response = await self._odata.post_json(FILE_ENTITY_SET, token, payload)
        except httpx.HTTPError as e:
            raise MetadataCreateFailed(None, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise MetadataCreateFailed(response.status_code, response.text)

        record_id = file_id
        if response.content:
            try:
                returned_id = response.json().get("id")
            except (ValueError, AttributeError):
                logger.warning("File create returned a non-JSON body", extra={"file_id": file_id})
            else:
                if isinstance(returned_id, str) and returned_id:
                    record_id = returned_id
                elif returned_id is not None:
                    logger.warning(
                        "File create returned a non-string id %r; keeping the client file id",
                        returned_id,
                        extra={"file_id": file_id},
                    )

        return FileMetadataRecord(
            id=record_id,
            filename=file.filename,
            file_type=file.mime_type,
            file_size=file.size,
            vault_id=vault_id,
        )
