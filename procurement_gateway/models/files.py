"""File and vault transaction models for attachment uploads."""

from __future__ import annotations

import uuid
from enum import Enum

from pydantic import BaseModel, Field


def new_file_id() -> str:
    """Mint a Client File Id: a UUID4 without separators, upper-cased."""
    return uuid.uuid4().hex.upper()


class UploadedFile(BaseModel):
    """File received from the client, held in memory for one request."""

    filename: str = Field(..., min_length=1)
    mime_type: str = Field("application/octet-stream")
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


class TransactionState(str, Enum):
    """Lifecycle of a single vault upload attempt."""

    NOT_STARTED = "not_started"
    TRANSACTION_OPEN = "transaction_open"
    CHUNK_UPLOADED = "chunk_uploaded"
    COMMITTED = "committed"
    ABANDONED = "abandoned"


class VaultTransaction(BaseModel):
    """Open vault transaction pinned to the base URL that accepted it.

    Upload and commit must present the same ``transaction_id`` and
    ``vault_id`` to the same ``base_url``.
    """

    transaction_id: str
    vault_id: str
    base_url: str
    state: TransactionState = TransactionState.TRANSACTION_OPEN


class CommitBatch(BaseModel):
    """Encoded multipart/mixed body for ``vault.CommitTransaction``."""

    body: str
    boundary: str
    changeset_boundary: str

    @property
    def content_type(self) -> str:
        return f"multipart/mixed; boundary={self.boundary}"


class FileMetadataRecord(BaseModel):
    """IMS File item linking a Client File Id to its vault.

    This is what a procurement request references as ``m_quote``.
    """

    id: str
    filename: str
    file_type: str
    file_size: int
    vault_id: str
