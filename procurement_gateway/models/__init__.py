"""Pydantic data models for the procurement gateway."""

from procurement_gateway.models.errors import ErrorBody, ErrorCode, ErrorResponse, ODataError
from procurement_gateway.models.files import (
    CommitBatch,
    FileMetadataRecord,
    TransactionState,
    UploadedFile,
    VaultTransaction,
)
from procurement_gateway.models.identity import IdentityClaims, UserRecord, VaultBinding

__all__ = [
    "CommitBatch",
    "ErrorBody",
    "ErrorCode",
    "ErrorResponse",
    "FileMetadataRecord",
    "IdentityClaims",
    "ODataError",
    "TransactionState",
    "UploadedFile",
    "UserRecord",
    "VaultBinding",
    "VaultTransaction",
]
