"""Failures of the vault upload transaction and its identity prerequisite."""

from __future__ import annotations

from typing import TYPE_CHECKING

from procurement_gateway.models.errors import ODataError

if TYPE_CHECKING:
    from procurement_gateway.services.vault import CandidateOutcome


class VaultUploadError(Exception):
    """Base class for every failure of the upload orchestration.

    Callers treat any subclass the same way: log it and fall back to an
    inline attachment.
    """

    code = "vault_upload_error"


class MalformedCredential(VaultUploadError):
    """Bearer token is not a three-part token with a JSON payload."""

    code = "malformed_credential"


class IdentityNotFound(VaultUploadError):
    """Token payload carries none of the recognised login claims."""

    code = "identity_not_found"


class UserLookupFailed(VaultUploadError):
    """User query against IMS did not succeed."""

    code = "user_lookup_failed"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class UserNotFound(VaultUploadError):
    """No IMS User matches the login name."""

    code = "user_not_found"

    def __init__(self, login_name: str) -> None:
        self.login_name = login_name
        super().__init__(f"no IMS user with login_name {login_name!r}")


class VaultNotConfigured(VaultUploadError):
    """User has no default vault."""

    code = "vault_not_configured"

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"user {user_id} has no default_vault")


class VaultUnreachable(VaultUploadError):
    """Every candidate vault endpoint refused BeginTransaction."""

    code = "vault_unreachable"

    def __init__(self, attempts: list[CandidateOutcome]) -> None:
        self.attempts = attempts
        self.last_error = attempts[-1].error if attempts else "no vault endpoints configured"
        self.last_candidate = attempts[-1].base_url if attempts else None
        super().__init__(
            f"all {len(attempts)} vault endpoints failed; last: {self.last_candidate}: {self.last_error}"
        )


class UploadFailed(VaultUploadError):
    """vault.UploadFile was rejected or did not complete."""

    code = "upload_failed"

    def __init__(self, status_code: int | None, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"vault upload failed (status {status_code}): {body[:200]}")


class CommitFailed(VaultUploadError):
    """vault.CommitTransaction was rejected or did not complete."""

    code = "commit_failed"

    def __init__(
        self,
        status_code: int | None,
        body: str,
        odata_error: ODataError | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.odata_error = odata_error
        detail = odata_error.message if odata_error and odata_error.message else body[:200]
        super().__init__(f"vault commit failed (status {status_code}): {detail}")


class MetadataCreateFailed(VaultUploadError):
    """File item could not be created in IMS."""

    code = "metadata_create_failed"

    def __init__(self, status_code: int | None, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"File create failed (status {status_code}): {body[:200]}")


class VaultStateError(VaultUploadError):
    """Transaction operation called out of order."""

    code = "vault_state_error"
