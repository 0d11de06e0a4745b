"""Business logic services for the procurement gateway."""

from procurement_gateway.services.audit import SubmissionAuditEntry, log_submission
from procurement_gateway.services.batch import encode_file_creation_batch
from procurement_gateway.services.identity import IdentityResolver
from procurement_gateway.services.login import LoginFailed, LoginService
from procurement_gateway.services.odata import ODataClient
from procurement_gateway.services.procurement import ProcurementSubmissionService
from procurement_gateway.services.upload import UploadOrchestrator
from procurement_gateway.services.vault import VaultTransactionClient

__all__ = [
    "IdentityResolver",
    "LoginFailed",
    "LoginService",
    "ODataClient",
    "ProcurementSubmissionService",
    "SubmissionAuditEntry",
    "UploadOrchestrator",
    "VaultTransactionClient",
    "encode_file_creation_batch",
    "log_submission",
]
