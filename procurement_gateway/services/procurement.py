"""Procurement request submission: form mapping, attachment and OData create."""

from __future__ import annotations

import base64
import logging
import re
import time
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel

from procurement_gateway.models.files import FileMetadataRecord, UploadedFile
from procurement_gateway.services.audit import SubmissionAuditEntry, log_submission
from procurement_gateway.services.errors import VaultUploadError
from procurement_gateway.services.identity import decode_claims, strip_bearer
from procurement_gateway.services.odata import ODataClient
from procurement_gateway.services.upload import UploadOrchestrator

logger = logging.getLogger(__name__)

REQUEST_ENTITY_SET = "m_Procurement_Request"
FILES_ENTITY_SET = "m_Procurement_Request_Files"

REQUIRED_FIELDS = ("m_project", "m_supplier")

INVOICE_APPROVERS = {
    "0": 0,
    "PO Owner": 0,
    "1": 1,
    "Procurement team": 1,
    "2": 2,
    "Other": 2,
}
INVOICE_APPROVER_OTHER = 2

BOOLEAN_FIELDS = {
    "capex": "m_is_capex",
    "fid": "m_is_fid",
    "reviewedByLabTpm": "m_is_lab_tpm",
    "deliverToMsftPoc": "m_is_msft_poc",
    "urgent": "m_is_po_urgent",
}

JUSTIFICATION_FIELDS = (
    "businessJustificationProject",
    "businessJustificationLocation",
    "businessJustificationWhat",
    "businessJustificationWhy",
    "businessJustificationImpact",
    "businessJustificationNotes",
)

DEFAULT_NOT_FORECASTED_REASON = "No FID required for this purchase type"
NO_JUSTIFICATION = "No business justification provided."

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)


class PayloadValidationError(ValueError):
    """Submitted procurement fields are incomplete."""


class AttachmentMode(str, Enum):
    """How the attachment ended up on the procurement request."""

    VAULT = "vault"
    INLINE = "inline"
    GENERATED = "generated"


class SubmissionResult(BaseModel):
    """Outcome of one procurement request submission."""

    model_config = {"arbitrary_types_allowed": True}

    response: httpx.Response
    attachment_mode: AttachmentMode
    file_record: FileMetadataRecord | None = None
    vault_error: str | None = None


def validate_required_fields(fields: dict[str, Any]) -> None:
    """Check the fields IMS refuses to create a request without.

    Raises:
        PayloadValidationError: Naming the missing fields.
    """
    missing = [name for name in REQUIRED_FIELDS if not fields.get(name)]
    if missing:
        raise PayloadValidationError(f"Missing required fields: {', '.join(missing)}")
    if not fields.get("poOwnerAlias") and not fields.get("m_po_owner"):
        raise PayloadValidationError("Missing required field: PO Owner Alias")


def _is_true(value: Any) -> bool:
    return value is True or value == "true"


def build_request_fields(
    raw: dict[str, Any],
    reviewers: list[str],
    default_reviewer: str,
) -> dict[str, Any]:
    """Map submitted form fields to ``m_Procurement_Request`` properties.

    Args:
        raw: Fields as submitted by the frontend (form strings or JSON values).
        reviewers: Accepted reviewer names.
        default_reviewer: Reviewer used when none or an unknown one is given.

    Returns:
        New dict ready to be sent to IMS (without the attachment).

    Raises:
        PayloadValidationError: If required fields are missing.
    """
    validate_required_fields(raw)
    fields = dict(raw)
    fields.pop("attachments", None)

    # Invoice approver
    approver = fields.pop("invoiceApprover", None)
    display = fields.pop("invoiceApproverDisplay", None)
    if approver is not None and str(approver) in INVOICE_APPROVERS:
        fields["m_invoice_approver"] = INVOICE_APPROVERS[str(approver)]
        if fields["m_invoice_approver"] == INVOICE_APPROVER_OTHER and display:
            fields["m_invoice_approver_other"] = display
    else:
        if approver is not None:
            logger.warning("Unknown invoice approver %r; defaulting to PO Owner", approver)
        fields["m_invoice_approver"] = INVOICE_APPROVERS["PO Owner"]

    # PO owner: the alias always wins over an id
    alias = fields.pop("poOwnerAlias", None)
    if alias:
        fields["m_po_owner"] = alias
    elif fields.get("poOwnerId"):
        logger.warning("poOwnerId given without poOwnerAlias; m_po_owner may hold an id")
    if _UUID_RE.match(str(fields.get("m_po_owner", ""))):
        logger.warning("m_po_owner looks like a UUID rather than an alias")

    # Reviewer
    reviewer = fields.pop("reviewer", None)
    fields.pop("reviewerName", None)
    if reviewer:
        fields["m_reviewer"] = reviewer
    if fields.get("m_reviewer") not in reviewers:
        if fields.get("m_reviewer"):
            logger.warning("Invalid reviewer %r; using default", fields["m_reviewer"])
        fields["m_reviewer"] = default_reviewer

    # Renamed fields
    project_id = fields.pop("projectId", None)
    project = fields.pop("project", None)
    if project_id:
        fields["m_project"] = project_id
    elif project:
        fields["m_project"] = project
    if fields.get("supplier"):
        fields["m_supplier"] = fields.pop("supplier")
    if fields.get("title"):
        fields["m_title"] = fields.pop("title")

    for source, target in BOOLEAN_FIELDS.items():
        if source in fields:
            fields[target] = _is_true(fields.pop(source))

    # FID
    if "m_is_fid" in fields and not _is_true(fields["m_is_fid"]):
        reason = str(fields.get("m_why_not_forecasted") or "").strip()
        fields["m_why_not_forecasted"] = reason or DEFAULT_NOT_FORECASTED_REASON
        fields.pop("m_fid_code", None)
    elif _is_true(fields.get("m_is_fid")):
        fields.pop("m_why_not_forecasted", None)

    if not fields.get("m_deliverto_third_party"):
        fields["m_deliverto_third_party"] = "No"

    if not fields.get("m_detail_info"):
        parts = [str(fields[name]) for name in JUSTIFICATION_FIELDS if fields.get(name)]
        fields["m_detail_info"] = ". ".join(parts) + "." if parts else NO_JUSTIFICATION

    return fields


def inline_attachment(file: UploadedFile) -> dict[str, Any]:
    """Deep-insert entry carrying the file as base64."""
    return {
        "file_name": file.filename,
        "file_content": base64.b64encode(file.content).decode("ascii"),
        "file_type": file.mime_type,
    }


def generated_attachment(fields: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Text summary attached when a request is submitted without a file.

    IMS requires every procurement request to carry at least one file.
    """
    now = now or datetime.now(tz=UTC)
    summary = (
        f"Procurement Request - {now.isoformat()}\n\n"
        "This is an automatically generated file for procurement requests "
        "submitted without attachments.\n\n"
        "Request Details:\n"
        f"- Project: {fields.get('m_project') or 'N/A'}\n"
        f"- Supplier: {fields.get('m_supplier') or 'N/A'}\n"
        f"- PO Owner: {fields.get('m_po_owner') or 'N/A'}\n"
        f"- Submitted: {now.strftime('%Y-%m-%d %H:%M:%S %Z')}\n\n"
        "No additional attachments were provided with this request.\n"
    )
    return inline_attachment(
        UploadedFile(
            filename=f"procurement_request_{int(now.timestamp() * 1000)}.txt",
            mime_type="text/plain",
            content=summary.encode("utf-8"),
        )
    )


class ProcurementSubmissionService:
    """Create procurement requests in IMS with their attachment.

    The attachment goes through the vault when possible. When the vault
    path fails at any step the file is embedded inline instead, so the
    request itself is never blocked by the vault.
    """

    def __init__(
        self,
        odata: ODataClient,
        orchestrator: UploadOrchestrator,
        reviewers: list[str],
        default_reviewer: str,
    ) -> None:
        self._odata = odata
        self._orchestrator = orchestrator
        self._reviewers = reviewers
        self._default_reviewer = default_reviewer

    async def submit(
        self,
        credential: str,
        raw_fields: dict[str, Any],
        attachment: UploadedFile | None,
        prefer: str = "return=representation",
    ) -> SubmissionResult:
        """Assemble and create one procurement request.

        Raises:
            PayloadValidationError: If required fields are missing.
            httpx.HTTPError: If the IMS create call cannot be made.
        """
        start = time.monotonic()
        token = strip_bearer(credential)
        fields = build_request_fields(raw_fields, self._reviewers, self._default_reviewer)

        record: FileMetadataRecord | None = None
        vault_error: str | None = None
        if attachment is None:
            fields[FILES_ENTITY_SET] = [generated_attachment(fields)]
            mode = AttachmentMode.GENERATED
            logger.info("No attachment provided; attaching generated summary")
        else:
            try:
                record = await self._orchestrator.upload_and_register(token, attachment)
            except VaultUploadError as e:
                vault_error = e.code
                logger.warning(
                    "Vault upload failed; attaching file inline: %s",
                    e,
                    extra={"error_code": e.code},
                )
                fields[FILES_ENTITY_SET] = [inline_attachment(attachment)]
                mode = AttachmentMode.INLINE
            else:
                fields["m_quote"] = record.id
                mode = AttachmentMode.VAULT

        response = await self._odata.post_json(REQUEST_ENTITY_SET, token, fields, prefer=prefer)

        await log_submission(
            SubmissionAuditEntry(
                login_name=_login_name_or_none(token),
                title=fields.get("m_title"),
                attachment_mode=mode.value,
                file_id=record.id if record else None,
                vault_error=vault_error,
                status_code=response.status_code,
                latency_ms=int((time.monotonic() - start) * 1000),
            )
        )
        return SubmissionResult(
            response=response,
            attachment_mode=mode,
            file_record=record,
            vault_error=vault_error,
        )

    async def attach_file(
        self,
        credential: str,
        source_id: str,
        file: UploadedFile,
        metadata: dict[str, Any] | None = None,
        prefer: str = "return=representation",
    ) -> httpx.Response:
        """Add an inline file to an existing procurement request."""
        payload = {**(metadata or {}), "source_id": source_id, **inline_attachment(file)}
        logger.info(
            "Attaching file to procurement request %s (%s, %d bytes)",
            source_id,
            file.mime_type,
            file.size,
        )
        return await self._odata.post_json(
            FILES_ENTITY_SET, strip_bearer(credential), payload, prefer=prefer
        )


def _login_name_or_none(token: str) -> str | None:
    try:
        return decode_claims(token).login_name
    except VaultUploadError:
        return None
