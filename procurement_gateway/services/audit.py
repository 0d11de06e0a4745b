"""Audit trail for procurement request submissions."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class SubmissionAuditEntry(BaseModel):
    """One record per procurement request submission.

    Written to structured logs (JSON). Records which attachment path was
    taken so vault fallbacks can be counted.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    login_name: str | None = Field(None, description="IMS login name from the token, if readable")
    title: str | None = Field(None, description="Procurement request title")
    attachment_mode: str = Field(..., description="vault, inline or generated")
    file_id: str | None = Field(None, description="IMS File id when stored in the vault")
    vault_error: str | None = Field(None, description="Error code that triggered the inline fallback")
    status_code: int = Field(..., description="Status returned by the IMS create call")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    latency_ms: int = Field(..., description="End-to-end submission time in ms")


async def log_submission(entry: SubmissionAuditEntry) -> None:
    """Write a submission audit entry to structured JSON logs.

    Args:
        entry: The audit entry to log.
    """
    logger.info(
        "submission_audit",
        extra={
            "audit_id": entry.id,
            "login_name": entry.login_name,
            "file_id": entry.file_id,
            "error_code": entry.vault_error,
            "status_code": entry.status_code,
            "latency_ms": entry.latency_ms,
            "attachment_mode": entry.attachment_mode,
            "title": entry.title,
        },
    )
