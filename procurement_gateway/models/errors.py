"""Error response models for the procurement gateway API and OData errors."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Machine-readable error codes returned by the gateway."""

    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED_FILE = "unsupported_file"
    FILE_TOO_LARGE = "file_too_large"
    UPSTREAM_ERROR = "upstream_error"
    LOGIN_FAILED = "login_failed"
    INTERNAL_ERROR = "internal_error"


class ErrorBody(BaseModel):
    """Body of the ``error`` envelope."""

    status: int = Field(..., description="HTTP status code")
    code: ErrorCode = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error description")
    details: Any = Field(None, description="Upstream error payload or diagnostic text")
    timestamp: str = Field(default_factory=lambda: datetime.now(tz=UTC).isoformat())


class ErrorResponse(BaseModel):
    """Structured error response: ``{"error": {status, code, message, details, timestamp}}``."""

    error: ErrorBody

    @classmethod
    def build(
        cls,
        status: int,
        code: ErrorCode,
        message: str,
        details: Any = None,
    ) -> ErrorResponse:
        return cls(error=ErrorBody(status=status, code=code, message=message, details=details))


class ODataError(BaseModel):
    """OData JSON error object (the value of the top-level ``error`` key)."""

    code: str | None = None
    message: str | None = None
    target: str | None = None
    details: list[Any] = Field(default_factory=list)
    innererror: Any = None

    @classmethod
    def from_payload(cls, payload: Any) -> ODataError | None:
        """Extract the OData error from a decoded response body.

        Returns None when the payload does not look like an OData error.
        """
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if not isinstance(error, dict):
            return None
        message = error.get("message")
        # Some servers nest the message as {"lang": ..., "value": ...}
        if isinstance(message, dict):
            message = message.get("value")
        details = error.get("details")
        if details is None:
            details = []
        elif not isinstance(details, list):
            details = [details]
        return cls(
            code=_text(error.get("code")),
            message=_text(message),
            target=_text(error.get("target")),
            details=details,
            innererror=error.get("innererror"),
        )


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value) if isinstance(value, dict | list) else str(value)
