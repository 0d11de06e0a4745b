"""Encode the multipart/mixed body sent to ``vault.CommitTransaction``.

The commit call carries an OData batch with one changeset holding one
``POST File`` sub-request, so finalising the uploaded bytes and creating
the File item that points at them happen in the same call from the
vault's point of view.

Layout (all line breaks CRLF)::

    --batch_<ts>
    Content-Type: multipart/mixed; boundary=changeset_<ts>

    --changeset_<ts>
    Content-Type: application/http
    Content-Transfer-Encoding: binary
    Content-ID: 1

    POST <target_url> HTTP/1.1
    Content-Type: application/json

    {"id": ..., "filename": ..., ...}
    --changeset_<ts>--
    --batch_<ts>--
"""

from __future__ import annotations

import json
import time
from typing import Any

from procurement_gateway.models.files import CommitBatch

CRLF = "\r\n"


def _default_boundaries() -> tuple[str, str]:
    # Only needs to be unique within one request body
    stamp = time.time_ns()
    return f"batch_{stamp}", f"changeset_{stamp}"


def file_creation_payload(
    file_id: str,
    filename: str,
    mime_type: str,
    size_bytes: int,
    vault_id: str,
) -> dict[str, Any]:
    """JSON body of a File item located in ``vault_id`` at version 1."""
    return {
        "id": file_id,
        "filename": filename,
        "file_type": mime_type,
        "file_size": size_bytes,
        "located": [
            {
                "id": file_id,
                "file_version": 1,
                "related_id": vault_id,
            }
        ],
    }


def encode_file_creation_batch(
    file_id: str,
    filename: str,
    mime_type: str,
    size_bytes: int,
    vault_id: str,
    *,
    target_url: str,
    batch_boundary: str | None = None,
    changeset_boundary: str | None = None,
) -> CommitBatch:
    """Build the commit batch for one uploaded file.

    Args:
        file_id: Client File Id used for the upload.
        filename: Original file name.
        mime_type: File MIME type.
        size_bytes: Uploaded byte count.
        vault_id: Vault the file was uploaded to.
        target_url: Absolute URL of the File entity set.
        batch_boundary: Outer boundary; timestamp-derived when omitted.
        changeset_boundary: Inner boundary; timestamp-derived when omitted.

    Returns:
        CommitBatch with the body and the outer boundary for Content-Type.
    """
    default_batch, default_changeset = _default_boundaries()
    batch_boundary = batch_boundary or default_batch
    changeset_boundary = changeset_boundary or default_changeset
    if batch_boundary == changeset_boundary:
        raise ValueError("batch and changeset boundaries must differ")

    payload = json.dumps(
        file_creation_payload(file_id, filename, mime_type, size_bytes, vault_id),
        ensure_ascii=False,
    )

    lines = [
        f"--{batch_boundary}",
        f"Content-Type: multipart/mixed; boundary={changeset_boundary}",
        "",
        f"--{changeset_boundary}",
        "Content-Type: application/http",
        "Content-Transfer-Encoding: binary",
        "Content-ID: 1",
        "",
        f"POST {target_url} HTTP/1.1",
        "Content-Type: application/json",
        "",
        payload,
        f"--{changeset_boundary}--",
        f"--{batch_boundary}--",
        "",
    ]
    return CommitBatch(
        body=CRLF.join(lines),
        boundary=batch_boundary,
        changeset_boundary=changeset_boundary,
    )


def extract_changeset_payload(body: str) -> dict[str, Any]:
    """Parse the JSON body of the embedded POST back out of a commit batch.

    Raises:
        ValueError: If the body has no embedded POST with a JSON payload.
    """
    lines = body.split(CRLF)
    try:
        request_line = next(i for i, line in enumerate(lines) if line.startswith("POST "))
        blank = lines.index("", request_line)
    except (StopIteration, ValueError) as e:
        raise ValueError("commit batch has no embedded POST request") from e

    payload_lines: list[str] = []
    for line in lines[blank + 1 :]:
        if line.startswith("--"):
            break
        payload_lines.append(line)
    return json.loads(CRLF.join(payload_lines))
