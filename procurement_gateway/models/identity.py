"""Identity models derived from IMS bearer token claims and User records."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# Claim names that may carry the IMS login name, most preferred first
LOGIN_CLAIM_PREFERENCE = (
    "preferred_username",
    "username",
    "unique_name",
    "upn",
    "sub",
    "name",
    "email",
)


class IdentityClaims(BaseModel):
    """Decoded payload of an IMS bearer token.

    Only exists for the duration of one resolution call. The raw claim
    dictionary is kept as-is since the issuing server decides which of the
    login claims it populates.
    """

    claims: dict[str, Any] = Field(default_factory=dict)

    @property
    def login_name(self) -> str | None:
        """First non-empty login claim in preference order."""
        for key in LOGIN_CLAIM_PREFERENCE:
            value = self.claims.get(key)
            if value is None:
                continue
            text = str(value).strip()
            if text:
                return text
        return None


class UserRecord(BaseModel):
    """IMS User item, read-only from the gateway's perspective."""

    id: str = Field(..., description="IMS item id (32-char hex)")
    login_name: str = Field(..., description="IMS login name")
    default_vault: str | None = Field(None, description="Default vault id, when configured")


class VaultBinding(BaseModel):
    """Vault a user uploads into.

    ``vault_url`` is what the Vault item advertises. It is a hint only:
    the transaction client still probes its configured candidates.
    """

    vault_id: str
    vault_url: str | None = None


def extract_vault_id(record: dict[str, Any]) -> str | None:
    """Read the default vault id from a User payload.

    Compatibility shim for the two shapes IMS returns: the OData id
    annotation ``default_vault@aras.id`` (preferred), or a plain
    ``default_vault`` property holding either the id or an expanded item.
    """
    annotated = record.get("default_vault@aras.id")
    if isinstance(annotated, str) and annotated:
        return annotated

    plain = record.get("default_vault")
    if isinstance(plain, dict):
        plain = plain.get("id")
    if isinstance(plain, str) and plain:
        return plain
    return None
