from __future__ import annotations

import hashlib
from typing import Any

import rfc8785
from pydantic import BaseModel


def to_canonical_json(value: Any) -> str:
    """Serialize a value to deterministic, byte-for-byte reproducible JSON per RFC 8785.

    Pydantic models are dumped in JSON mode using their on-disk aliases first,
    so two instances that would be persisted identically serialize identically.

    Args:
        value: A Pydantic model or JSON-primitive structure.

    Returns:
        A UTF-8 string containing the canonicalized JSON representation.

    Raises:
        rfc8785.CanonicalizationError: If the value contains non-JSON types.
    """
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    return rfc8785.dumps(value).decode("utf-8")


def fingerprint(value: Any) -> str:
    """Return the SHA-256 hex digest of the canonical JSON form of ``value``."""
    return hashlib.sha256(to_canonical_json(value).encode("utf-8")).hexdigest()
