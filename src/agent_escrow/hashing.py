"""
Canonical content hashing for escrow payments.

Input and result data never leave the agent. Only their digests are sent to
the ledger, which later verifies them on-chain, so serialization has to match
byte-for-byte across processes and implementations:

    sha256(canonical_json(payload) + ";" + identifier_from_purchaser)

Canonical JSON follows RFC 8785 (JCS) via the ``jcs`` library: keys sorted at
every level, no insignificant whitespace, ECMAScript number formatting, UTF-8.
String payloads are hashed verbatim. Integers beyond 2**53 are rejected since
JCS would round them to the nearest double.
"""

from __future__ import annotations

import hashlib
import secrets
from collections.abc import Mapping
from typing import Any

import jcs

from .errors import ValidationError


HASH_SEPARATOR = ";"
# Largest integer magnitude an IEEE double holds exactly.
MAX_EXACT_INTEGER = 2**53


def canonical_json(payload: Any) -> str:
    """Serialize *payload* to canonical JSON text."""
    normalized = _normalize_for_canonical_json(payload)
    try:
        return jcs.canonicalize(normalized).decode("utf-8")
    except Exception as e:
        raise ValidationError(f"Canonicalization failed: {e}") from e


def compute_hash(payload: Any, salt: str) -> str:
    """Return the lowercase hex sha256 digest of *payload* salted with *salt*."""
    if not isinstance(salt, str) or not salt:
        raise ValidationError("Hash salt must be a non-empty string")
    serialized = payload if isinstance(payload, str) else canonical_json(payload)
    message = f"{serialized}{HASH_SEPARATOR}{salt}"
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def input_hash(input_data: Any, identifier_from_purchaser: str) -> str:
    """Digest sent with a new payment request in place of the raw input."""
    return compute_hash(input_data, identifier_from_purchaser)


def result_hash(output_data: Any, identifier_from_purchaser: str) -> str:
    """Digest sent on result submission in place of the raw output."""
    return compute_hash(output_data, identifier_from_purchaser)


def generate_purchaser_identifier(nbytes: int = 13) -> str:
    """Return a random lowercase hex identifier usable as purchaser salt."""
    if nbytes <= 0:
        raise ValidationError("nbytes must be > 0")
    return secrets.token_hex(nbytes)


def _normalize_for_canonical_json(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _normalize_for_canonical_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_for_canonical_json(item) for item in value]
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValidationError("NaN and Infinity cannot be canonicalized")
        return value
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > MAX_EXACT_INTEGER:
        raise ValidationError(f"Integer {value} exceeds 2**53 and cannot be canonicalized exactly")
    if isinstance(value, (str, int, bool)) or value is None:
        return value
    raise ValidationError(f"Unsupported JSON canonicalization value type: {type(value).__name__}")
