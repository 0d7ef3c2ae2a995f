"""
Operation fingerprints.

Two requests that mean the same thing ("Acme  Corp" vs "acme corp") must
produce the same fingerprint, so identifying text fields are normalized
before hashing.
"""

import hashlib
import json
from typing import Any, Mapping, Optional


def normalize_term(value: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return " ".join(value.lower().split())


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return normalize_term(value)
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def compute_fingerprint(
    account_id: str,
    operation_kind: str,
    fields: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Hash an operation's semantic inputs.

    Args:
        account_id: Account the operation is billed to
        operation_kind: Kind of operation (e.g. "smart", "exact")
        fields: Identifying request fields; key order does not matter

    Returns:
        Hex SHA-256 digest
    """
    payload = {
        "account_id": account_id,
        "operation_kind": normalize_term(operation_kind),
        "fields": _normalize(dict(fields or {})),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
