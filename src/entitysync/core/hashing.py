"""Stable hashing of payloads and idempotency keys."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any


def canonical_json(fields: dict[str, Any]) -> str:
    """Serialize fields deterministically (sorted keys, compact separators)."""
    return json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)


def compute_payload_hash(fields: dict[str, Any]) -> str:
    """Compute SHA-256 hex digest of a field map.

    Args:
        fields: Field name to value map.

    Returns:
        Hex-encoded SHA-256 of the canonical JSON form.
    """
    return hashlib.sha256(canonical_json(fields).encode()).hexdigest()


def derive_idempotency_key(
    entity_type: str,
    entity_ref: str | None,
    intent_id: str,
    suffix: str = "",
) -> str:
    """Derive the idempotency key attached to a push.

    The key only depends on the change intent identity, so every retry of the
    same intent carries the same key.
    """
    material = f"{entity_type}:{entity_ref or ''}:{intent_id}"
    if suffix:
        material += f":{suffix}"
    return hashlib.sha256(material.encode()).hexdigest()


def sign_payload(secret: str, body: bytes) -> str:
    """Compute HMAC-SHA256 hex signature of a raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Check a webhook signature in constant time.

    Accepts both ``sha256=<hex>`` and bare hex forms.
    """
    if not signature:
        return False
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = sign_payload(secret, body)
    # Header values may carry any latin-1 character; compare as bytes
    return hmac.compare_digest(provided.lower().encode("utf-8", "replace"), expected.encode())
