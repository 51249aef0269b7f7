"""Tests for payload hashing, idempotency keys and webhook signatures."""

from __future__ import annotations

from entitysync.core.hashing import (
    canonical_json,
    compute_payload_hash,
    derive_idempotency_key,
    sign_payload,
    verify_signature,
)


class TestPayloadHash:
    """Tests for compute_payload_hash."""

    def test_key_order_irrelevant(self) -> None:
        assert compute_payload_hash({"a": 1, "b": 2}) == compute_payload_hash({"b": 2, "a": 1})

    def test_value_change_changes_hash(self) -> None:
        assert compute_payload_hash({"a": 1}) != compute_payload_hash({"a": 2})

    def test_canonical_json_is_compact(self) -> None:
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


class TestIdempotencyKey:
    """Tests for derive_idempotency_key."""

    def test_stable_for_same_intent(self) -> None:
        first = derive_idempotency_key("lead", "L1", "intent-1")
        second = derive_idempotency_key("lead", "L1", "intent-1")
        assert first == second

    def test_differs_per_intent(self) -> None:
        assert derive_idempotency_key("lead", "L1", "a") != derive_idempotency_key("lead", "L1", "b")

    def test_suffix_changes_key(self) -> None:
        base = derive_idempotency_key("lead", "L1", "a")
        assert derive_idempotency_key("lead", "L1", "a", "reconcile") != base


class TestSignature:
    """Tests for webhook signature verification."""

    def test_valid_signature(self) -> None:
        body = b'{"id": "R1"}'
        assert verify_signature("secret", body, sign_payload("secret", body))

    def test_prefixed_signature(self) -> None:
        body = b"{}"
        assert verify_signature("secret", body, "sha256=" + sign_payload("secret", body))

    def test_wrong_secret(self) -> None:
        body = b"{}"
        assert not verify_signature("other", body, sign_payload("secret", body))

    def test_tampered_body(self) -> None:
        signature = sign_payload("secret", b'{"a": 1}')
        assert not verify_signature("secret", b'{"a": 2}', signature)

    def test_missing_signature(self) -> None:
        assert not verify_signature("secret", b"{}", None)
        assert not verify_signature("secret", b"{}", "")

    def test_non_ascii_signature_rejected(self) -> None:
        assert not verify_signature("secret", b"{}", "café")
        assert not verify_signature("secret", b"{}", "sha256=ÿ" * 4)
