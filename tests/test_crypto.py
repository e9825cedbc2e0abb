# tests/test_crypto.py
import copy
import pickle
from dataclasses import replace

import pytest

from spanledger.core.errors import DecryptionError, KeyGenerationError
from spanledger.core.types import SpanBody
from spanledger.crypto import vault
from spanledger.crypto.hashing import hash_api_key, span_hash, verify_hash
from spanledger.crypto.keys import (
    PrivateKeyHandle,
    export_public_key,
    generate_identity,
    load_public_key,
    open_identity,
    seal_identity,
)
from spanledger.crypto.signing import confirm, sign, verify, verify_span
from spanledger.trace.builder import build_span, seal_span


@pytest.fixture
def identity():
    return generate_identity("user-alice-a1b")


@pytest.fixture
def sealed():
    draft = build_span(
        "trace-crypto-001", "payment.requested", "invoice",
        SpanBody.of("request_payment", {"amount": 120, "currency": "EUR"}),
        span_id="0194f0a1-2b3c-7abc-8def-0123456789ab",
        started_at="2026-02-13T12:00:00.000Z",
    )
    return seal_span(draft)


# ── hashing ──────────────────────────────────────────────────────────────────

def test_hash_format(sealed):
    algorithm, _, hex_part = sealed.this.hash.partition(":")
    assert algorithm == "blake3"
    assert len(hex_part) == 64


def test_hash_deterministic(sealed):
    assert span_hash(sealed) == span_hash(sealed) == sealed.this.hash


def test_hash_changes_with_input(sealed):
    tampered = replace(sealed, body=SpanBody.of("request_payment", {"amount": 121, "currency": "EUR"}))
    assert span_hash(tampered) != sealed.this.hash
    assert not verify_hash(tampered)


def test_hash_ignores_signature_and_duration(sealed, identity):
    with identity.private_key_handle as handle:
        signed = confirm(sealed, handle, identity.user_id, "spanledger.local")
    assert span_hash(replace(signed, duration_ms=99)) == sealed.this.hash
    assert verify_hash(signed)


def test_seal_is_once_only(sealed):
    with pytest.raises(ValueError, match="already sealed"):
        seal_span(sealed)


def test_hash_api_key():
    assert hash_api_key("sk-ant-xyz") == hash_api_key("sk-ant-xyz")
    assert hash_api_key("sk-ant-xyz") != hash_api_key("sk-ant-xyw")
    assert len(hash_api_key("k")) == 64


# ── identity ─────────────────────────────────────────────────────────────────

def test_public_key_export(identity):
    jwk = export_public_key(identity)
    assert jwk["kty"] == "OKP"
    assert jwk["crv"] == "Ed25519"
    assert set(jwk) == {"kty", "crv", "x"}
    load_public_key(jwk)  # must not raise


def test_identity_repr_hides_handle(identity):
    assert "PrivateKeyHandle" not in repr(identity)


def test_handle_is_not_copyable(identity):
    handle = identity.private_key_handle
    with pytest.raises(TypeError):
        copy.copy(handle)
    with pytest.raises(TypeError):
        copy.deepcopy(handle)
    with pytest.raises(TypeError):
        pickle.dumps(handle)


def test_handle_closes_after_use(identity, sealed):
    with identity.private_key_handle as handle:
        sign(sealed, handle)
    assert handle.closed
    with pytest.raises(RuntimeError, match="closed"):
        sign(sealed, handle)


def test_key_generation_without_entropy(monkeypatch):
    def no_entropy(n):
        raise NotImplementedError("no randomness")

    monkeypatch.setattr("spanledger.crypto.keys.os.urandom", no_entropy)
    with pytest.raises(KeyGenerationError):
        generate_identity("user-x")


def test_seal_and_open_identity(identity, sealed):
    record = seal_identity(identity)
    assert record.public_key == identity.public_key
    assert identity.user_id not in record.sealed_private_key

    reopened = open_identity(record)
    with reopened.private_key_handle as handle:
        signature = sign(sealed, handle)
    assert verify(sealed, signature, identity.public_key)


def test_open_identity_with_wrong_owner_fails(identity):
    record = replace(seal_identity(identity), user_id="user-mallory-zzz")
    with pytest.raises(DecryptionError):
        open_identity(record)


# ── signing ──────────────────────────────────────────────────────────────────

def test_sign_verify_round_trip(identity, sealed):
    with identity.private_key_handle as handle:
        signature = sign(sealed, handle)
    assert signature.startswith("ed25519:")
    assert len(signature) == len("ed25519:") + 128
    assert verify(sealed, signature, identity.public_key) is True


def test_verify_with_other_identity_fails(identity, sealed):
    other = generate_identity("user-bob-c2d")
    with identity.private_key_handle as handle:
        signature = sign(sealed, handle)
    assert verify(sealed, signature, other.public_key) is False


def test_signature_survives_late_completion(identity, sealed):
    with identity.private_key_handle as handle:
        signed = confirm(sealed, handle, identity.user_id, "spanledger.local")
    completed = replace(signed, completed_at="2026-02-13T12:00:05.000Z", duration_ms=5000)
    assert verify_span(completed, identity.public_key)
    # the content hash does cover completed_at
    assert not verify_hash(completed)


def test_signature_detects_body_tampering(identity, sealed):
    with identity.private_key_handle as handle:
        signed = confirm(sealed, handle, identity.user_id, "spanledger.local")
    tampered = replace(signed, body=SpanBody.of("request_payment", {"amount": 1, "currency": "EUR"}))
    assert verify_span(tampered, identity.public_key) is False


@pytest.mark.parametrize("signature", [
    "ed25519:zz",
    "ed25519:" + "00" * 64,
    "ed25519:" + "00" * 10,
    "rsa:" + "00" * 64,
    "no-prefix",
    "",
])
def test_verify_malformed_signature_returns_false(identity, sealed, signature):
    assert verify(sealed, signature, identity.public_key) is False


@pytest.mark.parametrize("public_key", [
    {"kty": "RSA", "n": "abc", "e": "AQAB"},
    {"kty": "OKP", "crv": "Ed25519", "x": "short"},
    "not-a-key",
    None,
])
def test_verify_bad_public_key_returns_false(identity, sealed, public_key):
    with identity.private_key_handle as handle:
        signature = sign(sealed, handle)
    assert verify(sealed, signature, public_key) is False


def test_unsigned_span_does_not_verify(identity, sealed):
    assert verify_span(sealed, identity.public_key) is False


def test_cannot_sign_unsealed_span(identity):
    draft = build_span("t", "x", "y", SpanBody.of("a", {}))
    with identity.private_key_handle as handle:
        with pytest.raises(ValueError, match="hash"):
            sign(draft, handle)


# ── vault ────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("secret", ["sk-ant-api03-abcdef", "", "chave secreta ✯ çãõ 日本語"])
def test_vault_round_trip(secret):
    blob = vault.encrypt(secret, "user-alice-a1b")
    assert vault.decrypt(blob, "user-alice-a1b") == secret


def test_vault_layout():
    blob = vault.encrypt("abc", "scope")
    raw = bytes.fromhex(blob)
    # salt(16) + nonce(12) + ciphertext(3) + tag(16)
    assert len(raw) == 16 + 12 + 3 + 16


def test_vault_fresh_salt_and_nonce():
    assert vault.encrypt("same", "scope") != vault.encrypt("same", "scope")


def test_vault_wrong_scope():
    blob = vault.encrypt("secret", "user-a")
    with pytest.raises(DecryptionError):
        vault.decrypt(blob, "user-b")


def test_vault_corrupted_blob():
    blob = vault.encrypt("secret", "scope")
    flipped = blob[:-1] + ("0" if blob[-1] != "0" else "1")
    with pytest.raises(DecryptionError):
        vault.decrypt(flipped, "scope")
    with pytest.raises(DecryptionError):
        vault.decrypt("not-hex", "scope")
    with pytest.raises(DecryptionError):
        vault.decrypt(blob[:40], "scope")


@pytest.mark.parametrize("api_key,provider", [
    ("sk-ant-api03-xyz", "anthropic"),
    ("sk-proj-xyz", "openai"),
    ("sk-xyz", "openai"),
    ("http://localhost:11434", "ollama"),
])
def test_detect_provider(api_key, provider):
    assert vault.detect_provider(api_key) == provider


def test_verify_rejects_non_span_input():
    identity = generate_identity("user-alice-a1b")
    assert verify(object(), "ed25519:" + "00" * 64, identity.public_key) is False
    assert verify(None, None, None) is False


def test_verify_hash_with_non_ascii_stored_hash():
    span = seal_span(build_span("t", "note", "doc", SpanBody.of("a", {})))
    assert verify_hash(replace(span, this=replace(span.this, hash="blake3:ü" * 3))) is False
