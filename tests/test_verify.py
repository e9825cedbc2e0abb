# tests/test_verify.py
from dataclasses import replace

from spanledger.core.types import SpanBody
from spanledger.crypto.keys import generate_identity
from spanledger.storage import SQLiteStorage
from spanledger.trace.session import TraceSession
from spanledger.verify.verifier import SpanVerifier


def create_test_trace(n_spans=4, storage=None):
    session = TraceSession(trace_id="verify-test-001", storage=storage)
    alice = generate_identity("user-alice-a1b")
    bob = generate_identity("user-bob-c2d")

    with alice.private_key_handle as alice_key, bob.private_key_handle as bob_key:
        for i in range(n_spans):
            signer, signer_id = (alice_key, alice.user_id) if i % 2 == 0 else (bob_key, bob.user_id)
            session.append(
                "message", "conversation", "say", {"text": f"Message #{i}"},
                signer=signer,
                signer_id=signer_id,
                started_at=f"2026-01-31T14:00:{i:02d}.000Z",
            )

    trusted = {alice.user_id: alice.public_key, bob.user_id: bob.public_key}
    return session.get_spans(), trusted


def test_valid_trace():
    spans, trusted = create_test_trace(6)
    result = SpanVerifier(trusted_keys=trusted).verify(spans)
    assert result.is_valid is True
    assert len(result.failures) == 0
    assert str(result) == "Trace is valid ✓"


def test_empty_trace_is_valid():
    assert SpanVerifier(trusted_keys={}).verify([]).is_valid


def test_tamper_body():
    spans, trusted = create_test_trace(5)
    tampered = spans.copy()
    tampered[2] = replace(tampered[2], body=SpanBody.of("say", {"text": "HACKED CONTENT"}))

    result = SpanVerifier(trusted_keys=trusted).verify(tampered)
    assert result.is_valid is False
    assert {f.category for f in result.failures} == {"hash", "signature"}
    assert all(f.index == 2 for f in result.failures)


def test_broken_parent_link():
    spans, trusted = create_test_trace(5)
    tampered = spans.copy()
    tampered[3] = replace(tampered[3], parent_id="0190c3a2-0000-7000-8000-000000000000")

    result = SpanVerifier(trusted_keys=trusted).verify(tampered)
    assert result.is_valid is False
    assert any(f.category == "parent" for f in result.failures)


def test_reordered_spans_break_parent_links():
    spans, trusted = create_test_trace(4)
    reordered = [spans[1], spans[0], spans[2], spans[3]]

    result = SpanVerifier(trusted_keys=trusted).verify(reordered)
    assert result.is_valid is False
    assert result.first_failure.category == "parent"
    assert result.first_failure.index == 0


def test_trace_mismatch():
    spans, trusted = create_test_trace(3)
    foreign = replace(spans[2], trace_id="some-other-trace")

    result = SpanVerifier(trusted_keys=trusted).verify([spans[0], spans[1], foreign])
    assert result.is_valid is False
    assert any(f.category == "trace" for f in result.failures)


def test_unknown_signer():
    spans, trusted = create_test_trace(2)
    only_alice = {"user-alice-a1b": trusted["user-alice-a1b"]}

    result = SpanVerifier(trusted_keys=only_alice).verify(spans)
    assert result.is_valid is False
    assert len(result.failures) == 1
    assert result.failures[0].index == 1
    assert "user-bob-c2d" in result.failures[0].message


def test_swapped_keys_fail_signature():
    spans, trusted = create_test_trace(2)
    swapped = {
        "user-alice-a1b": trusted["user-bob-c2d"],
        "user-bob-c2d": trusted["user-alice-a1b"],
    }

    result = SpanVerifier(trusted_keys=swapped).verify(spans)
    assert [f.category for f in result.failures] == ["signature", "signature"]


def test_require_signatures():
    session = TraceSession(trace_id="unsigned")
    session.append("note", "doc", "annotate", {"n": 1})
    session.append("note", "doc", "annotate", {"n": 2})

    assert SpanVerifier(trusted_keys={}).verify(session.get_spans()).is_valid

    strict = SpanVerifier(trusted_keys={}, require_signatures=True).verify(session.get_spans())
    assert strict.is_valid is False
    assert [f.message for f in strict.failures] == ["Missing signature", "Missing signature"]


def test_verify_from_storage(tmp_path):
    storage = SQLiteStorage(tmp_path / "verify.db")
    spans, trusted = create_test_trace(4, storage=storage)

    verifier = SpanVerifier(trusted_keys=trusted)
    assert verifier.verify_from_storage("verify-test-001", storage).is_valid

    missing = verifier.verify_from_storage("nope", storage)
    assert missing.is_valid is False
    assert missing.first_failure.category == "storage"

    storage.close()
    closed = verifier.verify_from_storage("verify-test-001", storage)
    assert closed.is_valid is False
    assert "closed" in closed.message


def test_non_ascii_hash_is_reported_not_raised():
    spans, trusted = create_test_trace(2)
    garbled = replace(spans[1], this=replace(spans[1].this, hash="blake3:é"))

    result = SpanVerifier(trusted_keys=trusted).verify([spans[0], garbled])
    assert result.is_valid is False
    assert "hash" in {f.category for f in result.failures}
