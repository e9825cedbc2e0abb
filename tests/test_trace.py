# tests/test_trace.py
import sqlite3
from pathlib import Path

import pytest

from spanledger.core.errors import DuplicateIdError
from spanledger.core.types import SpanBody
from spanledger.crypto.hashing import verify_hash
from spanledger.crypto.keys import generate_identity
from spanledger.crypto.signing import verify_span
from spanledger.storage import SQLiteStorage
from spanledger.trace.builder import append_with_retry, build_span, duration_ms, seal_span
from spanledger.trace.session import TraceSession


@pytest.fixture
def empty_session():
    return TraceSession(trace_id="trace-20260131")


def test_session_starts_empty(empty_session):
    assert empty_session.length == 0
    assert empty_session.last_span_id is None


def test_append_one_span(empty_session):
    span = empty_session.append("note", "doc", "annotate", {"text": "first"})

    spans = empty_session.get_spans()
    assert spans == [span]
    assert span.parent_id is None
    assert span.trace_id == "trace-20260131"
    assert verify_hash(span)
    assert span.confirmed_by is None


def test_spans_are_causally_linked(empty_session):
    identity = generate_identity("user-alice-a1b")
    with identity.private_key_handle as handle:
        first = empty_session.append("note", "doc", "annotate", {"n": 1}, signer=handle, signer_id=identity.user_id)
        second = empty_session.append("note", "doc", "annotate", {"n": 2}, signer=handle, signer_id=identity.user_id)

    assert second.parent_id == first.id
    assert verify_span(first, identity.public_key)
    assert verify_span(second, identity.public_key)
    assert second.confirmed_by.domain == "spanledger.local"


def test_signer_requires_signer_id(empty_session):
    identity = generate_identity("user-alice-a1b")
    with identity.private_key_handle as handle:
        with pytest.raises(ValueError, match="signer_id"):
            empty_session.append("note", "doc", "annotate", {}, signer=handle)


def test_completed_span_has_duration(empty_session):
    span = empty_session.append(
        "task", "job", "run", {"cmd": "build"}, {"exit": 0},
        started_at="2026-02-13T12:00:00.000Z",
        completed_at="2026-02-13T12:00:02.250Z",
    )
    assert span.duration_ms == 2250
    assert span.body.output == {"exit": 0}


def test_session_persists_and_reloads(tmp_path: Path):
    db = tmp_path / "trace.db"
    sess = TraceSession("persisted", storage=f"sqlite://{db}")
    sess.append("note", "doc", "annotate", {"text": "one"})
    sess.append("note", "doc", "annotate", {"text": "two"})
    sess.close()

    reloaded = TraceSession("persisted", storage=str(db))
    assert reloaded.length == 2
    assert reloaded.spans[1].parent_id == reloaded.spans[0].id

    third = reloaded.append("note", "doc", "annotate", {"text": "three"})
    assert third.parent_id == reloaded.spans[1].id
    reloaded.close()


def test_duration_ms():
    assert duration_ms("2026-02-13T12:00:00.000Z", "2026-02-13T12:01:00.500Z") == 60500


def _sealed(span_id: str):
    return seal_span(build_span(
        "retry", "note", "doc", SpanBody.of("annotate", {}),
        span_id=span_id, started_at="2026-02-13T12:00:00.000Z",
    ))


def test_append_with_retry_regenerates_id(tmp_path: Path):
    with SQLiteStorage(tmp_path / "retry.db") as storage:
        storage.append_span(_sealed("taken"))
        ids = iter(["taken", "taken", "fresh"])

        span = append_with_retry(storage, _sealed, attempts=3, id_factory=lambda: next(ids))

        assert span.id == "fresh"
        assert verify_hash(span)
        assert storage.count_spans() == 2


def test_append_with_retry_gives_up(tmp_path: Path):
    with SQLiteStorage(tmp_path / "retry.db") as storage:
        storage.append_span(_sealed("taken"))

        with pytest.raises(DuplicateIdError):
            append_with_retry(storage, _sealed, attempts=3, id_factory=lambda: "taken")
        assert storage.count_spans() == 1


def test_retry_does_not_mask_other_integrity_errors(tmp_path: Path):
    calls = []

    def make(span_id):
        calls.append(span_id)
        return build_span("t", "note", None, SpanBody.of("a", {}), span_id=span_id)

    with SQLiteStorage(tmp_path / "retry.db") as storage:
        with pytest.raises(sqlite3.IntegrityError):
            append_with_retry(storage, make)
        assert storage.count_spans() == 0
    assert len(calls) == 1
