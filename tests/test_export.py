# tests/test_export.py
import json

import pytest

from spanledger.core.errors import UnsupportedFormatError
from spanledger.core.types import SpanBody
from spanledger.crypto.keys import generate_identity
from spanledger.crypto.signing import confirm
from spanledger.export import CSV_COLUMNS, ExportFormat, export_spans
from spanledger.storage import SQLiteStorage
from spanledger.trace.builder import build_span, seal_span


@pytest.fixture
def three_spans():
    identity = generate_identity("user-exp-001")
    spans = [
        seal_span(build_span(
            "trace-export", "note", "doc",
            SpanBody.of("annotate", {"text": f"span {i}", "unicode": "ação"}),
            span_id=f"span-{i}",
            started_at=f"2026-02-13T12:00:0{i}.000Z",
        ))
        for i in range(3)
    ]
    with identity.private_key_handle as handle:
        spans[0] = confirm(spans[0], handle, identity.user_id, "spanledger.local")
    return spans


def test_ndjson_three_lines(three_spans, tmp_path):
    with SQLiteStorage(tmp_path / "export.db") as storage:
        for span in three_spans:
            storage.append_span(span)
        out = export_spans(storage.all_spans(), "ndjson")

    assert out.endswith("\n")
    lines = out.splitlines(keepends=True)
    assert len(lines) == 3
    for span, line in zip(three_spans, lines):
        assert line.endswith("\n")
        assert json.loads(line)["id"] == span.id


def test_ndjson_preserves_wire_shape(three_spans):
    first = json.loads(export_spans(three_spans, ExportFormat.NDJSON).splitlines()[0])
    assert first == three_spans[0].to_dict()
    assert "parent_id" not in first
    assert first["confirmed_by"]["signer_id"] == "user-exp-001"


def test_ndjson_empty():
    assert export_spans([], "ndjson") == ""


def test_json_pretty_array(three_spans):
    out = export_spans(three_spans, "json")
    parsed = json.loads(out)
    assert [s["id"] for s in parsed] == ["span-0", "span-1", "span-2"]
    assert out.startswith("[\n  {")
    assert "ação" in out


def test_csv_fixed_columns(three_spans):
    out = export_spans(three_spans, "csv")
    rows = out.split("\n")
    assert rows[0] == ",".join(CSV_COLUMNS)
    assert len(rows) == 4

    signed = rows[1].split(",")
    assert len(signed) == 7
    assert signed[0] == "span-0"
    assert signed[5] == three_spans[0].this.hash
    assert signed[6].startswith("ed25519:")

    unsigned = rows[2].split(",")
    assert unsigned[6] == ""


@pytest.mark.parametrize("fmt", ["xml", "NDJSON", "", None])
def test_unsupported_format(three_spans, fmt):
    with pytest.raises(UnsupportedFormatError):
        export_spans(three_spans, fmt)


def test_format_metadata():
    assert ExportFormat.NDJSON.media_type == "application/x-ndjson"
    assert ExportFormat.CSV.suffix == ".csv"
