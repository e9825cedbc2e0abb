# spanledger/core/canon.py
from enum import Enum
from typing import Any, Dict

import jcs

from spanledger.core.types import Span


class FieldSet(Enum):
    """Which span fields a canonical form covers."""
    # content hash: everything semantic, never confirmed_by / duration_ms / this
    HASH = ("id", "trace_id", "parent_id", "type", "entity", "body", "started_at", "completed_at")
    # signature: identifying fields bound to the hash; completed_at may be filled in later
    SIGNATURE = ("id", "trace_id", "type", "entity", "body", "started_at", "hash")


def canonical_json(obj: Any) -> bytes:
    """
    Produce deterministic UTF-8 bytes according to RFC 8785 (JSON Canonicalization Scheme).
    Returns bytes ready for hashing or signing.
    """
    return jcs.canonicalize(obj)


def canonical_json_str(obj: Any) -> str:
    """Same as above, but returns string (mostly for debugging)."""
    return canonical_json(obj).decode("utf-8")


def span_fields(span: Span, field_set: FieldSet) -> Dict[str, Any]:
    """The subset of ``span`` covered by ``field_set``. Absent optionals are omitted."""
    wire = span.to_dict()
    wire["hash"] = span.this.hash
    return {name: wire[name] for name in field_set.value if name in wire}


def canonical_span(span: Span, field_set: FieldSet) -> bytes:
    """Single canonicalization routine shared by the hash and signature paths."""
    return canonical_json(span_fields(span, field_set))
