# spanledger/export.py
"""Serialize spans to interchange formats: ndjson, json, csv."""
import json
from enum import Enum
from typing import Iterable, Union

from spanledger.core.errors import UnsupportedFormatError
from spanledger.core.types import Span

CSV_COLUMNS = ("id", "trace_id", "type", "entity", "started_at", "hash", "signature")

MEDIA_TYPES = {
    "ndjson": "application/x-ndjson",
    "json": "application/json",
    "csv": "text/csv",
}


class ExportFormat(str, Enum):
    NDJSON = "ndjson"
    JSON = "json"
    CSV = "csv"

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES[self.value]

    @property
    def suffix(self) -> str:
        return f".{self.value}"


def parse_format(fmt: Union[str, ExportFormat]) -> ExportFormat:
    try:
        return ExportFormat(fmt)
    except ValueError:
        raise UnsupportedFormatError(fmt) from None


def _csv_row(span: Span) -> str:
    # No quoting: values containing commas will shift columns
    values = (
        span.id, span.trace_id, span.type, span.entity, span.started_at,
        span.this.hash, span.signature or "",
    )
    return ",".join(values)


def export_spans(spans: Iterable[Span], fmt: Union[str, ExportFormat]) -> str:
    fmt = parse_format(fmt)
    spans = list(spans)

    if fmt is ExportFormat.NDJSON:
        return "".join(
            json.dumps(s.to_dict(), separators=(",", ":"), ensure_ascii=False) + "\n"
            for s in spans
        )
    if fmt is ExportFormat.JSON:
        return json.dumps([s.to_dict() for s in spans], indent=2, ensure_ascii=False)

    lines = [",".join(CSV_COLUMNS)] + [_csv_row(s) for s in spans]
    return "\n".join(lines)
