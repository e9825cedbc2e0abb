# spanledger/trace/builder.py
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from spanledger.core.errors import DuplicateIdError
from spanledger.core.ids import generate_id, utc_now
from spanledger.core.types import Span, SpanBody, SpanThis
from spanledger.crypto.hashing import span_hash
from spanledger.storage import StorageBackend

logger = logging.getLogger(__name__)

DEFAULT_ID_ATTEMPTS = 3


def _parse_iso(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


def duration_ms(started_at: str, completed_at: str) -> int:
    """Whole milliseconds between two ISO 8601 timestamps."""
    delta = _parse_iso(completed_at) - _parse_iso(started_at)
    return int(delta.total_seconds() * 1000)


def build_span(
    trace_id: str,
    type: str,
    entity: str,
    body: SpanBody,
    *,
    span_id: Optional[str] = None,
    parent_id: Optional[str] = None,
    started_at: Optional[str] = None,
    completed_at: Optional[str] = None,
) -> Span:
    """Unsealed span draft: every hashed field set, ``this.hash`` still empty."""
    started_at = started_at or utc_now()
    return Span(
        id=span_id or generate_id(),
        trace_id=trace_id,
        parent_id=parent_id,
        type=type,
        entity=entity,
        body=body,
        started_at=started_at,
        completed_at=completed_at,
        duration_ms=duration_ms(started_at, completed_at) if completed_at else None,
        this=SpanThis(),
    )


def seal_span(draft: Span) -> Span:
    """Compute ``this.hash`` exactly once. Sealed spans are final."""
    if draft.this.hash:
        raise ValueError(f"Span {draft.id} is already sealed")
    if draft.confirmed_by is not None:
        raise ValueError(f"Span {draft.id} is signed but has no hash")
    return replace(draft, this=replace(draft.this, hash=span_hash(draft)))


def append_with_retry(
    storage: StorageBackend,
    make_span: Callable[[str], Span],
    attempts: int = DEFAULT_ID_ATTEMPTS,
    id_factory: Callable[[], str] = generate_id,
) -> Span:
    """
    Generate an id, build the finished span with it, and append.

    The id is part of the hashed and signed content, so a collision means
    rebuilding the whole span. DuplicateIdError surfaces only after the last attempt.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    attempt = 1
    while True:
        span = make_span(id_factory())
        try:
            storage.append_span(span)
            return span
        except DuplicateIdError:
            if attempt >= attempts:
                raise
            logger.warning("Span id %s collided (attempt %d/%d), regenerating", span.id, attempt, attempts)
            attempt += 1
