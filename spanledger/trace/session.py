# spanledger/trace/session.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from spanledger.core.ids import generate_id
from spanledger.core.types import Rule, Span, SpanBody, SpanQuery
from spanledger.crypto.keys import PrivateKeyHandle
from spanledger.crypto.signing import DEFAULT_DOMAIN, confirm
from spanledger.storage import StorageBackend, create_storage
from spanledger.trace.builder import append_with_retry, build_span, seal_span

logger = logging.getLogger(__name__)


@dataclass
class TraceSession:
    """
    Manages the spans of a single trace (one logical transaction or contract).
    Each appended span is causally linked to the previous one via ``parent_id``.
    Supports optional persistent storage.
    """
    trace_id: str
    spans: List[Span] = field(default_factory=list)
    storage: Optional[Union[StorageBackend, str]] = None
    domain: str = DEFAULT_DOMAIN

    def __post_init__(self):
        # Handle storage argument flexibly
        if isinstance(self.storage, str):
            stripped = self.storage.strip()
            if stripped.startswith(("sqlite://", "memory://")):
                self.storage = create_storage(stripped)
            elif stripped:
                # Plain file path → SQLite
                self.storage = create_storage(f"sqlite://{stripped}")
            else:
                self.storage = None

        # Auto-load if persistent storage provided and spans list is empty
        if self.storage and not self.spans:
            self.spans = self.storage.query_spans(SpanQuery(trace_id=self.trace_id))
            if self.spans:
                logger.info("Loaded %d spans from storage for trace %s", len(self.spans), self.trace_id)

    @property
    def length(self) -> int:
        return len(self.spans)

    @property
    def last_span_id(self) -> Optional[str]:
        return self.spans[-1].id if self.spans else None

    def append(
        self,
        type: str,
        entity: str,
        action: str,
        input: Any,
        output: Any = None,
        *,
        signer: Optional[PrivateKeyHandle] = None,
        signer_id: Optional[str] = None,
        rules: Optional[List[Rule]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        started_at: Optional[str] = None,
        completed_at: Optional[str] = None,
    ) -> Span:
        """
        Build → hash → sign (if a signer is given) → persist (if storage is active).
        Returns the finished span.
        """
        if signer is not None and not signer_id:
            raise ValueError("signer_id is required when signing")

        body = SpanBody.of(action, input, output, rules=rules, metadata=metadata)
        parent_id = self.last_span_id

        def make(span_id: str) -> Span:
            draft = build_span(
                self.trace_id, type, entity, body,
                span_id=span_id,
                parent_id=parent_id,
                started_at=started_at,
                completed_at=completed_at,
            )
            sealed = seal_span(draft)
            if signer is None:
                return sealed
            return confirm(sealed, signer, signer_id, self.domain)

        if self.storage:
            span = append_with_retry(self.storage, make)
        else:
            span = make(generate_id())

        self.spans.append(span)
        return span

    def get_spans(self) -> List[Span]:
        """Returns copy of the trace's spans (immutable view)"""
        return self.spans.copy()

    def close(self) -> None:
        """Release any storage resources (e.g. database connection)."""
        if self.storage:
            self.storage.close()
            logger.debug("Storage closed for trace %s", self.trace_id)
            self.storage = None
