# spanledger/verify/verifier.py
from dataclasses import dataclass
from typing import Dict, List, Optional

from spanledger.core.types import Span, SpanQuery
from spanledger.crypto.hashing import verify_hash
from spanledger.crypto.keys import PublicKeyMaterial
from spanledger.crypto.signing import verify
from spanledger.storage import StorageBackend


@dataclass
class VerificationFailure:
    index: int
    message: str
    category: str = "general"  # e.g. "hash", "signature", "parent", "trace", "storage"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = None

    def __post_init__(self):
        if self.failures is None:
            self.failures = []

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return "Trace is valid ✓"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • [{f.index}] {f.category}: {f.message}")
        return "\n".join(lines)


class SpanVerifier:
    """
    Offline auditor for ledger spans.

    The store accepts any well-formed span; this is where content hashes and
    signatures are actually checked.
    """

    def __init__(self, trusted_keys: Dict[str, PublicKeyMaterial], require_signatures: bool = False):
        """
        trusted_keys: signer_id → public JWK (your trust anchors)
        require_signatures: treat unsigned spans as failures
        """
        self.trusted_keys = dict(trusted_keys or {})
        self.require_signatures = require_signatures

    def _fail(self, result: VerificationResult, index: int, message: str, category: str) -> None:
        result.failures.append(VerificationFailure(index, message, category))
        result.is_valid = False

    def verify(self, spans: List[Span]) -> VerificationResult:
        """Core verification over a list of spans from one trace, in ledger order."""
        if not spans:
            return VerificationResult(True, "Empty trace is valid")

        result = VerificationResult(True)
        trace_id = spans[0].trace_id
        seen = set()

        for i, span in enumerate(spans):
            # 1. Trace consistency & causal links
            if span.trace_id != trace_id:
                self._fail(result, i, f"Trace mismatch: {span.trace_id}", "trace")
            if span.parent_id is not None and span.parent_id not in seen:
                self._fail(result, i, f"parent_id {span.parent_id} does not precede this span", "parent")
            seen.add(span.id)

            # 2. Content hash
            if not verify_hash(span):
                self._fail(result, i, "Content hash does not match span fields", "hash")

            # 3. Signature
            if span.confirmed_by is None:
                if self.require_signatures:
                    self._fail(result, i, "Missing signature", "signature")
                continue

            signer_id = span.confirmed_by.signer_id
            public_key = self.trusted_keys.get(signer_id)
            if public_key is None:
                self._fail(result, i, f"No trusted key for signer '{signer_id}'", "signature")
                continue
            if not verify(span, span.confirmed_by.signature, public_key):
                self._fail(result, i, "Invalid signature", "signature")

        result.message = "Valid trace" if result.is_valid else f"Failed with {len(result.failures)} issues"
        return result

    def verify_from_storage(self, trace_id: str, storage: StorageBackend) -> VerificationResult:
        """
        Load a trace from persistent storage and verify it.
        Returns a failed result (category "storage") if the trace cannot be read.
        """
        try:
            spans = storage.query_spans(SpanQuery(trace_id=trace_id))
        except Exception as e:
            return VerificationResult(
                False,
                f"Failed to load trace '{trace_id}' from storage: {str(e)}",
                [VerificationFailure(-1, str(e), "storage")]
            )

        if not spans:
            return VerificationResult(
                False,
                f"No spans found for trace '{trace_id}'",
                [VerificationFailure(-1, f"Unknown trace '{trace_id}'", "storage")]
            )
        return self.verify(spans)
