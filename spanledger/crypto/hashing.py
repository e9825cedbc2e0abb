# spanledger/crypto/hashing.py
import hmac

from blake3 import blake3

from spanledger.core.canon import FieldSet, canonical_span
from spanledger.core.encoding import prefixed_hex
from spanledger.core.types import Span

HASH_ALGORITHM = "blake3"


def digest(data: bytes) -> str:
    """``"blake3:<64 hex>"`` over raw bytes."""
    return prefixed_hex(HASH_ALGORITHM, blake3(data).digest())


def span_hash(span: Span) -> str:
    """Content digest of a span draft. Ignores this, confirmed_by and duration_ms."""
    return digest(canonical_span(span, FieldSet.HASH))


def verify_hash(span: Span) -> bool:
    """Recompute the digest and compare it with ``span.this.hash``."""
    if not span.this.hash:
        return False
    return hmac.compare_digest(span_hash(span).encode("ascii"), span.this.hash.encode("utf-8"))


def hash_api_key(api_key: str) -> str:
    """Bare hex BLAKE3 of an API key, for lookups that must not store the key."""
    return blake3(api_key.encode("utf-8")).hexdigest()
