# spanledger/crypto/signing.py
import logging
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from spanledger.core.canon import FieldSet, canonical_span
from spanledger.core.encoding import prefixed_hex, split_prefixed
from spanledger.core.ids import utc_now
from spanledger.core.types import Confirmation, Span
from spanledger.crypto.keys import PrivateKeyHandle, PublicKeyMaterial, load_public_key

logger = logging.getLogger(__name__)

SIGNATURE_ALGORITHM = "ed25519"
SIGNATURE_BYTES = 64
DEFAULT_DOMAIN = "spanledger.local"


def sign(span: Span, private_key: PrivateKeyHandle) -> str:
    """
    Sign the identifying fields of a hashed span.

    Covers id, trace_id, type, entity, body, started_at and this.hash; never
    confirmed_by, completed_at or duration_ms.
    """
    if not span.this.hash:
        raise ValueError("Cannot sign a span before its hash is computed")
    payload = canonical_span(span, FieldSet.SIGNATURE)
    return prefixed_hex(SIGNATURE_ALGORITHM, private_key.sign(payload))


def verify(
    span: Span,
    signature: str,
    public_key: Union[PublicKeyMaterial, Ed25519PublicKey],
) -> bool:
    """True only if ``signature`` is a valid Ed25519 signature over the span. Never raises."""
    try:
        algorithm, sig_hex = split_prefixed(signature)
        if algorithm != SIGNATURE_ALGORITHM:
            return False
        sig_bytes = bytes.fromhex(sig_hex)
        if len(sig_bytes) != SIGNATURE_BYTES:
            return False
        key = load_public_key(public_key)
        key.verify(sig_bytes, canonical_span(span, FieldSet.SIGNATURE))
        return True
    except InvalidSignature:
        return False
    except Exception as e:
        # Malformed input must look exactly like a bad signature to callers
        logger.debug("Signature check on span %s rejected malformed input: %s", getattr(span, "id", "?"), e)
        return False


def confirm(
    span: Span,
    private_key: PrivateKeyHandle,
    signer_id: str,
    domain: str,
    timestamp: Optional[str] = None,
) -> Span:
    """Return a copy of ``span`` carrying ``confirmed_by``."""
    if span.confirmed_by is not None:
        raise ValueError(f"Span {span.id} is already signed")
    signature = sign(span, private_key)
    return span.with_confirmation(Confirmation(
        signature=signature,
        domain=domain,
        timestamp=timestamp or utc_now(),
        signer_id=signer_id,
    ))


def verify_span(span: Span, public_key: Union[PublicKeyMaterial, Ed25519PublicKey]) -> bool:
    """Check a span's own ``confirmed_by`` signature. Unsigned spans do not verify."""
    if span.confirmed_by is None:
        return False
    return verify(span, span.confirmed_by.signature, public_key)
