# spanledger/core/encoding.py
import base64
from typing import Tuple


def b64url_encode(data: bytes) -> str:
    """Encode bytes to base64url (no padding, URL-safe)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Decode base64url string back to bytes."""
    # Restore padding
    padding = len(s) % 4
    if padding:
        s += "=" * (4 - padding)
    return base64.urlsafe_b64decode(s)


def prefixed_hex(algorithm: str, data: bytes) -> str:
    """Render a digest or signature as ``"<algorithm>:<hex>"``."""
    return f"{algorithm}:{data.hex()}"


def split_prefixed(value: str) -> Tuple[str, str]:
    """Split ``"<algorithm>:<hex>"`` into its parts. Raises ValueError if unprefixed."""
    algorithm, sep, hex_part = value.partition(":")
    if not sep or not algorithm:
        raise ValueError(f"Expected '<algorithm>:<hex>', got {value[:24]!r}")
    return algorithm, hex_part
