# spanledger/crypto/vault.py
"""
Credential vault: PBKDF2-HMAC-SHA256 key derivation + AES-256-GCM.

The key is derived from the user scope (the user id), not from a password, so
the flow stays non-interactive. Anyone holding both the local store and the
user id can derive the key; the vault protects against disk scraping, not a
compromised runtime.

Blob layout (hex-encoded): ``salt(16) || nonce(12) || ciphertext || tag(16)``.
"""
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from spanledger.core.errors import DecryptionError
from spanledger.core.types import Provider

logger = logging.getLogger(__name__)

SALT_BYTES = 16
NONCE_BYTES = 12
TAG_BYTES = 16
KDF_ITERATIONS = 100_000
KEY_BYTES = 32


def _derive_key(user_scope: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(user_scope.encode("utf-8"))


def encrypt(secret: str, user_scope: str) -> str:
    """Encrypt ``secret`` under a key derived from ``user_scope``. Fresh salt and nonce per call."""
    salt = os.urandom(SALT_BYTES)
    nonce = os.urandom(NONCE_BYTES)
    key = _derive_key(user_scope, salt)
    ciphertext = AESGCM(key).encrypt(nonce, secret.encode("utf-8"), None)
    return (salt + nonce + ciphertext).hex()


def decrypt(blob: str, user_scope: str) -> str:
    """Reverse :func:`encrypt`. Raises DecryptionError rather than returning partial data."""
    try:
        data = bytes.fromhex(blob)
    except (ValueError, TypeError) as exc:
        raise DecryptionError("credential blob is not valid hex") from exc
    if len(data) < SALT_BYTES + NONCE_BYTES + TAG_BYTES:
        raise DecryptionError("credential blob is too short")

    salt = data[:SALT_BYTES]
    nonce = data[SALT_BYTES:SALT_BYTES + NONCE_BYTES]
    ciphertext = data[SALT_BYTES + NONCE_BYTES:]

    key = _derive_key(user_scope, salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        logger.debug("Vault authentication tag mismatch")
        raise DecryptionError("decryption failed: wrong scope or corrupted ciphertext") from exc
    return plaintext.decode("utf-8")


def detect_provider(api_key: str) -> Provider:
    """Guess the LLM provider from the API key prefix."""
    if api_key.startswith("sk-ant-"):
        return "anthropic"
    if api_key.startswith(("sk-", "sk-proj-")):
        return "openai"
    return "ollama"
