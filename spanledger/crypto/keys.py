# spanledger/crypto/keys.py
"""
Local signing identity: one Ed25519 keypair per installation (id ``"self"``).

The private key never leaves a :class:`PrivateKeyHandle` in exportable form. For
persistence it is sealed with the credential vault under the owner's user id.
"""
import logging
import os
from typing import Dict, Optional, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from spanledger.core.encoding import b64url_decode, b64url_encode
from spanledger.core.errors import KeyGenerationError
from spanledger.core.ids import utc_now
from spanledger.core.types import Identity, IdentityRecord
from spanledger.crypto import vault

logger = logging.getLogger(__name__)

PublicKeyMaterial = Dict[str, str]


class PrivateKeyHandle:
    """
    Opaque, non-copyable wrapper around an Ed25519 private key.

    Acquire it for a single sign call (``with handle: ...``); leaving the block
    drops the key reference.
    """

    __slots__ = ("_key",)

    def __init__(self, key: Ed25519PrivateKey):
        self._key: Optional[Ed25519PrivateKey] = key

    @property
    def closed(self) -> bool:
        return self._key is None

    def _require(self) -> Ed25519PrivateKey:
        if self._key is None:
            raise RuntimeError("Private key handle is closed")
        return self._key

    def sign(self, data: bytes) -> bytes:
        return self._require().sign(data)

    def public_key(self) -> Ed25519PublicKey:
        return self._require().public_key()

    def close(self) -> None:
        self._key = None

    def __enter__(self):
        self._require()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __copy__(self):
        raise TypeError("Private key handles cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("Private key handles cannot be copied")

    def __reduce_ex__(self, protocol):
        raise TypeError("Private key handles cannot be serialized")

    def __repr__(self) -> str:
        return f"<PrivateKeyHandle {'closed' if self.closed else 'ed25519'}>"


def _public_jwk(public_key: Ed25519PublicKey) -> PublicKeyMaterial:
    raw = public_key.public_bytes(encoding=Encoding.Raw, format=PublicFormat.Raw)
    return {"kty": "OKP", "crv": "Ed25519", "x": b64url_encode(raw)}


def generate_identity(user_id: str) -> Identity:
    """Create a fresh Ed25519 identity for ``user_id``."""
    try:
        seed = os.urandom(32)
    except (NotImplementedError, OSError) as exc:
        raise KeyGenerationError("No secure randomness source available") from exc

    private_key = Ed25519PrivateKey.from_private_bytes(seed)
    identity = Identity(
        user_id=user_id,
        public_key=_public_jwk(private_key.public_key()),
        created_at=utc_now(),
        private_key_handle=PrivateKeyHandle(private_key),
    )
    logger.info("Generated signing identity for %s", user_id)
    return identity


def export_public_key(identity: Identity) -> PublicKeyMaterial:
    """Portable JWK for third-party verification. Never includes private material."""
    return dict(identity.public_key)


def load_public_key(material: Union[PublicKeyMaterial, Ed25519PublicKey]) -> Ed25519PublicKey:
    """Accept a JWK dict or an already-loaded key. Raises ValueError on anything else."""
    if isinstance(material, Ed25519PublicKey):
        return material
    if not isinstance(material, dict):
        raise ValueError(f"Unsupported public key material: {type(material).__name__}")
    if material.get("kty") != "OKP" or material.get("crv") != "Ed25519":
        raise ValueError("Public key is not an Ed25519 OKP JWK")
    raw = b64url_decode(material.get("x", ""))
    return Ed25519PublicKey.from_public_bytes(raw)


def seal_identity(identity: Identity) -> IdentityRecord:
    """Persistable form of ``identity``; the seed is vault-encrypted under its user id."""
    handle = identity.private_key_handle
    if handle is None:
        raise ValueError("Identity has no private key handle to seal")
    seed = handle._require().private_bytes(
        encoding=Encoding.Raw,
        format=PrivateFormat.Raw,
        encryption_algorithm=NoEncryption(),
    )
    return IdentityRecord(
        id=identity.id,
        user_id=identity.user_id,
        public_key=dict(identity.public_key),
        sealed_private_key=vault.encrypt(seed.hex(), identity.user_id),
        created_at=identity.created_at,
    )


def open_identity(record: IdentityRecord) -> Identity:
    """Unseal a stored identity. Raises DecryptionError if the record was tampered with."""
    seed = bytes.fromhex(vault.decrypt(record.sealed_private_key, record.user_id))
    private_key = Ed25519PrivateKey.from_private_bytes(seed)
    if _public_jwk(private_key.public_key()) != record.public_key:
        raise ValueError("Sealed private key does not match the stored public key")
    return Identity(
        id=record.id,
        user_id=record.user_id,
        public_key=dict(record.public_key),
        created_at=record.created_at,
        private_key_handle=PrivateKeyHandle(private_key),
    )
