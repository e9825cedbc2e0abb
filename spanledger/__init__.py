# spanledger/__init__.py
"""
Spanledger — an append-only, cryptographically verifiable store of atomic span records.
Every span carries a BLAKE3 content hash and, once confirmed, an Ed25519 signature
binding it to the local identity.
"""

__version__ = "0.1.0-dev"
