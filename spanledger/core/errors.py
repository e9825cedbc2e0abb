# spanledger/core/errors.py
"""Error taxonomy. Verification failures are results, not exceptions."""


class LedgerError(Exception):
    """Base class for every error raised by spanledger."""


class KeyGenerationError(LedgerError):
    """The host could not supply secure randomness for a new keypair."""


class DecryptionError(LedgerError):
    """Credential blob failed authentication: wrong scope or corrupted bytes."""


class DuplicateIdError(LedgerError):
    """A span with the same id already exists in the ledger."""

    def __init__(self, span_id: str):
        super().__init__(f"Span id already exists: {span_id}")
        self.span_id = span_id


class UnsupportedFormatError(LedgerError):
    """Export was asked for a format it does not know."""

    def __init__(self, fmt: object):
        super().__init__(f"Unsupported export format: {fmt!r}")
        self.format = fmt
