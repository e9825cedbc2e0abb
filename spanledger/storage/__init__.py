# spanledger/storage/__init__.py
"""
Storage backends for the append-only span ledger.

Spans are insert-only: no backend exposes update or delete for them. Users,
credentials, identity and contracts are mutable projections stored alongside.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Tuple

from spanledger.core.types import Contract, Credential, IdentityRecord, Span, SpanQuery, User


class StorageBackend(ABC):
    """Abstract base for all persistent storage implementations."""

    # -- ledger (append-only) -------------------------------------------------

    @abstractmethod
    def append_span(self, span: Span) -> None:
        """Insert a finished span. Raises DuplicateIdError if the id exists."""

    @abstractmethod
    def get_span(self, span_id: str) -> Optional[Span]:
        pass

    @abstractmethod
    def query_spans(self, query: SpanQuery) -> List[Span]:
        pass

    @abstractmethod
    def all_spans(self) -> List[Span]:
        pass

    @abstractmethod
    def count_spans(self) -> int:
        pass

    @abstractmethod
    def list_traces(self) -> List[Tuple[str, int, str]]:
        """(trace_id, span count, latest started_at), most recent first."""

    # -- projections ----------------------------------------------------------

    @abstractmethod
    def put_user(self, user: User) -> None:
        pass

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    def put_credential(self, credential: Credential) -> None:
        pass

    @abstractmethod
    def get_credential(self, user_id: str) -> Optional[Credential]:
        pass

    @abstractmethod
    def put_identity(self, record: IdentityRecord) -> None:
        pass

    @abstractmethod
    def get_identity(self) -> Optional[IdentityRecord]:
        pass

    @abstractmethod
    def put_contract(self, contract: Contract) -> None:
        pass

    @abstractmethod
    def get_contract(self, contract_id: str) -> Optional[Contract]:
        pass

    @abstractmethod
    def list_contracts(self) -> List[Contract]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


def create_storage(uri: str) -> StorageBackend:
    if uri in ("memory://", "sqlite://:memory:"):
        from .sqlite import SQLiteStorage
        return SQLiteStorage(":memory:")

    elif uri.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        # Extract everything after sqlite://
        raw_path = uri[len("sqlite://"):].lstrip("/")
        if not raw_path.startswith('/'):
            raw_path = '/' + raw_path

        absolute_path = Path(raw_path).resolve()
        return SQLiteStorage(absolute_path)

    else:
        raise ValueError(f"Unsupported storage URI: {uri}")


from .sqlite import SQLiteStorage

__all__ = ["StorageBackend", "create_storage", "SQLiteStorage"]
