# spanledger/storage/sqlite.py
import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import List, Optional, Tuple

from spanledger.core.errors import DuplicateIdError
from spanledger.core.types import Contract, Credential, IdentityRecord, Span, SpanQuery, User
from . import StorageBackend

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

# SpanQuery.index() may only ever name one of these columns
_INDEX_COLUMNS = frozenset({"trace_id", "type", "entity"})


def _dumps(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class SQLiteStorage(StorageBackend):
    """SQLite persistent storage for the span ledger and its projections."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get("SPANLEDGER_DB_PATH")
            db_path = env_path if env_path else Path.cwd() / "spanledger.db"

        if str(db_path) == MEMORY:
            self.db_path: Path | str = MEMORY
        else:
            self.db_path = Path(db_path)
            # Ensure the entire parent directory tree exists
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self):
        # Calls may arrive from the async facade's worker thread; there is only
        # ever one worker, so sharing the connection across threads is safe.
        self._conn = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
        if self.db_path != MEMORY:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS spans (
                seq             INTEGER PRIMARY KEY AUTOINCREMENT,
                id              TEXT    NOT NULL UNIQUE,
                trace_id        TEXT    NOT NULL,
                parent_id       TEXT,
                type            TEXT    NOT NULL,
                entity          TEXT    NOT NULL,
                started_at      TEXT    NOT NULL,
                hash            TEXT    NOT NULL,
                signature       TEXT,
                span_json       TEXT    NOT NULL
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_spans_trace  ON spans(trace_id, seq)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_spans_type   ON spans(type, seq)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_spans_entity ON spans(entity, seq)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_spans_time   ON spans(started_at)")

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id          TEXT PRIMARY KEY,
                name        TEXT NOT NULL,
                email       TEXT,
                created_at  TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS credentials (
                user_id         TEXT PRIMARY KEY,
                encrypted_key   TEXT NOT NULL,
                provider        TEXT NOT NULL,
                created_at      TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS identity (
                id                  TEXT PRIMARY KEY CHECK (id = 'self'),
                user_id             TEXT NOT NULL,
                public_key_json     TEXT NOT NULL,
                sealed_private_key  TEXT NOT NULL,
                created_at          TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS contracts (
                id              TEXT PRIMARY KEY,
                contract_json   TEXT NOT NULL,
                last_updated    TEXT NOT NULL
            )
        """)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    # ── ledger ───────────────────────────────────────────────────────────────

    def append_span(self, span: Span) -> None:
        # No hash/signature check here: integrity is audited at read time
        try:
            self.conn.execute("""
                INSERT INTO spans
                (id, trace_id, parent_id, type, entity, started_at, hash, signature, span_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                span.id, span.trace_id, span.parent_id, span.type, span.entity,
                span.started_at, span.this.hash, span.signature, _dumps(span.to_dict())
            ))
        except sqlite3.IntegrityError as e:
            # Only an id clash is retryable; NOT NULL and other violations propagate
            if "spans.id" not in str(e):
                raise
            raise DuplicateIdError(span.id) from e
        logger.debug("Appended span %s (trace=%s, type=%s)", span.id, span.trace_id, span.type)

    def get_span(self, span_id: str) -> Optional[Span]:
        row = self.conn.execute("SELECT span_json FROM spans WHERE id = ?", (span_id,)).fetchone()
        return Span.from_dict(json.loads(row[0])) if row else None

    def query_spans(self, query: SpanQuery) -> List[Span]:
        clauses, params = [], []

        index = query.index()
        if index is not None:
            column, value = index
            if column not in _INDEX_COLUMNS:
                raise ValueError(f"Not an indexed column: {column}")
            clauses.append(f"{column} = ?")
            params.append(value)
        if query.from_:
            clauses.append("started_at >= ?")
            params.append(query.from_)
        if query.to:
            clauses.append("started_at <= ?")
            params.append(query.to)

        sql = "SELECT span_json FROM spans"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY seq ASC"
        if query.limit:
            sql += " LIMIT ?"
            params.append(int(query.limit))

        return [Span.from_dict(json.loads(row[0])) for row in self.conn.execute(sql, params)]

    def all_spans(self) -> List[Span]:
        return self.query_spans(SpanQuery())

    def count_spans(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM spans").fetchone()[0]

    def list_traces(self) -> List[Tuple[str, int, str]]:
        """
        List all trace ids with their span count and latest started_at,
        sorted by most recent activity.
        """
        cursor = self.conn.execute("""
            SELECT trace_id, COUNT(*), MAX(started_at)
            FROM spans
            GROUP BY trace_id
            ORDER BY MAX(started_at) DESC
        """)
        return [(row[0], row[1], row[2]) for row in cursor.fetchall()]

    def get_trace_count(self, trace_id: str) -> int:
        cursor = self.conn.execute(
            "SELECT COUNT(*) FROM spans WHERE trace_id = ?",
            (trace_id,)
        )
        return cursor.fetchone()[0]

    def get_latest_started_at(self, trace_id: str) -> Optional[str]:
        cursor = self.conn.execute(
            "SELECT MAX(started_at) FROM spans WHERE trace_id = ?",
            (trace_id,)
        )
        row = cursor.fetchone()
        return row[0] if row and row[0] else None

    # ── projections ──────────────────────────────────────────────────────────

    def put_user(self, user: User) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO users (id, name, email, created_at) VALUES (?, ?, ?, ?)",
            (user.id, user.name, user.email, user.created_at),
        )

    def get_user(self, user_id: str) -> Optional[User]:
        row = self.conn.execute(
            "SELECT id, name, email, created_at FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        uid, name, email, created = row
        return User(id=uid, name=name, email=email, created_at=created)

    def put_credential(self, credential: Credential) -> None:
        # Re-registration overwrites; credentials are never edited in place
        self.conn.execute(
            "INSERT OR REPLACE INTO credentials (user_id, encrypted_key, provider, created_at) VALUES (?, ?, ?, ?)",
            (credential.user_id, credential.encrypted_key, credential.provider, credential.created_at),
        )

    def get_credential(self, user_id: str) -> Optional[Credential]:
        row = self.conn.execute(
            "SELECT user_id, encrypted_key, provider, created_at FROM credentials WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        uid, enc, provider, created = row
        return Credential(user_id=uid, encrypted_key=enc, provider=provider, created_at=created)

    def put_identity(self, record: IdentityRecord) -> None:
        self.conn.execute("""
            INSERT OR REPLACE INTO identity
            (id, user_id, public_key_json, sealed_private_key, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (record.id, record.user_id, _dumps(record.public_key), record.sealed_private_key, record.created_at))

    def get_identity(self) -> Optional[IdentityRecord]:
        row = self.conn.execute("""
            SELECT id, user_id, public_key_json, sealed_private_key, created_at
            FROM identity WHERE id = 'self'
        """).fetchone()
        if row is None:
            return None
        rid, uid, pjson, sealed, created = row
        return IdentityRecord(
            id=rid, user_id=uid, public_key=json.loads(pjson),
            sealed_private_key=sealed, created_at=created
        )

    def put_contract(self, contract: Contract) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO contracts (id, contract_json, last_updated) VALUES (?, ?, ?)",
            (contract.id, _dumps(contract.to_dict()), contract.last_updated),
        )

    def get_contract(self, contract_id: str) -> Optional[Contract]:
        row = self.conn.execute(
            "SELECT contract_json FROM contracts WHERE id = ?", (contract_id,)
        ).fetchone()
        return Contract.from_dict(json.loads(row[0])) if row else None

    def list_contracts(self) -> List[Contract]:
        cursor = self.conn.execute("SELECT contract_json FROM contracts ORDER BY last_updated DESC")
        return [Contract.from_dict(json.loads(row[0])) for row in cursor]

    # ── lifecycle ────────────────────────────────────────────────────────────

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
