# spanledger/core/types.py
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from spanledger.core.payloads import Payload, from_json_value, to_json_value

SCHEMA_VERSION = "1.0.0"

Provider = Literal["anthropic", "openai", "ollama"]


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@dataclass(frozen=True)
class Rule:
    id: str
    condition: str
    action: str
    parameters: Optional[Dict[str, Any]] = None
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "condition": self.condition,
            "action": self.action,
            "parameters": self.parameters,
            "description": self.description,
        })

    @classmethod
    def from_dict(cls, d: dict) -> "Rule":
        return cls(
            id=d["id"],
            condition=d["condition"],
            action=d["action"],
            parameters=d.get("parameters"),
            description=d.get("description"),
        )


@dataclass(frozen=True)
class SpanBody:
    """Semantic payload. ``input`` / ``output`` hold plain JSON values."""
    action: str
    input: Any
    output: Any = None
    rules: Optional[List[Rule]] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def of(
        cls,
        action: str,
        input: Any,
        output: Any = None,
        rules: Optional[List[Rule]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "SpanBody":
        """Build a body from typed payloads or raw values, normalising both to JSON."""
        return cls(
            action=action,
            input=to_json_value(input),
            output=to_json_value(output) if output is not None else None,
            rules=list(rules) if rules else None,
            metadata=to_json_value(metadata) if metadata is not None else None,
        )

    def typed_input(self) -> Payload:
        return from_json_value(self.action, self.input)

    def typed_output(self) -> Payload:
        return from_json_value(self.action, self.output, output=True)

    def to_dict(self) -> dict:
        d = {"action": self.action, "input": self.input}
        if self.output is not None:
            d["output"] = self.output
        if self.rules is not None:
            d["rules"] = [r.to_dict() for r in self.rules]
        if self.metadata is not None:
            d["metadata"] = self.metadata
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "SpanBody":
        rules = d.get("rules")
        return cls(
            action=d["action"],
            input=d.get("input"),
            output=d.get("output"),
            rules=[Rule.from_dict(r) for r in rules] if rules is not None else None,
            metadata=d.get("metadata"),
        )


@dataclass(frozen=True)
class SpanThis:
    hash: str = ""                  # "blake3:<hex>", empty until sealed
    version: str = SCHEMA_VERSION


@dataclass(frozen=True)
class Confirmation:
    signature: str                  # "ed25519:<hex>"
    domain: str
    timestamp: str
    signer_id: str


@dataclass(frozen=True)
class Span:
    """Atomic, write-once ledger record."""
    id: str                         # time-ordered, see core.ids
    trace_id: str
    type: str
    entity: str
    body: SpanBody
    started_at: str                 # ISO 8601 UTC
    this: SpanThis = field(default_factory=SpanThis)
    parent_id: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: Optional[int] = None
    confirmed_by: Optional[Confirmation] = None

    @property
    def hash(self) -> str:
        return self.this.hash

    @property
    def signature(self) -> Optional[str]:
        return self.confirmed_by.signature if self.confirmed_by else None

    def with_confirmation(self, confirmation: Confirmation) -> "Span":
        return replace(self, confirmed_by=confirmation)

    def to_dict(self) -> dict:
        """Wire / storage shape. Absent optional fields are omitted, never null."""
        d: Dict[str, Any] = {"id": self.id, "trace_id": self.trace_id}
        if self.parent_id is not None:
            d["parent_id"] = self.parent_id
        d["type"] = self.type
        d["entity"] = self.entity
        d["body"] = self.body.to_dict()
        d["started_at"] = self.started_at
        if self.completed_at is not None:
            d["completed_at"] = self.completed_at
        if self.duration_ms is not None:
            d["duration_ms"] = self.duration_ms
        d["this"] = {"hash": self.this.hash, "version": self.this.version}
        if self.confirmed_by is not None:
            d["confirmed_by"] = {
                "signature": self.confirmed_by.signature,
                "domain": self.confirmed_by.domain,
                "timestamp": self.confirmed_by.timestamp,
                "signer_id": self.confirmed_by.signer_id,
            }
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Span":
        this = d.get("this") or {}
        conf = d.get("confirmed_by")
        return cls(
            id=d["id"],
            trace_id=d["trace_id"],
            parent_id=d.get("parent_id"),
            type=d["type"],
            entity=d["entity"],
            body=SpanBody.from_dict(d["body"]),
            started_at=d["started_at"],
            completed_at=d.get("completed_at"),
            duration_ms=d.get("duration_ms"),
            this=SpanThis(hash=this.get("hash", ""), version=this.get("version", SCHEMA_VERSION)),
            confirmed_by=Confirmation(**conf) if conf else None,
        )


@dataclass(frozen=True)
class SpanQuery:
    """
    Ledger filter. At most one of trace_id / type / entity selects the index
    (checked in that order); from_ / to / limit are applied afterwards.
    """
    trace_id: Optional[str] = None
    type: Optional[str] = None
    entity: Optional[str] = None
    from_: Optional[str] = None     # inclusive lower bound on started_at
    to: Optional[str] = None        # inclusive upper bound on started_at
    limit: Optional[int] = None     # falsy means no limit

    def index(self) -> Optional[tuple]:
        """(column, value) of the index to scan, or None for a full scan."""
        if self.trace_id:
            return ("trace_id", self.trace_id)
        if self.type:
            return ("type", self.type)
        if self.entity:
            return ("entity", self.entity)
        return None


@dataclass(frozen=True)
class User:
    id: str
    name: str
    created_at: str
    email: Optional[str] = None


@dataclass(frozen=True)
class Credential:
    user_id: str
    encrypted_key: str              # hex(salt || nonce || ciphertext+tag)
    provider: Provider
    created_at: str


@dataclass(frozen=True)
class Identity:
    """Local signing identity. The private key lives only inside the handle."""
    user_id: str
    public_key: Dict[str, str]      # JWK (OKP / Ed25519)
    created_at: str
    id: str = "self"
    private_key_handle: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class IdentityRecord:
    """Persisted identity: public JWK plus the vault-sealed private seed."""
    user_id: str
    public_key: Dict[str, str]
    sealed_private_key: str
    created_at: str
    id: str = "self"


class ContractStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ContractStatus.COMPLETED, ContractStatus.CANCELLED)


@dataclass(frozen=True)
class Party:
    name: str
    role: str
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({"name": self.name, "role": self.role, "id": self.id})


@dataclass
class Contract:
    """Mutable projection over ledger spans. Not integrity-critical."""
    id: str
    title: str
    created_at: str
    last_updated: str
    parties: List[Party] = field(default_factory=list)
    status: ContractStatus = ContractStatus.DRAFT
    spans: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "parties": [p.to_dict() for p in self.parties],
            "status": self.status.value,
            "created_at": self.created_at,
            "spans": list(self.spans),
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Contract":
        return cls(
            id=d["id"],
            title=d["title"],
            parties=[Party(**p) for p in d.get("parties", [])],
            status=ContractStatus(d["status"]),
            created_at=d["created_at"],
            spans=list(d.get("spans", [])),
            last_updated=d["last_updated"],
        )
