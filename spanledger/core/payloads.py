# spanledger/core/payloads.py
"""
Closed set of known ``body.input`` / ``body.output`` shapes, plus an opaque fallback.

Anything that goes into a span body is reduced to plain JSON types
(dict / list / str / int / float / bool / None) before it is stored or canonicalized.
"""
import math
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class UserRegistration:
    name: str
    user_id: str


@dataclass(frozen=True)
class RegistrationResult:
    success: bool
    user_id: str


@dataclass(frozen=True)
class ContractDraft:
    title: str
    parties: List[Dict[str, Any]] = field(default_factory=list)
    terms: Optional[str] = None


@dataclass(frozen=True)
class ContractUpdate:
    contract_id: str
    status: str
    previous_status: Optional[str] = None


@dataclass(frozen=True)
class LLMExchange:
    provider: str
    model: str
    messages: List[Dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class Opaque:
    """Any other structured value; carried as-is."""
    value: Any = None


Payload = Union[UserRegistration, RegistrationResult, ContractDraft, ContractUpdate, LLMExchange, Opaque]

# action -> (input shape, output shape)
KNOWN_ACTIONS = {
    "register_user": (UserRegistration, RegistrationResult),
    "create_contract": (ContractDraft, None),
    "update_contract_status": (ContractUpdate, None),
    "llm_exchange": (LLMExchange, None),
}


def _plain(value: Any, path: str) -> Any:
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise TypeError(f"Non-finite number at {path} cannot be canonicalized")
        return value
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError(f"Non-string key {k!r} at {path}")
            out[k] = _plain(v, f"{path}.{k}")
        return out
    if isinstance(value, (list, tuple)):
        return [_plain(v, f"{path}[{i}]") for i, v in enumerate(value)]
    raise TypeError(f"Object of type {type(value).__name__} at {path} is not JSON serializable")


def to_json_value(payload: Any) -> Any:
    """Reduce a payload (typed shape, Opaque, or raw value) to plain JSON types."""
    if isinstance(payload, Opaque):
        return _plain(payload.value, "$")
    if is_dataclass(payload) and not isinstance(payload, type):
        # Optional fields left unset are omitted rather than null-padded
        d = {k: v for k, v in asdict(payload).items() if v is not None}
        return _plain(d, "$")
    return _plain(payload, "$")


def from_json_value(action: str, value: Any, *, output: bool = False) -> Payload:
    """Parse a stored value into its known shape for ``action``, else wrap it as Opaque."""
    shapes = KNOWN_ACTIONS.get(action)
    shape = None
    if shapes is not None:
        shape = shapes[1] if output else shapes[0]
    if shape is None or not isinstance(value, dict):
        return Opaque(value)

    names = {f.name for f in fields(shape)}
    if not set(value) <= names:
        return Opaque(value)
    try:
        return shape(**value)
    except TypeError:
        return Opaque(value)
