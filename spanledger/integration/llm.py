# spanledger/integration/llm.py
"""
Seam to the language-model collaborator.

The application supplies ``send(messages, config) -> text``; spanledger never
speaks HTTP or parses provider responses. ``LedgerAuditor`` wraps that function
so every exchange is recorded as a signed span in one conversation trace.
"""
from dataclasses import dataclass, field
from typing import Callable, List, Literal, Optional

from spanledger.core.ids import generate_id, utc_now
from spanledger.core.payloads import LLMExchange
from spanledger.core.types import Provider, Span, SpanQuery
from spanledger.service import LedgerService
from spanledger.verify.verifier import SpanVerifier

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4-turbo-preview",
    "ollama": "llama2",
}


@dataclass(frozen=True)
class Message:
    role: Literal["user", "assistant", "system"]
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class LLMConfig:
    provider: Provider
    api_key: str = field(repr=False)
    model: str = ""


Send = Callable[[List[Message], LLMConfig], str]


class LedgerAuditor:
    """Records each request/reply pair sent through ``send`` as an ``llm.exchange`` span."""

    def __init__(
        self,
        service: LedgerService,
        send: Send,
        user_id: str,
        trace_id: Optional[str] = None,
        model: Optional[str] = None,
        history: Optional[List[Message]] = None,
    ):
        self.service = service
        self.send = send
        self.user_id = user_id
        self.trace_id = trace_id or f"conversation-{generate_id()}"
        self.model = model
        self.history: List[Message] = list(history or [])
        self.last_span_id: Optional[str] = None

    def _config(self) -> LLMConfig:
        credential = self.service.get_credential(self.user_id)
        if credential is None:
            raise LookupError(f"No credential stored for user '{self.user_id}'")
        return LLMConfig(
            provider=credential.provider,
            api_key=self.service.get_api_key(self.user_id),
            model=self.model or DEFAULT_MODELS[credential.provider],
        )

    def ask(self, content: str) -> str:
        config = self._config()
        messages = self.history + [Message("user", content)]

        started_at = utc_now()
        reply = self.send(messages, config)

        span = self.service.record(
            self.trace_id, "llm.exchange", "conversation", "llm_exchange",
            LLMExchange(
                provider=config.provider,
                model=config.model,
                messages=[m.to_dict() for m in messages],
            ),
            {"reply": reply},
            parent_id=self.last_span_id,
            started_at=started_at,
            completed_at=utc_now(),
        )
        self.last_span_id = span.id
        self.history = messages + [Message("assistant", reply)]
        return reply

    def export_trace(self) -> List[Span]:
        return self.service.query(SpanQuery(trace_id=self.trace_id))

    def create_verifier(self) -> SpanVerifier:
        return SpanVerifier(trusted_keys=self.service.trusted_keys())
