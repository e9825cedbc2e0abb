# spanledger/service.py
"""
Application-facing facade over one explicitly injected store.

Covers the flows that surround the ledger core: user registration (credential
vault + identity + signed registration span), recording spans signed by the
installation identity, contracts as a projection over their trace, and
credential lookup for the LLM collaborator.
"""
import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Union

from spanledger.core.ids import generate_id, generate_user_id, utc_now
from spanledger.core.payloads import ContractDraft, ContractUpdate, RegistrationResult, UserRegistration
from spanledger.core.types import (
    Contract,
    ContractStatus,
    Credential,
    Identity,
    Party,
    Rule,
    Span,
    SpanBody,
    SpanQuery,
    User,
)
from spanledger.crypto import signing, vault
from spanledger.crypto.keys import PublicKeyMaterial, generate_identity, open_identity, seal_identity
from spanledger.export import ExportFormat, export_spans
from spanledger.storage import StorageBackend
from spanledger.trace.builder import append_with_retry, build_span, seal_span
from spanledger.verify.verifier import SpanVerifier, VerificationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Registration:
    user: User
    credential: Credential
    identity: Identity
    span: Span


class LedgerService:
    def __init__(self, storage: StorageBackend, domain: Optional[str] = None):
        self.storage = storage
        self.domain = domain or os.environ.get("SPANLEDGER_DOMAIN") or signing.DEFAULT_DOMAIN

    # ── identity ─────────────────────────────────────────────────────────────

    def load_identity(self) -> Optional[Identity]:
        """Unseal the installation identity; the caller owns (and should close) its handle."""
        record = self.storage.get_identity()
        return open_identity(record) if record else None

    def public_key(self) -> Optional[PublicKeyMaterial]:
        record = self.storage.get_identity()
        return dict(record.public_key) if record else None

    def trusted_keys(self) -> Dict[str, PublicKeyMaterial]:
        record = self.storage.get_identity()
        return {record.user_id: dict(record.public_key)} if record else {}

    # ── registration & credentials ───────────────────────────────────────────

    def register_user(self, name: str, api_key: str, email: Optional[str] = None) -> Registration:
        """
        Create the local user, encrypt their provider API key, generate the
        signing identity and append a signed ``user.registered`` span.
        Re-registering overwrites the stored credential and identity.
        """
        user_id = generate_user_id(name)
        user = User(id=user_id, name=name, email=email, created_at=utc_now())
        self.storage.put_user(user)

        credential = Credential(
            user_id=user_id,
            encrypted_key=vault.encrypt(api_key, user_id),
            provider=vault.detect_provider(api_key),
            created_at=utc_now(),
        )
        self.storage.put_credential(credential)

        identity = generate_identity(user_id)
        self.storage.put_identity(seal_identity(identity))

        body = SpanBody.of(
            "register_user",
            UserRegistration(name=name, user_id=user_id),
            RegistrationResult(success=True, user_id=user_id),
        )
        span = self._append(
            f"onboarding-{user_id}", "user.registered", "user", body,
            identity=identity,
            completed_at=utc_now(),
        )
        logger.info("Registered user %s (provider=%s)", user_id, credential.provider)
        return Registration(
            user=user,
            credential=credential,
            identity=replace(identity, private_key_handle=None),
            span=span,
        )

    def get_api_key(self, user_id: str) -> str:
        """Decrypt the stored provider key. Raises DecryptionError if it cannot be opened."""
        credential = self.storage.get_credential(user_id)
        if credential is None:
            raise LookupError(f"No credential stored for user '{user_id}'")
        return vault.decrypt(credential.encrypted_key, user_id)

    def get_credential(self, user_id: str) -> Optional[Credential]:
        return self.storage.get_credential(user_id)

    # ── ledger ───────────────────────────────────────────────────────────────

    def _append(
        self,
        trace_id: str,
        type: str,
        entity: str,
        body: SpanBody,
        *,
        identity: Optional[Identity],
        parent_id: Optional[str] = None,
        started_at: Optional[str] = None,
        completed_at: Optional[str] = None,
    ) -> Span:
        handle = identity.private_key_handle if identity else None
        started_at = started_at or utc_now()

        def make(span_id: str) -> Span:
            sealed = seal_span(build_span(
                trace_id, type, entity, body,
                span_id=span_id,
                parent_id=parent_id,
                started_at=started_at,
                completed_at=completed_at,
            ))
            if handle is None:
                return sealed
            return signing.confirm(sealed, handle, identity.user_id, self.domain)

        if handle is None:
            return append_with_retry(self.storage, make)
        with handle:
            return append_with_retry(self.storage, make)

    def record(
        self,
        trace_id: str,
        type: str,
        entity: str,
        action: str,
        input: Any,
        output: Any = None,
        *,
        parent_id: Optional[str] = None,
        rules: Optional[List[Rule]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        started_at: Optional[str] = None,
        completed_at: Optional[str] = None,
        sign: bool = True,
    ) -> Span:
        """Build, hash, sign with the installation identity (if asked and available) and append."""
        body = SpanBody.of(action, input, output, rules=rules, metadata=metadata)
        identity = self.load_identity() if sign else None
        if sign and identity is None:
            logger.warning("No identity registered; span in trace %s will be unsigned", trace_id)
        return self._append(
            trace_id, type, entity, body,
            identity=identity,
            parent_id=parent_id,
            started_at=started_at,
            completed_at=completed_at,
        )

    def append(self, span: Span) -> None:
        """Append an already finished span as-is."""
        self.storage.append_span(span)

    def sign(self, span: Span) -> str:
        """Signature over ``span`` by the installation identity."""
        identity = self.load_identity()
        if identity is None:
            raise LookupError("No identity registered")
        with identity.private_key_handle as handle:
            return signing.sign(span, handle)

    def verify(self, span: Span) -> bool:
        """Check a span's signature against the installation public key."""
        public_key = self.public_key()
        if public_key is None:
            return False
        return signing.verify_span(span, public_key)

    def query(self, query: Optional[SpanQuery] = None, **filters) -> List[Span]:
        """``query(SpanQuery(...))`` or ``query(trace_id=..., from_=..., limit=...)``."""
        if query is None:
            query = SpanQuery(**filters)
        elif filters:
            raise TypeError("Pass either a SpanQuery or keyword filters, not both")
        return self.storage.query_spans(query)

    def export(self, fmt: Union[str, ExportFormat]) -> str:
        return export_spans(self.storage.all_spans(), fmt)

    def audit_trace(self, trace_id: str, require_signatures: bool = False) -> VerificationResult:
        verifier = SpanVerifier(self.trusted_keys(), require_signatures=require_signatures)
        return verifier.verify_from_storage(trace_id, self.storage)

    # ── contracts ────────────────────────────────────────────────────────────

    def create_contract(
        self,
        title: str,
        parties: Optional[List[Party]] = None,
        terms: Optional[str] = None,
    ) -> Contract:
        """New draft contract; its id doubles as the trace id of its spans."""
        contract_id = generate_id()
        parties = list(parties or [])
        span = self.record(
            contract_id, "contract.created", "contract", "create_contract",
            ContractDraft(title=title, parties=[p.to_dict() for p in parties], terms=terms),
            {"success": True},
            completed_at=utc_now(),
        )
        now = utc_now()
        contract = Contract(
            id=contract_id,
            title=title,
            parties=parties,
            status=ContractStatus.DRAFT,
            created_at=now,
            spans=[span.id],
            last_updated=now,
        )
        self.storage.put_contract(contract)
        return contract

    def set_contract_status(self, contract_id: str, status: Union[str, ContractStatus]) -> Contract:
        """Move a contract to ``status``. Completed and cancelled contracts are final."""
        status = ContractStatus(status)
        contract = self.storage.get_contract(contract_id)
        if contract is None:
            raise LookupError(f"Unknown contract '{contract_id}'")
        if contract.status.is_terminal:
            raise ValueError(f"Contract {contract_id} is {contract.status.value} and cannot change")
        if contract.status == status:
            raise ValueError(f"Contract {contract_id} is already {status.value}")

        span = self.record(
            contract_id, f"contract.{status.value}", "contract", "update_contract_status",
            ContractUpdate(contract_id=contract_id, status=status.value, previous_status=contract.status.value),
            parent_id=contract.spans[-1] if contract.spans else None,
            completed_at=utc_now(),
        )
        contract.status = status
        contract.spans.append(span.id)
        contract.last_updated = utc_now()
        self.storage.put_contract(contract)
        return contract

    def get_contract(self, contract_id: str) -> Optional[Contract]:
        return self.storage.get_contract(contract_id)

    def list_contracts(self) -> List[Contract]:
        return self.storage.list_contracts()
