# examples/contract_audit_demo.py
# Run with: python examples/contract_audit_demo.py
#
# Uses a throwaway in-memory ledger and a canned "LLM" so it runs offline.

from dataclasses import replace
from typing import List

from spanledger.core.types import Party, SpanBody
from spanledger.integration.llm import LedgerAuditor, LLMConfig, Message
from spanledger.service import LedgerService
from spanledger.storage import create_storage


def canned_send(messages: List[Message], config: LLMConfig) -> str:
    return f"[{config.provider}/{config.model}] noted: {messages[-1].content[:40]}"


if __name__ == "__main__":
    service = LedgerService(create_storage("memory://"))

    # Onboarding
    registration = service.register_user("Demo User", "sk-ant-demo-key")
    print(f"\n[Registered] {registration.user.id} ({registration.credential.provider})")

    # Contract lifecycle
    contract = service.create_contract(
        "Website redesign",
        parties=[Party(name="Acme Ltd", role="client"), Party(name="Demo User", role="contractor")],
        terms="Fixed fee, delivery in 6 weeks",
    )
    service.set_contract_status(contract.id, "active")
    service.set_contract_status(contract.id, "completed")

    print("\n[Contract trace]")
    spans = service.query(trace_id=contract.id)
    for i, span in enumerate(spans):
        parent = span.parent_id[:8] + "..." if span.parent_id else "(root)"
        print(f"  [{i}] {span.type:20} | parent {parent:11} | {span.this.hash[:24]}...")

    # Audited LLM exchange
    auditor = LedgerAuditor(service, canned_send, registration.user.id)
    auditor.ask("Summarise the obligations of the contractor.")
    auditor.ask("And the payment terms?")
    print(f"\n[Conversation] {len(auditor.export_trace())} exchanges recorded in {auditor.trace_id}")

    # Verify
    print("\n[Verification]")
    verifier = auditor.create_verifier()
    print(f"  Contract valid: {verifier.verify(spans).is_valid}")
    print(f"  Conversation valid: {verifier.verify(auditor.export_trace()).is_valid}")

    # Tamper detection
    print("\n[Tamper detection]")
    tampered = spans.copy()
    tampered[0] = replace(tampered[0], body=SpanBody.of("create_contract", {"title": "TAMPERED!"}))
    print(verifier.verify(tampered))

    print("\n[Export]")
    print(service.export("csv"))
    print("\n" + "=" * 60)
