# spanledger/aio.py
"""
Asynchronous facade.

Every call is handed to a single worker thread, so ledger and crypto work never
blocks the event loop and never runs in parallel inside one process. There is
no cancellation or timeout here; wrap calls in ``asyncio.wait_for`` at the
boundary if you need one.
"""
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional, Union

from spanledger.core.types import Span, SpanQuery
from spanledger.crypto import signing, vault
from spanledger.crypto.keys import PublicKeyMaterial
from spanledger.export import ExportFormat
from spanledger.service import LedgerService, Registration
from spanledger.verify.verifier import VerificationResult

logger = logging.getLogger(__name__)


class AsyncLedger:
    def __init__(self, service: LedgerService):
        self.service = service
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="spanledger")

    async def _run(self, fn, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    async def append(self, span: Span) -> None:
        await self._run(self.service.append, span)

    async def record(self, *args, **kwargs) -> Span:
        return await self._run(self.service.record, *args, **kwargs)

    async def query(self, query: Optional[SpanQuery] = None, **filters) -> List[Span]:
        return await self._run(self.service.query, query, **filters)

    async def export(self, fmt: Union[str, ExportFormat]) -> str:
        return await self._run(self.service.export, fmt)

    async def sign(self, span: Span) -> str:
        return await self._run(self.service.sign, span)

    async def verify(
        self,
        span: Span,
        signature: Optional[str] = None,
        public_key: Optional[PublicKeyMaterial] = None,
    ) -> bool:
        """Explicit signature/key when given, else the span's own signature against the local identity."""
        if signature is not None and public_key is not None:
            return await self._run(signing.verify, span, signature, public_key)
        return await self._run(self.service.verify, span)

    async def encrypt(self, secret: str, user_scope: str) -> str:
        return await self._run(vault.encrypt, secret, user_scope)

    async def decrypt(self, blob: str, user_scope: str) -> str:
        return await self._run(vault.decrypt, blob, user_scope)

    async def register_user(self, name: str, api_key: str, email: Optional[str] = None) -> Registration:
        return await self._run(self.service.register_user, name, api_key, email)

    async def audit_trace(self, trace_id: str, require_signatures: bool = False) -> VerificationResult:
        return await self._run(self.service.audit_trace, trace_id, require_signatures)

    async def aclose(self, close_storage: bool = False) -> None:
        if close_storage:
            await self._run(self.service.storage.close)
        self._executor.shutdown(wait=True)
        logger.debug("Async ledger worker stopped")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
