from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from agent_gateway.domain.models import (
    AccountSubscriptionState,
    AuditRecord,
    ChatEntry,
    CreditRecord,
    ModelClass,
    ProviderCompletion,
    StreamFrame,
    SubscriptionStatus,
    SubscriptionTier,
)
from agent_gateway.domain.schema import SchemaDescriptor


class LanguageModelProvider(Protocol):
    """Outbound boundary to the generative-language-model backend."""

    async def generate(
        self,
        prompt: str,
        model_class: ModelClass,
        output_schema: SchemaDescriptor | None = None,
        json_output: bool = True,
    ) -> ProviderCompletion:
        ...

    async def open_chat_stream(
        self,
        history: list[ChatEntry],
        system_instruction: str,
        model_class: ModelClass,
    ) -> AsyncIterator[StreamFrame]:
        """Open one upstream stream; connection errors surface here, not on iteration."""
        ...


class AccountRepository(Protocol):
    async def get(self, user_id: str) -> AccountSubscriptionState | None:
        ...

    async def update_subscription(
        self,
        user_id: str,
        tier: SubscriptionTier,
        status: SubscriptionStatus,
    ) -> AccountSubscriptionState:
        ...

    async def add_credit(self, credit: CreditRecord) -> None:
        ...


class SettlementLedger(Protocol):
    """Dedupe table of settled purchase references.

    ``claim`` is an atomic create-if-absent: exactly one concurrent caller per
    reference gets ``True``.
    """

    async def claim(self, reference: str, user_id: str | None, purchase_type: str) -> bool:
        ...

    async def release(self, reference: str) -> None:
        ...

    async def is_settled(self, reference: str) -> bool:
        ...


class AuditLog(Protocol):
    async def append(self, record: AuditRecord) -> None:
        ...

    async def list_by_reference(self, reference: str) -> list[AuditRecord]:
        ...
