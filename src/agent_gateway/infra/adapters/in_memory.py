from __future__ import annotations

import asyncio
from dataclasses import replace

from agent_gateway.application.ports import AccountRepository, AuditLog, SettlementLedger
from agent_gateway.domain.models import (
    AccountSubscriptionState,
    AuditRecord,
    CreditRecord,
    SubscriptionStatus,
    SubscriptionTier,
    utc_now,
)


class InMemoryAccountRepository(AccountRepository):
    def __init__(self, accounts: list[AccountSubscriptionState] | None = None) -> None:
        self._accounts: dict[str, AccountSubscriptionState] = {
            account.user_id: account for account in accounts or []
        }
        self.credits: list[CreditRecord] = []

    async def get(self, user_id: str) -> AccountSubscriptionState | None:
        account = self._accounts.get(user_id)
        return replace(account) if account is not None else None

    async def save(self, account: AccountSubscriptionState) -> None:
        self._accounts[account.user_id] = replace(account)

    async def update_subscription(
        self,
        user_id: str,
        tier: SubscriptionTier,
        status: SubscriptionStatus,
    ) -> AccountSubscriptionState:
        account = self._accounts.get(user_id) or AccountSubscriptionState(user_id=user_id)
        updated = replace(account, tier=tier, status=status, updated_at=utc_now())
        self._accounts[user_id] = updated
        return replace(updated)

    async def add_credit(self, credit: CreditRecord) -> None:
        self.credits.append(credit)


class InMemorySettlementLedger(SettlementLedger):
    def __init__(self) -> None:
        self._claims: dict[str, dict[str, str | None]] = {}
        self._lock = asyncio.Lock()

    async def claim(self, reference: str, user_id: str | None, purchase_type: str) -> bool:
        async with self._lock:
            if reference in self._claims:
                return False
            self._claims[reference] = {
                "user_id": user_id,
                "purchase_type": purchase_type,
                "claimed_at": utc_now().isoformat(),
            }
            return True

    async def release(self, reference: str) -> None:
        async with self._lock:
            self._claims.pop(reference, None)

    async def is_settled(self, reference: str) -> bool:
        return reference in self._claims


class InMemoryAuditLog(AuditLog):
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def append(self, record: AuditRecord) -> None:
        self.records.append(record)

    async def list_by_reference(self, reference: str) -> list[AuditRecord]:
        return [record for record in self.records if record.reference == reference]
