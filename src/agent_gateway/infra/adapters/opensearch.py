from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from opensearchpy.exceptions import ConflictError

from agent_gateway.application.ports import AccountRepository, AuditLog, SettlementLedger
from agent_gateway.domain.models import (
    AccountSubscriptionState,
    AuditRecord,
    CreditRecord,
    SubscriptionStatus,
    SubscriptionTier,
)
from agent_gateway.infra.adapters.opensearch_schemas import (
    ALL_INDEXES,
    AUDIT_RETENTION_POLICY,
    DEFAULT_AUDIT_RETENTION_DAYS,
    INDEX_ACCOUNTS,
    INDEX_AUDIT,
    INDEX_CREDITS,
    INDEX_SETTLEMENTS,
    build_audit_retention_policy,
    build_index_definition,
    resolve_index_name,
    validate_document_schema,
)


class OpenSearchIndexManager:
    def __init__(
        self,
        client: Any,
        index_prefix: str = "",
        audit_retention_days: int = DEFAULT_AUDIT_RETENTION_DAYS,
    ) -> None:
        self.client = client
        self.index_prefix = index_prefix
        self.audit_retention_days = audit_retention_days

    def ensure_indices_and_policies(self) -> None:
        # The audit index settings reference the retention policy by name.
        try:
            self.client.transport.perform_request(
                "PUT",
                f"/_plugins/_ism/policies/{AUDIT_RETENTION_POLICY}",
                body=build_audit_retention_policy(self.audit_retention_days),
            )
        except Exception as exc:
            if not _already_exists(exc):
                raise

        for base_index in ALL_INDEXES:
            resolved = resolve_index_name(base_index, self.index_prefix)
            if self.client.indices.exists(index=resolved):
                continue
            try:
                self.client.indices.create(index=resolved, body=build_index_definition(base_index))
            except Exception as exc:
                # Another replica created it between exists() and create().
                if not _already_exists(exc):
                    raise


class OpenSearchAccountRepository(AccountRepository):
    def __init__(self, client: Any, index_prefix: str = "") -> None:
        self.client = client
        self.index_name = resolve_index_name(INDEX_ACCOUNTS, index_prefix)
        self.credits_index = resolve_index_name(INDEX_CREDITS, index_prefix)

    async def get(self, user_id: str) -> AccountSubscriptionState | None:
        result = self.client.get(index=self.index_name, id=user_id, ignore=[404])
        if not isinstance(result, dict) or not result.get("found", False):
            return None
        source = result.get("_source")
        if not isinstance(source, dict):
            return None
        return AccountSubscriptionState(
            user_id=source.get("user_id", user_id),
            tier=SubscriptionTier(source.get("tier", SubscriptionTier.HOBBY)),
            status=SubscriptionStatus(source.get("status", SubscriptionStatus.ACTIVE)),
            updated_at=_parse_iso_datetime(source.get("updated_at")),
        )

    async def save(self, account: AccountSubscriptionState) -> None:
        document = {
            "user_id": account.user_id,
            "tier": account.tier.value,
            "status": account.status.value,
            "updated_at": account.updated_at.isoformat(),
        }
        validate_document_schema(INDEX_ACCOUNTS, document)
        self.client.index(
            index=self.index_name, id=account.user_id, body=document, refresh="wait_for"
        )

    async def update_subscription(
        self,
        user_id: str,
        tier: SubscriptionTier,
        status: SubscriptionStatus,
    ) -> AccountSubscriptionState:
        account = AccountSubscriptionState(
            user_id=user_id,
            tier=tier,
            status=status,
            updated_at=datetime.now(UTC),
        )
        await self.save(account)
        return account

    async def add_credit(self, credit: CreditRecord) -> None:
        document = {
            "reference": credit.reference,
            "user_id": credit.user_id,
            "purchase_type": credit.purchase_type,
            "amount": str(credit.amount),
            "currency": credit.currency,
            "created_at": credit.created_at.isoformat(),
        }
        validate_document_schema(INDEX_CREDITS, document)
        self.client.index(
            index=self.credits_index, id=credit.reference, body=document, refresh="wait_for"
        )

    async def list_credits(self, user_id: str) -> list[CreditRecord]:
        query = {
            "query": {"term": {"user_id": user_id}},
            "sort": [{"created_at": {"order": "asc"}}],
            "size": 1000,
        }
        output: list[CreditRecord] = []
        for source in _hit_sources(self.client.search(index=self.credits_index, body=query)):
            output.append(
                CreditRecord(
                    reference=source.get("reference", ""),
                    user_id=source.get("user_id"),
                    purchase_type=source.get("purchase_type", ""),
                    amount=Decimal(source.get("amount", "0")),
                    currency=source.get("currency", ""),
                    created_at=_parse_iso_datetime(source.get("created_at")),
                )
            )
        return output


class OpenSearchSettlementLedger(SettlementLedger):
    """Claims are documents keyed by reference; ``op_type=create`` makes the claim atomic."""

    def __init__(self, client: Any, index_prefix: str = "") -> None:
        self.client = client
        self.index_name = resolve_index_name(INDEX_SETTLEMENTS, index_prefix)

    async def claim(self, reference: str, user_id: str | None, purchase_type: str) -> bool:
        document = {
            "reference": reference,
            "user_id": user_id,
            "purchase_type": purchase_type,
            "claimed_at": _utc_now_iso(),
        }
        validate_document_schema(INDEX_SETTLEMENTS, document)
        try:
            self.client.index(
                index=self.index_name,
                id=reference,
                body=document,
                op_type="create",
                refresh="wait_for",
            )
        except ConflictError:
            return False
        return True

    async def release(self, reference: str) -> None:
        self.client.delete(index=self.index_name, id=reference, ignore=[404], refresh="wait_for")

    async def is_settled(self, reference: str) -> bool:
        return bool(self.client.exists(index=self.index_name, id=reference))


class OpenSearchAuditLog(AuditLog):
    def __init__(self, client: Any, index_prefix: str = "") -> None:
        self.client = client
        self.index_name = resolve_index_name(INDEX_AUDIT, index_prefix)

    async def append(self, record: AuditRecord) -> None:
        document = {
            "event_type": record.event_type,
            "reference": record.reference,
            "status": record.status,
            "reason": record.reason,
            "payload": record.payload,
            "ts": record.ts.isoformat(),
        }
        validate_document_schema(INDEX_AUDIT, document)
        self.client.index(
            index=self.index_name,
            id=f"audit_{uuid4().hex}",
            body=document,
            refresh="wait_for",
        )

    async def list_by_reference(self, reference: str) -> list[AuditRecord]:
        query = {
            "query": {"term": {"reference": reference}},
            "sort": [{"ts": {"order": "asc"}}],
            "size": 1000,
        }
        return [
            AuditRecord(
                event_type=source.get("event_type", "unknown"),
                reference=source.get("reference"),
                status=source.get("status", ""),
                reason=source.get("reason", ""),
                payload=source.get("payload", {}),
                ts=_parse_iso_datetime(source.get("ts")),
            )
            for source in _hit_sources(self.client.search(index=self.index_name, body=query))
        ]


def _already_exists(exc: Exception) -> bool:
    status = getattr(exc, "status_code", None)
    error = str(getattr(exc, "error", ""))
    return status == 409 or (status == 400 and "already_exists" in error)


def _hit_sources(result: Any) -> list[dict[str, Any]]:
    hits = result.get("hits", {}).get("hits", []) if isinstance(result, dict) else []
    sources: list[dict[str, Any]] = []
    for hit in hits:
        source = hit.get("_source") if isinstance(hit, dict) else None
        if isinstance(source, dict):
            sources.append(source)
    return sources


def _parse_iso_datetime(value: Any) -> datetime:
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return datetime.now(UTC)


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()
