"""Verification and idempotent settlement of payment-provider webhooks.

The verifier authenticates the exact request bytes before anything else is
parsed. Every business outcome (settled, ignored, rejected, duplicate) is
audited; only authentication and body-parsing failures surface as errors.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from agent_gateway.application.ports import AccountRepository, AuditLog, SettlementLedger
from agent_gateway.domain.exceptions import SignatureInvalidError, UnreadableWebhookError
from agent_gateway.domain.models import (
    AccountSubscriptionState,
    AuditRecord,
    CreditRecord,
    PriceEntry,
    PurchaseKind,
    PurchaseReference,
    SettlementOutcome,
    SettlementPayload,
    SettlementStatus,
    SubscriptionStatus,
    SubscriptionTier,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

ANONYMOUS_USER_ID = "GUEST"

DEFAULT_PRICES: dict[str, dict[str, Any]] = {
    "pro": {
        "kind": "subscription",
        "prices": {"NGN": "44700", "USD": "29.80"},
    },
    "agency": {
        "kind": "subscription",
        "prices": {"NGN": "298350", "USD": "198.90"},
    },
    "project": {
        "kind": "credit",
        "prices": {"NGN": "14700", "USD": "9.80"},
        "tier_prices": {"agency": {"NGN": "11000", "USD": "7.30"}},
        "anonymous_eligible": True,
    },
}


def build_price_table(raw: Mapping[str, Mapping[str, Any]]) -> dict[str, PriceEntry]:
    table: dict[str, PriceEntry] = {}
    for purchase_type, item in raw.items():
        kind = PurchaseKind(item.get("kind", PurchaseKind.SUBSCRIPTION))
        tiers = {tier.value for tier in SubscriptionTier}
        if kind is PurchaseKind.SUBSCRIPTION and purchase_type not in tiers:
            msg = f"unknown_subscription_tier:{purchase_type}"
            raise ValueError(msg)
        prices = _currency_prices(item.get("prices"))
        if not prices:
            msg = f"price_entry_without_prices:{purchase_type}"
            raise ValueError(msg)
        tier_prices: dict[str, dict[str, Decimal]] = {}
        for tier, overrides in (item.get("tier_prices") or item.get("tierPrices") or {}).items():
            if tier not in tiers:
                msg = f"unknown_price_tier:{purchase_type}:{tier}"
                raise ValueError(msg)
            tier_prices[tier] = _currency_prices(overrides)
        table[purchase_type] = PriceEntry(
            purchase_type=purchase_type,
            kind=kind,
            prices=prices,
            anonymous_eligible=bool(
                item.get("anonymous_eligible", item.get("anonymousEligible", False))
            ),
            tier_prices=tier_prices,
        )
    return table


def _currency_prices(raw: Mapping[str, Any] | None) -> dict[str, Decimal]:
    return {
        str(currency).upper(): Decimal(str(amount)) for currency, amount in (raw or {}).items()
    }


DEFAULT_PRICE_TABLE = build_price_table(DEFAULT_PRICES)


@dataclass(slots=True)
class SettlementPolicy:
    secret: str
    price_table: dict[str, PriceEntry] = field(default_factory=lambda: dict(DEFAULT_PRICE_TABLE))
    accepted_event_prefixes: tuple[str, ...] = ("payin_",)
    reference_prefix: str = "METI"


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, raw_body: bytes, signature_header: str | None) -> bool:
    if not secret or not signature_header:
        return False
    expected = compute_signature(secret, raw_body).encode("ascii")
    supplied = signature_header.strip().lower().encode("utf-8")
    return hmac.compare_digest(expected, supplied)


def parse_purchase_reference(reference: str, prefix: str) -> PurchaseReference | None:
    """Decode ``PREFIX_<userId>_<purchaseType>_<timestamp>``; ``None`` when foreign."""
    parts = reference.split("_")
    if len(parts) < 4 or parts[0] != prefix:
        return None
    return PurchaseReference(
        prefix=parts[0],
        user_id=parts[1],
        purchase_type=parts[2],
        timestamp="_".join(parts[3:]),
    )


def extract_settlement_payload(body: Mapping[str, Any]) -> SettlementPayload:
    data = body.get("data")
    data = data if isinstance(data, dict) else {}
    metadata = data.get("metadata")
    metadata = metadata if isinstance(metadata, dict) else {}

    reference = _first_present(
        body.get("reference"), data.get("reference"), metadata.get("custom_ref")
    )
    amount = _first_present(data.get("actual_amount_paid"), data.get("amount"), body.get("amount"))
    currency = _first_present(
        data.get("pay_currency"),
        data.get("currency"),
        metadata.get("currency"),
        body.get("currency"),
    )
    event_kind = body.get("event")
    return SettlementPayload(
        event_kind=event_kind if isinstance(event_kind, str) else "",
        reference=str(reference) if reference is not None else None,
        amount=_to_decimal(amount),
        currency=str(currency).upper() if currency is not None else None,
    )


class WebhookSettlementVerifier:
    def __init__(
        self,
        policy: SettlementPolicy,
        accounts: AccountRepository,
        ledger: SettlementLedger,
        audit_log: AuditLog,
    ) -> None:
        self.policy = policy
        self.accounts = accounts
        self.ledger = ledger
        self.audit_log = audit_log

    async def verify_and_settle(
        self,
        raw_body: bytes,
        signature_header: str | None,
    ) -> SettlementOutcome:
        if not verify_signature(self.policy.secret, raw_body, signature_header):
            reason = "signature_missing" if not signature_header else "signature_invalid"
            if not self.policy.secret:
                reason = "secret_not_configured"
            logger.warning(
                "settlement_signature_invalid",
                extra={"reason": reason, "body_bytes": len(raw_body)},
            )
            await self.audit_log.append(
                AuditRecord(
                    event_type="signature_invalid",
                    reference=None,
                    status=SettlementStatus.REJECTED.value,
                    reason=reason,
                )
            )
            raise SignatureInvalidError(reason)

        try:
            body = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            msg = "unreadable_webhook_body"
            raise UnreadableWebhookError(msg) from exc
        if not isinstance(body, dict):
            msg = "webhook_body_not_object"
            raise UnreadableWebhookError(msg)

        event = WebhookEvent(
            raw_body=raw_body,
            signature_header=signature_header or "",
            parsed_payload=extract_settlement_payload(body),
        )
        return await self.settle(event)

    async def settle(self, event: WebhookEvent) -> SettlementOutcome:
        """Apply an already-authenticated event; at most one mutation per reference."""
        payload = event.parsed_payload

        if not payload.event_kind.startswith(self.policy.accepted_event_prefixes):
            return await self._finish(payload, SettlementStatus.IGNORED, "unsupported_event")
        if not payload.reference:
            return await self._finish(payload, SettlementStatus.IGNORED, "missing_reference")

        reference = parse_purchase_reference(payload.reference, self.policy.reference_prefix)
        if reference is None:
            return await self._finish(payload, SettlementStatus.IGNORED, "foreign_reference")

        entry = self.policy.price_table.get(reference.purchase_type)
        if entry is None:
            return await self._finish(
                payload, SettlementStatus.IGNORED, "unknown_purchase_type", reference
            )

        anonymous = reference.user_id in ("", ANONYMOUS_USER_ID)
        account = None if anonymous else await self.accounts.get(reference.user_id)
        price = (
            entry.price_for(payload.currency, _discount_tier(account)) if payload.currency else None
        )
        if price is None:
            return await self._reject_fraud(payload, "currency_mismatch", reference)
        if payload.amount is None or payload.amount < price:
            return await self._reject_fraud(payload, "amount_below_price", reference)

        if anonymous and not entry.anonymous_eligible:
            return await self._finish(
                payload, SettlementStatus.REJECTED, "account_required", reference
            )
        if not anonymous and account is None:
            return await self._finish(
                payload, SettlementStatus.REJECTED, "unknown_account", reference
            )

        user_id = None if anonymous else reference.user_id
        claimed = await self.ledger.claim(payload.reference, user_id, reference.purchase_type)
        if not claimed:
            return await self._finish(
                payload, SettlementStatus.DUPLICATE, "already_settled", reference
            )

        try:
            reason = await self._apply(entry, reference, payload, user_id)
        except Exception:
            logger.exception(
                "settlement_mutation_failed",
                extra={"reference": payload.reference, "purchase_type": reference.purchase_type},
            )
            await self.ledger.release(payload.reference)
            raise

        return await self._finish(payload, SettlementStatus.SETTLED, reason, reference)

    async def _apply(
        self,
        entry: PriceEntry,
        reference: PurchaseReference,
        payload: SettlementPayload,
        user_id: str | None,
    ) -> str:
        if entry.kind is PurchaseKind.SUBSCRIPTION:
            await self.accounts.update_subscription(
                reference.user_id,
                SubscriptionTier(reference.purchase_type),
                SubscriptionStatus.ACTIVE,
            )
            return "subscription_activated"

        await self.accounts.add_credit(
            CreditRecord(
                reference=payload.reference or reference.token,
                user_id=user_id,
                purchase_type=reference.purchase_type,
                amount=payload.amount or Decimal(0),
                currency=payload.currency or "",
            )
        )
        return "credit_recorded"

    async def _reject_fraud(
        self,
        payload: SettlementPayload,
        reason: str,
        reference: PurchaseReference,
    ) -> SettlementOutcome:
        logger.warning(
            "settlement_suspected_fraud",
            extra={
                "reference": payload.reference,
                "reason": reason,
                "amount": str(payload.amount) if payload.amount is not None else None,
                "currency": payload.currency,
            },
        )
        return await self._finish(payload, SettlementStatus.REJECTED, reason, reference)

    async def _finish(
        self,
        payload: SettlementPayload,
        status: SettlementStatus,
        reason: str,
        reference: PurchaseReference | None = None,
    ) -> SettlementOutcome:
        details = {
            "event": payload.event_kind,
            "amount": str(payload.amount) if payload.amount is not None else None,
            "currency": payload.currency,
            "user_id": reference.user_id if reference else None,
            "purchase_type": reference.purchase_type if reference else None,
        }
        await self.audit_log.append(
            AuditRecord(
                event_type="settlement",
                reference=payload.reference,
                status=status.value,
                reason=reason,
                payload=details,
            )
        )
        logger.info(
            "settlement_outcome",
            extra={
                "reference": payload.reference,
                "status": status.value,
                "reason": reason,
                **{key: value for key, value in details.items() if key != "event"},
                "event_kind": payload.event_kind,
            },
        )
        return SettlementOutcome(status=status, reason=reason, reference=payload.reference)


def _discount_tier(account: AccountSubscriptionState | None) -> str | None:
    if account is None or account.status is not SubscriptionStatus.ACTIVE:
        return None
    return account.tier.value


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None
