from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from agent_gateway.domain.schema import SchemaDescriptor


def utc_now() -> datetime:
    return datetime.now(UTC)


class ModelClass(StrEnum):
    FAST = "fast"
    DEEP = "deep"
    GROUNDED = "grounded"


class OutputFormat(StrEnum):
    JSON = "json"
    TEXT = "text"


PromptBuilder = Callable[[dict[str, Any], str | None], str]


@dataclass(frozen=True, slots=True)
class AgentStage:
    prompt_builder: PromptBuilder
    model_class: ModelClass = ModelClass.FAST
    output_schema: SchemaDescriptor | None = None
    output_format: OutputFormat = OutputFormat.JSON


@dataclass(frozen=True, slots=True)
class AgentDescriptor:
    agent_id: str
    stages: tuple[AgentStage, ...]
    description: str = ""

    def __post_init__(self) -> None:
        if not self.stages:
            msg = f"agent_without_stages:{self.agent_id}"
            raise ValueError(msg)

    @classmethod
    def single(
        cls,
        agent_id: str,
        prompt_builder: PromptBuilder,
        output_schema: SchemaDescriptor | None = None,
        model_class: ModelClass = ModelClass.FAST,
        output_format: OutputFormat = OutputFormat.JSON,
        description: str = "",
    ) -> AgentDescriptor:
        return cls(
            agent_id=agent_id,
            stages=(
                AgentStage(
                    prompt_builder=prompt_builder,
                    model_class=model_class,
                    output_schema=output_schema,
                    output_format=output_format,
                ),
            ),
            description=description,
        )

    @property
    def prompt_builder(self) -> PromptBuilder:
        return self.stages[0].prompt_builder

    @property
    def model_class(self) -> ModelClass:
        return self.stages[0].model_class

    @property
    def output_schema(self) -> SchemaDescriptor | None:
        return self.stages[-1].output_schema


@dataclass(slots=True)
class CallerIdentity:
    user_id: str
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class GenerationRequest:
    agent_id: str
    payload: dict[str, Any]
    caller: CallerIdentity


@dataclass(frozen=True, slots=True)
class Citation:
    uri: str
    title: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"uri": self.uri, "title": self.title}


@dataclass(slots=True)
class ProviderCompletion:
    text: str
    citations: list[Citation] = field(default_factory=list)


@dataclass(slots=True)
class DecodedResult:
    agent_id: str
    value: Any
    citations: list[Citation] = field(default_factory=list)


class ChatRole(StrEnum):
    USER = "user"
    MODEL = "model"


@dataclass(slots=True)
class ChatEntry:
    role: ChatRole
    text: str


@dataclass(slots=True)
class ChatTurnState:
    entries: list[ChatEntry]

    @property
    def latest_utterance(self) -> str:
        return self.entries[-1].text if self.entries else ""


@dataclass(slots=True)
class ChatContext:
    product_name: str
    persona: str
    role: str = "prospect"


@dataclass(slots=True)
class StreamFrame:
    text_delta: str
    citations: list[Citation] = field(default_factory=list)


@dataclass(slots=True)
class ReassembledTurn:
    text: str = ""
    citations: list[Citation] = field(default_factory=list)
    completed: bool = False
    error: str | None = None

    @property
    def terminated(self) -> bool:
        return self.completed or self.error is not None


@dataclass(slots=True)
class SettlementPayload:
    event_kind: str
    reference: str | None
    amount: Decimal | None
    currency: str | None


@dataclass(slots=True)
class WebhookEvent:
    raw_body: bytes
    signature_header: str
    parsed_payload: SettlementPayload


@dataclass(frozen=True, slots=True)
class PurchaseReference:
    prefix: str
    user_id: str
    purchase_type: str
    timestamp: str

    @property
    def token(self) -> str:
        return f"{self.prefix}_{self.user_id}_{self.purchase_type}_{self.timestamp}"


class PurchaseKind(StrEnum):
    SUBSCRIPTION = "subscription"
    CREDIT = "credit"


@dataclass(frozen=True, slots=True)
class PriceEntry:
    purchase_type: str
    kind: PurchaseKind
    prices: dict[str, Decimal]
    anonymous_eligible: bool = False
    # Per-tier overrides keyed by subscription tier, then currency.
    tier_prices: dict[str, dict[str, Decimal]] = field(default_factory=dict)

    def price_for(self, currency: str, tier: str | None = None) -> Decimal | None:
        overrides = self.tier_prices.get(tier or "", {})
        return overrides.get(currency.upper(), self.prices.get(currency.upper()))


class SubscriptionTier(StrEnum):
    HOBBY = "hobby"
    PRO = "pro"
    AGENCY = "agency"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    TRIALING = "trialing"
    EXPIRED = "expired"


@dataclass(slots=True)
class AccountSubscriptionState:
    user_id: str
    tier: SubscriptionTier = SubscriptionTier.HOBBY
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class CreditRecord:
    reference: str
    user_id: str | None
    purchase_type: str
    amount: Decimal
    currency: str
    created_at: datetime = field(default_factory=utc_now)


class SettlementStatus(StrEnum):
    SETTLED = "settled"
    IGNORED = "ignored"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class SettlementOutcome:
    status: SettlementStatus
    reason: str
    reference: str | None = None


@dataclass(slots=True)
class AuditRecord:
    event_type: str
    reference: str | None
    status: str
    reason: str
    payload: dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=utc_now)
