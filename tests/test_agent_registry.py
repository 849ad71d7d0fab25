from __future__ import annotations

from typing import Any

import pytest

from agent_gateway.application.services.agent_registry import AgentRegistry
from agent_gateway.domain.exceptions import (
    InvalidPayloadError,
    MalformedOutputError,
    OutputShapeError,
    ProviderUnavailableError,
    UnknownAgentError,
)
from agent_gateway.domain.models import (
    AgentDescriptor,
    AgentStage,
    CallerIdentity,
    Citation,
    ModelClass,
    OutputFormat,
    ProviderCompletion,
)
from agent_gateway.domain.schema import array_of, obj, string
from agent_gateway.prompts import AGENT_CATALOG

CALLER = CallerIdentity(user_id="u1")


class _StatusError(Exception):
    def __init__(self, code: int) -> None:
        super().__init__(f"status {code}")
        self.code = code


class _FakeProvider:
    def __init__(self, responses: list[ProviderCompletion | Exception]) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        prompt: str,
        model_class: ModelClass,
        output_schema: Any = None,
        json_output: bool = True,
    ) -> ProviderCompletion:
        self.calls.append(
            {
                "prompt": prompt,
                "model_class": model_class,
                "output_schema": output_schema,
                "json_output": json_output,
            }
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def open_chat_stream(self, *_: Any) -> Any:
        raise NotImplementedError


def _echo_prompt(payload: dict[str, Any], previous_output: str | None = None) -> str:
    return f"topic={payload.get('topic')} previous={previous_output}"


def _registry(provider: _FakeProvider, *descriptors: AgentDescriptor) -> AgentRegistry:
    return AgentRegistry(provider, descriptors, max_attempts=3, base_delay=0.0, jitter=False)


@pytest.mark.asyncio
async def test_execute_decodes_single_stage_output_against_schema() -> None:
    shape = array_of(obj({"name": string()}))
    provider = _FakeProvider([ProviderCompletion(text='```json\n[{"name": "Gyms"}]\n```')])
    registry = _registry(provider, AgentDescriptor.single("niche", _echo_prompt, shape))

    result = await registry.execute("niche", {"topic": "fitness"}, CALLER)

    assert result.agent_id == "niche"
    assert result.value == [{"name": "Gyms"}]
    assert provider.calls[0]["output_schema"] is shape
    assert provider.calls[0]["model_class"] is ModelClass.FAST


@pytest.mark.asyncio
async def test_execute_unknown_agent_raises_without_calling_provider() -> None:
    provider = _FakeProvider([])
    registry = _registry(provider, AgentDescriptor.single("niche", _echo_prompt))

    with pytest.raises(UnknownAgentError, match="unknown_agent:ghost"):
        await registry.execute("ghost", {}, CALLER)

    assert provider.calls == []


@pytest.mark.asyncio
async def test_two_stage_agent_embeds_previous_output_verbatim_and_decodes_last_stage() -> None:
    research = 'Notes: "Cafe Uno" at 1 Main St {not json}\n  trailing spaces  '
    provider = _FakeProvider(
        [
            ProviderCompletion(
                text=research,
                citations=[Citation(uri="https://a.example", title="A")],
            ),
            ProviderCompletion(text='{"businesses": [{"name": "Cafe Uno"}]}'),
        ]
    )
    descriptor = AgentDescriptor(
        agent_id="scout",
        stages=(
            AgentStage(
                prompt_builder=_echo_prompt,
                model_class=ModelClass.GROUNDED,
                output_format=OutputFormat.TEXT,
            ),
            AgentStage(
                prompt_builder=_echo_prompt,
                output_schema=obj({"businesses": array_of(obj({"name": string()}))}),
            ),
        ),
    )
    registry = _registry(provider, descriptor)

    result = await registry.execute("scout", {"topic": "cafes"}, CALLER)

    assert provider.calls[0]["prompt"] == "topic=cafes previous=None"
    assert provider.calls[1]["prompt"] == f"topic=cafes previous={research}"
    assert provider.calls[0]["model_class"] is ModelClass.GROUNDED
    assert provider.calls[0]["json_output"] is False
    assert result.value == {"businesses": [{"name": "Cafe Uno"}]}
    assert result.citations == [Citation(uri="https://a.example", title="A")]


@pytest.mark.asyncio
async def test_text_stage_returns_trimmed_text_without_decoding() -> None:
    provider = _FakeProvider([ProviderCompletion(text="\n# Guide\nStep one.\n")])
    registry = _registry(
        provider,
        AgentDescriptor.single("draft", _echo_prompt, output_format=OutputFormat.TEXT),
    )

    result = await registry.execute("draft", {}, CALLER)

    assert result.value == "# Guide\nStep one."


@pytest.mark.asyncio
async def test_transient_errors_are_retried_then_reported_as_retryable() -> None:
    provider = _FakeProvider([_StatusError(503), _StatusError(503), _StatusError(429)])
    registry = _registry(provider, AgentDescriptor.single("niche", _echo_prompt))

    with pytest.raises(ProviderUnavailableError) as exc_info:
        await registry.execute("niche", {}, CALLER)

    assert exc_info.value.retryable is True
    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_fatal_provider_rejection_is_not_retried() -> None:
    provider = _FakeProvider([_StatusError(401)])
    registry = _registry(provider, AgentDescriptor.single("niche", _echo_prompt))

    with pytest.raises(ProviderUnavailableError) as exc_info:
        await registry.execute("niche", {}, CALLER)

    assert exc_info.value.retryable is False
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_transient_failure_followed_by_success_returns_value() -> None:
    provider = _FakeProvider([_StatusError(500), ProviderCompletion(text='{"ok": true}')])
    registry = _registry(provider, AgentDescriptor.single("check", _echo_prompt))

    result = await registry.execute("check", {}, CALLER)

    assert result.value == {"ok": True}


@pytest.mark.asyncio
async def test_malformed_final_output_raises_and_never_returns_partial_value() -> None:
    provider = _FakeProvider([ProviderCompletion(text="Sorry, I cannot help with that.")])
    registry = _registry(provider, AgentDescriptor.single("niche", _echo_prompt))

    with pytest.raises(MalformedOutputError):
        await registry.execute("niche", {}, CALLER)


@pytest.mark.asyncio
async def test_shape_mismatch_surfaces_as_output_shape_error() -> None:
    provider = _FakeProvider([ProviderCompletion(text='{"subject": "Hi"}')])
    shape = obj({"subject": string(), "body": string()})
    registry = _registry(provider, AgentDescriptor.single("email", _echo_prompt, shape))

    with pytest.raises(OutputShapeError) as exc_info:
        await registry.execute("email", {}, CALLER)

    assert exc_info.value.violations == ["$.body: missing required field"]


@pytest.mark.asyncio
async def test_catalog_agent_rejects_payload_missing_required_field() -> None:
    provider = _FakeProvider([])
    registry = _registry(provider, *AGENT_CATALOG)

    with pytest.raises(InvalidPayloadError, match="missing_payload_field:productName"):
        await registry.execute("niche", {}, CALLER)

    assert provider.calls == []


def test_registry_rejects_duplicate_agent_ids() -> None:
    descriptor = AgentDescriptor.single("niche", _echo_prompt)

    with pytest.raises(ValueError, match="duplicate_agent_id:niche"):
        AgentRegistry(_FakeProvider([]), [descriptor, descriptor])


def test_registry_lists_catalog_ids_sorted() -> None:
    registry = _registry(_FakeProvider([]), *AGENT_CATALOG)

    ids = registry.agent_ids()

    assert ids == sorted(ids)
    assert {"niche", "persona", "maps_scout", "seo_audit"} <= set(ids)
    assert registry.get("maps_scout").stages[0].model_class is ModelClass.GROUNDED
