from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from agent_gateway.application.ports import LanguageModelProvider
from agent_gateway.application.services.backoff import is_fatal_error, with_backoff
from agent_gateway.application.services.decoder import decode
from agent_gateway.domain.exceptions import (
    MalformedOutputError,
    ProviderUnavailableError,
    UnknownAgentError,
)
from agent_gateway.domain.models import (
    AgentDescriptor,
    AgentStage,
    CallerIdentity,
    Citation,
    DecodedResult,
    GenerationRequest,
    OutputFormat,
    ProviderCompletion,
)

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Dispatch point for single-shot generation requests.

    Stages of a descriptor run in order; every stage after the first receives
    the previous stage's raw text verbatim, and only the final stage is decoded.
    """

    def __init__(
        self,
        provider: LanguageModelProvider,
        descriptors: Iterable[AgentDescriptor],
        max_attempts: int = 3,
        base_delay: float = 1.0,
        jitter: bool = True,
    ) -> None:
        self.provider = provider
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.jitter = jitter
        self._descriptors: dict[str, AgentDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.agent_id in self._descriptors:
                msg = f"duplicate_agent_id:{descriptor.agent_id}"
                raise ValueError(msg)
            self._descriptors[descriptor.agent_id] = descriptor

    def agent_ids(self) -> list[str]:
        return sorted(self._descriptors)

    def get(self, agent_id: str) -> AgentDescriptor:
        descriptor = self._descriptors.get(agent_id)
        if descriptor is None:
            raise UnknownAgentError(agent_id)
        return descriptor

    def describe(self) -> list[dict[str, Any]]:
        summaries = []
        for agent_id in self.agent_ids():
            descriptor = self._descriptors[agent_id]
            summaries.append(
                {
                    "agentId": descriptor.agent_id,
                    "description": descriptor.description,
                    "stages": len(descriptor.stages),
                    "modelClass": descriptor.model_class.value,
                }
            )
        return summaries

    async def execute(
        self,
        agent_id: str,
        payload: dict[str, Any],
        caller: CallerIdentity,
    ) -> DecodedResult:
        return await self.run(GenerationRequest(agent_id=agent_id, payload=payload, caller=caller))

    async def run(self, request: GenerationRequest) -> DecodedResult:
        descriptor = self.get(request.agent_id)
        log_context = {"agent_id": descriptor.agent_id, "user_id": request.caller.user_id}
        logger.info(
            "agent_execute_started",
            extra={**log_context, "stage_count": len(descriptor.stages)},
        )

        citations: list[Citation] = []
        previous_output: str | None = None
        completion: ProviderCompletion | None = None
        for index, stage in enumerate(descriptor.stages, start=1):
            prompt = stage.prompt_builder(request.payload, previous_output)
            completion = await self._call_stage(descriptor, index, stage, prompt)
            _merge_citations(citations, completion.citations)
            previous_output = completion.text
            logger.info(
                "agent_stage_completed",
                extra={
                    **log_context,
                    "stage": index,
                    "model_class": stage.model_class.value,
                    "output_chars": len(completion.text),
                    "citation_count": len(completion.citations),
                },
            )

        final_stage = descriptor.stages[-1]
        raw_text = completion.text if completion is not None else ""
        if final_stage.output_format is OutputFormat.TEXT:
            value: Any = raw_text.strip()
        else:
            try:
                value = decode(raw_text, final_stage.output_schema)
            except MalformedOutputError as exc:
                logger.warning(
                    "agent_execute_failed",
                    extra={**log_context, "reason": str(exc), "error_type": type(exc).__name__},
                )
                raise

        return DecodedResult(agent_id=descriptor.agent_id, value=value, citations=citations)

    async def _call_stage(
        self,
        descriptor: AgentDescriptor,
        index: int,
        stage: AgentStage,
        prompt: str,
    ) -> ProviderCompletion:
        async def _op() -> ProviderCompletion:
            return await self.provider.generate(
                prompt,
                stage.model_class,
                output_schema=stage.output_schema,
                json_output=stage.output_format is OutputFormat.JSON,
            )

        try:
            return await with_backoff(
                _op,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                jitter=self.jitter,
                operation=f"agent:{descriptor.agent_id}:stage{index}",
            )
        except Exception as exc:
            retryable = not is_fatal_error(exc)
            logger.warning(
                "agent_execute_failed",
                extra={
                    "agent_id": descriptor.agent_id,
                    "stage": index,
                    "retryable": retryable,
                    "error_type": type(exc).__name__,
                },
            )
            reason = "provider_unavailable" if retryable else "provider_rejected_request"
            raise ProviderUnavailableError(reason, retryable=retryable) from exc


def _merge_citations(accumulated: list[Citation], incoming: list[Citation]) -> None:
    seen = {citation.uri for citation in accumulated}
    for citation in incoming:
        if citation.uri not in seen:
            seen.add(citation.uri)
            accumulated.append(citation)
