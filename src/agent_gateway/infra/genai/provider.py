from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from google import genai
from google.genai import types

from agent_gateway.application.ports import LanguageModelProvider
from agent_gateway.domain.models import (
    ChatEntry,
    Citation,
    ModelClass,
    ProviderCompletion,
    StreamFrame,
)
from agent_gateway.domain.schema import SchemaDescriptor
from agent_gateway.infra.genai.schema_mapper import to_genai_schema

logger = logging.getLogger(__name__)


class GenAiProvider(LanguageModelProvider):
    """Gemini adapter over the async ``google-genai`` client.

    Grounded calls enable the Google Search tool and cannot be combined with a
    JSON response schema, so grounded stages always return free text.
    """

    def __init__(
        self,
        models: Mapping[ModelClass, str],
        api_key: str | None = None,
        client: Any | None = None,
    ) -> None:
        missing = [model_class.value for model_class in ModelClass if model_class not in models]
        if missing:
            msg = f"model_not_configured:{','.join(missing)}"
            raise ValueError(msg)
        self.models = dict(models)
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def generate(
        self,
        prompt: str,
        model_class: ModelClass,
        output_schema: SchemaDescriptor | None = None,
        json_output: bool = True,
    ) -> ProviderCompletion:
        config = self._build_config(model_class, output_schema, json_output)
        response = await self.client.aio.models.generate_content(
            model=self.models[model_class],
            contents=prompt,
            config=config,
        )
        completion = ProviderCompletion(
            text=response_text(response),
            citations=extract_citations(response),
        )
        logger.debug(
            "provider_generate_completed",
            extra={
                "model": self.models[model_class],
                "model_class": model_class.value,
                "output_chars": len(completion.text),
                "citation_count": len(completion.citations),
            },
        )
        return completion

    async def open_chat_stream(
        self,
        history: list[ChatEntry],
        system_instruction: str,
        model_class: ModelClass,
    ) -> AsyncIterator[StreamFrame]:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            tools=_search_tools() if model_class is ModelClass.GROUNDED else None,
        )
        upstream = await self.client.aio.models.generate_content_stream(
            model=self.models[model_class],
            contents=to_contents(history),
            config=config,
        )
        return _frames(upstream)

    def _build_config(
        self,
        model_class: ModelClass,
        output_schema: SchemaDescriptor | None,
        json_output: bool,
    ) -> types.GenerateContentConfig:
        if model_class is ModelClass.GROUNDED:
            return types.GenerateContentConfig(tools=_search_tools())
        if not json_output:
            return types.GenerateContentConfig()
        return types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=to_genai_schema(output_schema) if output_schema is not None else None,
        )


def _search_tools() -> list[types.Tool]:
    return [types.Tool(google_search=types.GoogleSearch())]


def to_contents(history: list[ChatEntry]) -> list[types.Content]:
    return [
        types.Content(role=entry.role.value, parts=[types.Part(text=entry.text)])
        for entry in history
    ]


def response_text(response: Any) -> str:
    # ``response.text`` raises or is None when the candidate has no text parts.
    try:
        text = response.text
    except (AttributeError, ValueError):
        text = None
    return text or ""


def extract_citations(response: Any) -> list[Citation]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    citations: list[Citation] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = getattr(web, "uri", None)
        if uri:
            citations.append(Citation(uri=uri, title=getattr(web, "title", None) or ""))
    return citations


async def _frames(upstream: Any) -> AsyncIterator[StreamFrame]:
    try:
        async for chunk in upstream:
            yield StreamFrame(text_delta=response_text(chunk), citations=extract_citations(chunk))
    finally:
        aclose = getattr(upstream, "aclose", None)
        if aclose is not None:
            await aclose()
