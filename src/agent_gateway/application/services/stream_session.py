from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

from agent_gateway.application.ports import LanguageModelProvider
from agent_gateway.application.services.backoff import is_fatal_error, with_backoff
from agent_gateway.domain.exceptions import (
    GatewayError,
    InvalidTurnStateError,
    ProviderUnavailableError,
    StreamProtocolError,
)
from agent_gateway.domain.models import (
    ChatContext,
    ChatEntry,
    ChatRole,
    ChatTurnState,
    Citation,
    ModelClass,
    ReassembledTurn,
    StreamFrame,
)
from agent_gateway.prompts.chat_prompts import build_chat_instruction

logger = logging.getLogger(__name__)

DONE_EVENT = "data: [DONE]\n\n"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(frame: StreamFrame) -> str:
    body = {
        "text": frame.text_delta,
        "citations": [citation.to_dict() for citation in frame.citations],
    }
    return f"data: {json.dumps(body, ensure_ascii=False)}\n\n"


def encode_error(message: str) -> str:
    return f"data: {json.dumps({'error': message}, ensure_ascii=False)}\n\n"


def parse_turn_state(history: Iterable[dict[str, Any]]) -> ChatTurnState:
    entries: list[ChatEntry] = []
    for position, item in enumerate(history):
        if not isinstance(item, dict):
            msg = f"history_entry_not_object:{position}"
            raise InvalidTurnStateError(msg)
        try:
            role = ChatRole(str(item.get("role", "")))
        except ValueError as exc:
            msg = f"unknown_history_role:{position}"
            raise InvalidTurnStateError(msg) from exc
        text = item.get("text")
        entries.append(ChatEntry(role=role, text=text if isinstance(text, str) else ""))
    state = ChatTurnState(entries=entries)
    validate_turn_state(state)
    return state


def validate_turn_state(turn_state: ChatTurnState) -> None:
    if not turn_state.entries:
        msg = "empty_history"
        raise InvalidTurnStateError(msg)
    for position, entry in enumerate(turn_state.entries):
        if not isinstance(entry.role, ChatRole):
            msg = f"unknown_history_role:{position}"
            raise InvalidTurnStateError(msg)
        if not entry.text.strip():
            msg = f"empty_history_text:{position}"
            raise InvalidTurnStateError(msg)
    if turn_state.entries[-1].role is not ChatRole.USER:
        msg = "last_entry_not_user"
        raise InvalidTurnStateError(msg)


class CitationAccumulator:
    """Ordered, uri-unique set of citations surfaced so far in one turn."""

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self.citations: list[Citation] = []

    def add(self, incoming: Iterable[Citation]) -> list[Citation]:
        fresh: list[Citation] = []
        for citation in incoming:
            if not citation.uri or citation.uri in self._seen:
                continue
            self._seen.add(citation.uri)
            self.citations.append(citation)
            fresh.append(citation)
        return fresh


class StreamSession:
    def __init__(
        self,
        provider: LanguageModelProvider,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        model_class: ModelClass = ModelClass.GROUNDED,
        jitter: bool = True,
    ) -> None:
        self.provider = provider
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.model_class = model_class
        self.jitter = jitter

    async def open_stream(
        self,
        turn_state: ChatTurnState,
        context: ChatContext,
    ) -> AsyncIterator[StreamFrame]:
        """Open the upstream stream and return de-duplicated frames.

        Only opening is retried; failures after the first chunk end the turn.
        """
        validate_turn_state(turn_state)
        instruction = build_chat_instruction(context)

        async def _open() -> AsyncIterator[StreamFrame]:
            return await self.provider.open_chat_stream(
                list(turn_state.entries), instruction, self.model_class
            )

        try:
            upstream = await with_backoff(
                _open,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                jitter=self.jitter,
                operation="chat_stream_open",
            )
        except Exception as exc:
            retryable = not is_fatal_error(exc)
            logger.warning(
                "stream_open_failed",
                extra={"retryable": retryable, "error_type": type(exc).__name__},
            )
            reason = "provider_unavailable" if retryable else "provider_rejected_request"
            raise ProviderUnavailableError(reason, retryable=retryable) from exc

        logger.info(
            "stream_opened",
            extra={"history_entries": len(turn_state.entries), "role": context.role},
        )
        return self._frames(upstream)

    async def _frames(self, upstream: AsyncIterator[StreamFrame]) -> AsyncIterator[StreamFrame]:
        accumulator = CitationAccumulator()
        try:
            async for chunk in upstream:
                yield StreamFrame(
                    text_delta=chunk.text_delta,
                    citations=accumulator.add(chunk.citations),
                )
        finally:
            aclose = getattr(upstream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def serialize(self, frames: AsyncIterator[StreamFrame]) -> AsyncIterator[str]:
        """Yield SSE lines for ``frames`` followed by exactly one terminal marker."""
        frame_count = 0
        try:
            try:
                async for frame in frames:
                    frame_count += 1
                    yield encode_frame(frame)
            except Exception as exc:
                logger.warning(
                    "stream_upstream_error",
                    extra={
                        "frames_sent": frame_count,
                        "error_type": type(exc).__name__,
                        "error": str(exc)[:500],
                    },
                )
                yield encode_error(_client_message(exc))
                return
            logger.info("stream_completed", extra={"frames_sent": frame_count})
            yield DONE_EVENT
        finally:
            aclose = getattr(frames, "aclose", None)
            if aclose is not None:
                await aclose()

    async def stream_events(
        self,
        turn_state: ChatTurnState,
        context: ChatContext,
    ) -> AsyncIterator[str]:
        validate_turn_state(turn_state)
        try:
            frames = await self.open_stream(turn_state, context)
        except ProviderUnavailableError as exc:
            yield encode_error(str(exc))
            return
        events = self.serialize(frames)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()


class StreamReassembler:
    """Client-side reduction of a serialized frame sequence."""

    def __init__(self) -> None:
        self.turn = ReassembledTurn()
        self._seen: set[str] = set()

    def feed(self, event: str) -> ReassembledTurn:
        for line in event.splitlines():
            line = line.strip()
            if not line.startswith("data:"):
                continue
            self._apply(line[len("data:"):].strip())
        return self.turn

    def feed_all(self, events: Iterable[str]) -> ReassembledTurn:
        for event in events:
            self.feed(event)
        return self.turn

    def _apply(self, data: str) -> None:
        if self.turn.terminated:
            msg = "frame_after_terminal_marker"
            raise StreamProtocolError(msg)
        if data == "[DONE]":
            self.turn.completed = True
            return
        try:
            body = json.loads(data)
        except json.JSONDecodeError as exc:
            msg = "unreadable_frame"
            raise StreamProtocolError(msg) from exc
        if not isinstance(body, dict):
            msg = "unreadable_frame"
            raise StreamProtocolError(msg)
        if "error" in body:
            self.turn.error = str(body["error"])
            return
        self.turn.text += str(body.get("text") or "")
        for item in body.get("citations") or []:
            uri = item.get("uri") if isinstance(item, dict) else None
            if not uri or uri in self._seen:
                continue
            self._seen.add(uri)
            self.turn.citations.append(Citation(uri=uri, title=str(item.get("title") or "")))


def _client_message(exc: Exception) -> str:
    if isinstance(exc, GatewayError):
        return str(exc)
    return "upstream_stream_failed"
