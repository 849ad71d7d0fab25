"""Best-effort repair of nominally structured model output.

The provider is asked for JSON but may wrap it in prose or markdown fences.
Callers must treat ``MalformedOutputError`` as an expected outcome.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from agent_gateway.domain.exceptions import MalformedOutputError, OutputShapeError
from agent_gateway.domain.schema import SchemaDescriptor

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```[\w+-]*[ \t]*\r?\n?(.*?)\s*```", re.DOTALL)
_RAW_PREVIEW_LIMIT = 300


def decode(raw_text: str | None, shape: SchemaDescriptor | None = None) -> Any:
    """Parse ``raw_text`` into a JSON value, repairing fences and surrounding prose.

    When ``shape`` is given the decoded value must satisfy it, otherwise
    ``OutputShapeError`` is raised.
    """
    value = _parse_with_repair(raw_text)
    if shape is not None:
        violations = shape.validate(value)
        if violations:
            logger.warning(
                "decoder_shape_mismatch",
                extra={"violations": violations[:20], "raw_preview": _preview(raw_text)},
            )
            raise OutputShapeError(violations, raw_text=raw_text, value=value)
    return value


def extract_fenced_block(text: str) -> str | None:
    match = _FENCE_PATTERN.search(text)
    if match is None:
        return None
    return match.group(1).strip()


def _parse_with_repair(raw_text: str | None) -> Any:
    if raw_text is None or not raw_text.strip():
        msg = "empty_model_output"
        raise MalformedOutputError(msg, raw_text=raw_text)

    text = raw_text.strip()
    fenced = extract_fenced_block(text)
    if fenced is not None:
        text = fenced

    try:
        return _loads(text)
    except ValueError:
        logger.info("decoder_direct_parse_failed", extra={"raw_preview": _preview(raw_text)})

    start = _first_opening(text)
    end = max(text.rfind("}"), text.rfind("]"))
    if start == -1 or end <= start:
        msg = "no_structured_output"
        raise MalformedOutputError(msg, raw_text=raw_text)

    try:
        return _loads(text[start : end + 1])
    except ValueError as exc:
        msg = "unrepairable_structured_output"
        raise MalformedOutputError(msg, raw_text=raw_text) from exc


def _loads(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are accepted by json.loads but are not JSON.
    msg = f"non_finite_number:{name}"
    raise ValueError(msg)


def _finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        msg = f"non_finite_number:{literal}"
        raise ValueError(msg)
    return value


def _first_opening(text: str) -> int:
    positions = [index for index in (text.find("{"), text.find("[")) if index != -1]
    return min(positions) if positions else -1


def _preview(raw_text: str | None) -> str:
    return (raw_text or "")[:_RAW_PREVIEW_LIMIT]
