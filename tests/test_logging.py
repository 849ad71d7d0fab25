from __future__ import annotations

import json
import logging

from agent_gateway.infra.logging import (
    RequestIdFilter,
    StructuredFormatter,
    configure_logging,
    request_id_ctx,
)


def _record(event: str = "settlement_outcome", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="agent_gateway.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=event,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_event_service_request_id_and_extra_fields() -> None:
    token = request_id_ctx.set("req-1")
    try:
        record = _record(reference="METI_u42_agency_1", status="settled")
        RequestIdFilter().filter(record)
        entry = json.loads(StructuredFormatter(service="agent-gateway").format(record))
    finally:
        request_id_ctx.reset(token)

    assert entry["event"] == "settlement_outcome"
    assert entry["service"] == "agent-gateway"
    assert entry["request_id"] == "req-1"
    assert entry["reference"] == "METI_u42_agency_1"
    assert entry["status"] == "settled"


def test_formatter_redacts_credential_fields() -> None:
    record = _record(
        signature_header="abc123",
        authorization="Bearer x",
        genai_api_key="k",
        reason="signature_invalid",
    )

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["signature_header"] == "[redacted]"
    assert entry["authorization"] == "[redacted]"
    assert entry["genai_api_key"] == "[redacted]"
    assert entry["reason"] == "signature_invalid"
    assert "service" not in entry


def test_formatter_truncates_oversized_string_fields() -> None:
    record = _record(raw_preview="x" * 2500)

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["raw_preview"] == "x" * 2000 + "...[500 more]"


def test_configure_logging_installs_formatter_and_filter_once() -> None:
    root = logging.getLogger()
    handler = logging.StreamHandler()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = [handler]
    try:
        configure_logging("debug", service="agent-gateway")
        configure_logging("debug", service="agent-gateway")

        assert isinstance(handler.formatter, StructuredFormatter)
        assert handler.formatter.service == "agent-gateway"
        assert sum(isinstance(item, RequestIdFilter) for item in handler.filters) == 1
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
