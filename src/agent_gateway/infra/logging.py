import json
import logging
from contextvars import ContextVar
from typing import Any

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")

_RECORD_ATTRS = frozenset(
    {
        "args", "asctime", "created", "exc_info", "exc_text", "filename",
        "funcName", "levelname", "levelno", "lineno", "message", "module",
        "msecs", "msg", "name", "pathname", "process", "processName",
        "relativeCreated", "stack_info", "taskName", "thread", "threadName",
        "request_id",
    }
)
# Webhook signatures, bearer tokens and provider keys never reach the log stream.
_SECRET_MARKERS = ("signature", "authorization", "token", "secret", "api_key")
_REDACTED = "[redacted]"
_MAX_FIELD_CHARS = 2000
_NOISY_LOGGERS = ("httpx", "httpcore", "opensearch", "urllib3")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get()  # type: ignore[attr-defined]
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: service, event name, request id and ``extra`` fields.

    Extra fields whose name looks like a credential are redacted, and long
    strings (raw model output, webhook bodies) are cut to ``_MAX_FIELD_CHARS``.
    """

    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "request_id": getattr(record, "request_id", "-"),
            "logger": record.name,
            "event": record.message,
        }
        if self.service:
            entry["service"] = self.service
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RECORD_ATTRS:
                continue
            entry[key] = _scrub(key, value)
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text
        return json.dumps(entry, default=str, ensure_ascii=False)


def _scrub(key: str, value: Any) -> Any:
    lowered = key.lower()
    if any(marker in lowered for marker in _SECRET_MARKERS):
        return _REDACTED
    if isinstance(value, str) and len(value) > _MAX_FIELD_CHARS:
        return f"{value[:_MAX_FIELD_CHARS]}...[{len(value) - _MAX_FIELD_CHARS} more]"
    return value


def configure_logging(level: str = "INFO", service: str | None = None) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    if not root.handlers:
        root.addHandler(logging.StreamHandler())

    for handler in root.handlers:
        formatter = handler.formatter
        if not isinstance(formatter, StructuredFormatter) or formatter.service != service:
            handler.setFormatter(StructuredFormatter(service))
        if not any(isinstance(item, RequestIdFilter) for item in handler.filters):
            handler.addFilter(RequestIdFilter())

    # Transport libraries log every request at INFO.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
