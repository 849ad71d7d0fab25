from typing import Any


class GatewayError(Exception):
    pass


class CallerError(GatewayError):
    pass


class UnknownAgentError(CallerError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"unknown_agent:{agent_id}")
        self.agent_id = agent_id


class InvalidPayloadError(CallerError):
    pass


class InvalidTurnStateError(CallerError):
    pass


class ProviderUnavailableError(GatewayError):
    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class FatalProviderError(GatewayError):
    """Raised by provider adapters for rejections that no retry can fix."""


class MalformedOutputError(GatewayError):
    def __init__(self, message: str, raw_text: str | None = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class OutputShapeError(MalformedOutputError):
    def __init__(
        self,
        violations: list[str],
        raw_text: str | None = None,
        value: Any = None,
    ) -> None:
        super().__init__("output_shape_mismatch", raw_text=raw_text)
        self.violations = violations
        self.value = value


class SignatureInvalidError(GatewayError):
    pass


class UnreadableWebhookError(GatewayError):
    pass


class AuthenticationError(GatewayError):
    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamProtocolError(GatewayError):
    pass


class StorageSchemaError(GatewayError):
    pass
