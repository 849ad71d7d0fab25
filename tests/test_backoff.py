from typing import Any

import pytest

from agent_gateway.application.services.backoff import backoff_delay, is_fatal_error, with_backoff
from agent_gateway.domain.exceptions import FatalProviderError


class _StatusError(Exception):
    def __init__(self, code: int, message: str = "upstream failed") -> None:
        super().__init__(message)
        self.code = code


class _Recorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)


def _failing_op(failures: list[Exception], result: Any = "ok") -> Any:
    calls = {"count": 0}

    async def _op() -> Any:
        calls["count"] += 1
        if failures:
            raise failures.pop(0)
        return result

    _op.calls = calls  # type: ignore[attr-defined]
    return _op


@pytest.mark.asyncio
async def test_with_backoff_retries_transient_errors_with_exponential_delay() -> None:
    recorder = _Recorder()
    op = _failing_op([_StatusError(503), _StatusError(429)])

    result = await with_backoff(
        op, max_attempts=3, base_delay=1.0, jitter=False, sleep=recorder.sleep
    )

    assert result == "ok"
    assert op.calls["count"] == 3
    assert recorder.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_with_backoff_reraises_last_error_when_exhausted() -> None:
    recorder = _Recorder()
    last = TimeoutError("read timed out")
    op = _failing_op([_StatusError(500), _StatusError(503), last])

    with pytest.raises(TimeoutError) as exc_info:
        await with_backoff(op, max_attempts=3, base_delay=0.5, jitter=False, sleep=recorder.sleep)

    assert exc_info.value is last
    assert op.calls["count"] == 3
    assert recorder.delays == [0.5, 1.0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        _StatusError(400),
        _StatusError(401),
        _StatusError(403),
        RuntimeError("400 INVALID_ARGUMENT: bad schema"),
        RuntimeError("API_KEY_INVALID"),
        FatalProviderError("rejected"),
    ],
)
async def test_with_backoff_does_not_retry_fatal_errors(error: Exception) -> None:
    recorder = _Recorder()
    op = _failing_op([error])

    with pytest.raises(type(error)):
        await with_backoff(op, max_attempts=5, base_delay=1.0, sleep=recorder.sleep)

    assert op.calls["count"] == 1
    assert recorder.delays == []


@pytest.mark.asyncio
async def test_with_backoff_single_attempt_never_sleeps() -> None:
    recorder = _Recorder()
    op = _failing_op([_StatusError(503)])

    with pytest.raises(_StatusError):
        await with_backoff(op, max_attempts=1, base_delay=1.0, sleep=recorder.sleep)

    assert recorder.delays == []


@pytest.mark.asyncio
async def test_with_backoff_rejects_non_positive_attempts() -> None:
    with pytest.raises(ValueError, match="max_attempts_must_be_positive"):
        await with_backoff(_failing_op([]), max_attempts=0)


def test_backoff_delay_equal_jitter_stays_in_upper_half() -> None:
    assert backoff_delay(3, 1.0, jitter=True, rng=lambda: 0.0) == 2.0
    assert backoff_delay(3, 1.0, jitter=True, rng=lambda: 1.0) == 4.0
    assert backoff_delay(1, 2.0, jitter=False) == 2.0


def test_is_fatal_error_treats_rate_limits_and_server_errors_as_transient() -> None:
    assert not is_fatal_error(_StatusError(429))
    assert not is_fatal_error(_StatusError(500))
    assert not is_fatal_error(TimeoutError())
    assert is_fatal_error(_StatusError(404))
