from __future__ import annotations

import httpx
import pytest

from clinic.errors import (
    GENERIC_MESSAGE,
    QUOTA_MESSAGE,
    TRANSIENT_MESSAGE,
    CaseParseError,
    GenerationFatalError,
    GenerationRetryableError,
    describe_generation_error,
    is_retryable,
)
from clinic.retry import with_retry


@pytest.mark.asyncio
async def test_retryable_failures_back_off_then_propagate(fake_sleep, sleeps) -> None:
    calls = 0

    async def _fn() -> str:
        nonlocal calls
        calls += 1
        raise GenerationRetryableError("quota exceeded")

    with pytest.raises(GenerationRetryableError):
        await with_retry(_fn, attempts=3, base_delay=1.0, sleep=fake_sleep)

    assert calls == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_two_failures_then_success(fake_sleep, sleeps) -> None:
    outcomes: list[object] = [GenerationRetryableError("503"), GenerationRetryableError("503"), "case"]
    calls = 0

    async def _fn() -> str:
        nonlocal calls
        calls += 1
        out = outcomes.pop(0)
        if isinstance(out, BaseException):
            raise out
        return str(out)

    assert await with_retry(_fn, sleep=fake_sleep) == "case"
    assert calls == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_fatal_error_is_not_retried(fake_sleep, sleeps) -> None:
    calls = 0

    async def _fn() -> str:
        nonlocal calls
        calls += 1
        raise CaseParseError("not json")

    with pytest.raises(CaseParseError):
        await with_retry(_fn, sleep=fake_sleep)

    assert calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_recovers_after_transient_failure(fake_sleep, sleeps) -> None:
    outcomes: list[object] = [httpx.ConnectError("connection reset"), "ok"]

    async def _fn() -> str:
        out = outcomes.pop(0)
        if isinstance(out, BaseException):
            raise out
        return str(out)

    assert await with_retry(_fn, base_delay=0.5, sleep=fake_sleep) == "ok"
    assert sleeps == [0.5]


@pytest.mark.asyncio
async def test_attempts_must_be_positive(fake_sleep) -> None:
    async def _fn() -> None:
        return None

    with pytest.raises(ValueError):
        await with_retry(_fn, attempts=0, sleep=fake_sleep)


class _StatusError(Exception):
    def __init__(self, status_code: int, message: str | None = None) -> None:
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (GenerationRetryableError("x"), True),
        (GenerationFatalError("quota exceeded"), False),
        (_StatusError(429), True),
        (_StatusError(503), True),
        (_StatusError(401), False),
        (_StatusError(400, "maximum context length is 16500 tokens"), False),
        (_StatusError(400, "quota project not set"), False),
        (_StatusError(500, "upstream"), True),
        (RuntimeError("HTTP 500 internal"), True),
        (RuntimeError("prompt used 16500 tokens"), False),
        (RuntimeError("RESOURCE_EXHAUSTED: try tomorrow"), True),
        (RuntimeError("Rpc failed due to xhr error"), True),
        (httpx.ReadTimeout("slow"), True),
        (ValueError("bad input"), False),
    ],
)
def test_is_retryable(exc: BaseException, expected: bool) -> None:
    assert is_retryable(exc) is expected


def test_user_facing_messages() -> None:
    assert describe_generation_error(RuntimeError("You exceeded your current quota")) == QUOTA_MESSAGE
    assert describe_generation_error(httpx.ConnectError("down")) == TRANSIENT_MESSAGE
    assert describe_generation_error(CaseParseError("not json")) == GENERIC_MESSAGE
    assert describe_generation_error(KeyError("boom")) == GENERIC_MESSAGE


def test_status_code_decides_over_message() -> None:
    request = httpx.Request("POST", "http://llm.test/v1/chat/completions")
    bad_request = httpx.HTTPStatusError(
        "quota check failed for 1500 tokens",
        request=request,
        response=httpx.Response(400, request=request),
    )

    assert is_retryable(bad_request) is False
    assert describe_generation_error(bad_request) == GENERIC_MESSAGE
    assert describe_generation_error(_StatusError(400, "quota project not set")) == GENERIC_MESSAGE
    assert describe_generation_error(_StatusError(429, "slow down")) == QUOTA_MESSAGE


@pytest.mark.asyncio
async def test_client_error_mentioning_500_is_not_retried(fake_sleep, sleeps) -> None:
    calls = 0

    async def _fn() -> str:
        nonlocal calls
        calls += 1
        raise _StatusError(400, "maximum context length is 16500 tokens")

    with pytest.raises(_StatusError):
        await with_retry(_fn, sleep=fake_sleep)

    assert calls == 1
    assert sleeps == []
