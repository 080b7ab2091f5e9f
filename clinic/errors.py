from __future__ import annotations

import re

import httpx

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
_HTTP_500 = re.compile(r"\b500\b")

QUOTA_MESSAGE = "Daily clinic quota exceeded!"
TRANSIENT_MESSAGE = "Network interference. The clinic line is busy."
GENERIC_MESSAGE = "Failed to find a patient."


class GenerationError(RuntimeError):
    pass


class GenerationRetryableError(GenerationError):
    """Quota exhaustion or a transient server/transport failure."""


class GenerationFatalError(GenerationError):
    """Anything a retry cannot fix (bad credentials, malformed output...)."""


class CaseParseError(GenerationFatalError):
    pass


class PersistenceRemoteUnavailable(RuntimeError):
    pass


class PersistenceLocalUnavailable(RuntimeError):
    pass


class InvalidActionError(ValueError):
    pass


def _message_of(exc: BaseException) -> str:
    return str(exc).casefold()


def _status_code_of(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    code = getattr(exc, "status_code", None)
    return code if isinstance(code, int) else None


def is_quota_error(exc: BaseException) -> bool:
    # A status code, when present, decides on its own.
    status_code = _status_code_of(exc)
    if status_code is not None:
        return status_code == 429
    if getattr(exc, "status", None) == "RESOURCE_EXHAUSTED":
        return True
    msg = _message_of(exc)
    return "quota" in msg or "resource_exhausted" in msg


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    status_code = _status_code_of(exc)
    if status_code is not None:
        return status_code in RETRYABLE_STATUS_CODES
    msg = _message_of(exc)
    return _HTTP_500.search(msg) is not None or "xhr error" in msg


def is_retryable(exc: BaseException) -> bool:
    """Classify an error raised by the generation service.

    Explicitly typed errors win; foreign exceptions (openai/httpx/autogen) are
    classified by status code, transport type, or message.
    """

    if isinstance(exc, GenerationFatalError):
        return False
    if isinstance(exc, GenerationRetryableError):
        return True
    return is_quota_error(exc) or is_transient_error(exc)


def describe_generation_error(exc: BaseException) -> str:
    """User-facing message for a failed case request."""

    if is_quota_error(exc):
        return QUOTA_MESSAGE
    if isinstance(exc, GenerationFatalError):
        return GENERIC_MESSAGE
    if is_transient_error(exc) or isinstance(exc, GenerationRetryableError):
        return TRANSIENT_MESSAGE
    return GENERIC_MESSAGE
