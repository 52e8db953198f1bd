"""
Error taxonomy for the try-on proxy.

Failures inside the proxy are raised as ``TryOnError`` subclasses carrying an
``ErrorKind``. Exceptions that come from outside (``gradio_client``, httpx,
the filesystem) are translated once, at the boundary, by ``translate_exception``.
``classify`` turns any exception into the public status code and message and
never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    QUOTA = "quota_limit"
    AUTH = "auth"
    BAD_RESULT = "bad_upstream_result"
    UNREACHABLE = "upstream_unavailable"
    UNKNOWN = "error"


class TryOnError(RuntimeError):
    """Base class for failures surfaced to API callers."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        # The remote side may still be working on a timed-out job.
        return self.kind not in {ErrorKind.TIMEOUT, ErrorKind.VALIDATION}


class RequestValidationFailed(TryOnError):
    kind = ErrorKind.VALIDATION


class UpstreamTimeoutError(TryOnError):
    kind = ErrorKind.TIMEOUT


class UpstreamQuotaError(TryOnError):
    kind = ErrorKind.QUOTA


class UpstreamAuthError(TryOnError):
    kind = ErrorKind.AUTH


class BadUpstreamResultError(TryOnError):
    kind = ErrorKind.BAD_RESULT


class UpstreamUnavailableError(TryOnError):
    kind = ErrorKind.UNREACHABLE


_TIMEOUT_KEYWORDS = ("timeout", "timed out")
_QUOTA_KEYWORDS = (
    "quota",
    "zerogpu",
    "rate limit",
    "429",
    "overload",
    "unavailable",
    "too many",
    "asleep",
    "generic error",
)
_AUTH_KEYWORDS = ("401", "unauthorized", "hf_token", "token is not set")
_BAD_RESULT_KEYWORDS = ("invalid or empty result",)
_UNREACHABLE_KEYWORDS = (
    "econnrefused",
    "connection refused",
    "failed to fetch",
    "connecterror",
    "connect error",
    "name or service not known",
)

# Checked in order; the first match wins.
_KEYWORD_TABLE: Tuple[Tuple[ErrorKind, Tuple[str, ...]], ...] = (
    (ErrorKind.TIMEOUT, _TIMEOUT_KEYWORDS),
    (ErrorKind.QUOTA, _QUOTA_KEYWORDS),
    (ErrorKind.AUTH, _AUTH_KEYWORDS),
    (ErrorKind.BAD_RESULT, _BAD_RESULT_KEYWORDS),
    (ErrorKind.UNREACHABLE, _UNREACHABLE_KEYWORDS),
)

_KIND_TO_ERROR = {
    ErrorKind.VALIDATION: RequestValidationFailed,
    ErrorKind.TIMEOUT: UpstreamTimeoutError,
    ErrorKind.QUOTA: UpstreamQuotaError,
    ErrorKind.AUTH: UpstreamAuthError,
    ErrorKind.BAD_RESULT: BadUpstreamResultError,
    ErrorKind.UNREACHABLE: UpstreamUnavailableError,
    ErrorKind.UNKNOWN: TryOnError,
}

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.QUOTA: 429,
    ErrorKind.AUTH: 401,
    ErrorKind.BAD_RESULT: 500,
    ErrorKind.UNREACHABLE: 503,
    ErrorKind.UNKNOWN: 500,
}

_PUBLIC_MESSAGES = {
    ErrorKind.TIMEOUT: "Processing timed out. The AI model took too long to respond. Please try again.",
    ErrorKind.QUOTA: (
        "The AI service daily quota appears to be full or the service is overloaded. "
        "Please try again later."
    ),
    ErrorKind.AUTH: "Authentication failed. Check the HF_TOKEN environment variable.",
    ErrorKind.BAD_RESULT: "The AI model returned an invalid result. The input images might not be suitable.",
    ErrorKind.UNREACHABLE: "AI service is unavailable or inaccessible. Please try again in a moment.",
    ErrorKind.UNKNOWN: "Failed to process image. An internal error occurred.",
}


@dataclass(frozen=True)
class ClassifiedError:
    status_code: int
    kind: ErrorKind
    message: str
    raw: str

    def to_payload(self) -> dict:
        return {
            "status": "error",
            "message": self.message,
            "errorType": self.kind.value,
            "error": self.raw,
        }


def error_message(exc: BaseException) -> str:
    """Best-effort human readable text for an arbitrary exception."""
    try:
        text = str(exc)
    except Exception:  # pylint: disable=broad-except
        text = ""
    if not text:
        text = type(exc).__name__
    return text


def match_kind(message: Optional[str]) -> Optional[ErrorKind]:
    if not message or not isinstance(message, str):
        return None
    lowered = message.lower()
    for kind, keywords in _KEYWORD_TABLE:
        if any(keyword in lowered for keyword in keywords):
            return kind
    return None


def translate_exception(
    exc: BaseException,
    *,
    default: ErrorKind = ErrorKind.UNKNOWN,
    prefix: Optional[str] = None,
) -> TryOnError:
    """Wrap a foreign exception in the matching ``TryOnError`` subclass."""
    if isinstance(exc, TryOnError):
        return exc
    text = error_message(exc)
    kind = match_kind(text) or default
    if prefix:
        text = f"{prefix}: {text}"
    translated = _KIND_TO_ERROR[kind](text)
    translated.__cause__ = exc
    return translated


def classify(exc: BaseException) -> ClassifiedError:
    try:
        raw = error_message(exc)
        if isinstance(exc, TryOnError):
            kind = exc.kind
        else:
            kind = match_kind(raw) or ErrorKind.UNKNOWN
        if kind is ErrorKind.VALIDATION:
            message = raw
        else:
            message = _PUBLIC_MESSAGES[kind]
        return ClassifiedError(
            status_code=_STATUS_BY_KIND[kind],
            kind=kind,
            message=message,
            raw=raw,
        )
    except Exception as classify_exc:  # pylint: disable=broad-except
        logger.error("Error classification failed: %s", classify_exc)
        return ClassifiedError(
            status_code=500,
            kind=ErrorKind.UNKNOWN,
            message=_PUBLIC_MESSAGES[ErrorKind.UNKNOWN],
            raw="",
        )
