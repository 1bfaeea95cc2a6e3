"""
Error classification for AI calls.

Maps raw exceptions and HTTP-like error payloads onto a fixed taxonomy so
retry and fallback decisions never depend on a specific client library.
"""

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from .response_parser import LLMResponseParseError

logger = logging.getLogger(__name__)


class AIErrorKind(Enum):
    """Categories of AI call failures."""
    AUTH_INVALID = "auth_invalid"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    QUOTA_EXCEEDED = "quota_exceeded"
    NETWORK_ERROR = "network_error"
    PARSE_ERROR = "parse_error"
    UNKNOWN = "unknown"


# Retryable flag and default HTTP status, fixed per kind
_KIND_PROPERTIES: Dict[AIErrorKind, Tuple[bool, Optional[int]]] = {
    AIErrorKind.AUTH_INVALID: (False, 401),
    AIErrorKind.RATE_LIMITED: (True, 429),
    AIErrorKind.TIMEOUT: (True, 408),
    AIErrorKind.QUOTA_EXCEEDED: (False, 429),
    AIErrorKind.NETWORK_ERROR: (True, 503),
    AIErrorKind.PARSE_ERROR: (False, 500),
    AIErrorKind.UNKNOWN: (False, None),
}

# Checked in order; the first matching kind wins
_MESSAGE_RULES: Tuple[Tuple[AIErrorKind, Tuple[str, ...]], ...] = (
    (AIErrorKind.AUTH_INVALID, ("api key", "authentication", "unauthorized")),
    (AIErrorKind.RATE_LIMITED, ("rate limit", "rate_limit", "too many requests")),
    (AIErrorKind.TIMEOUT, ("timeout", "timed out", "etimedout")),
    (AIErrorKind.QUOTA_EXCEEDED, ("quota", "insufficient credits", "insufficient balance")),
    (AIErrorKind.NETWORK_ERROR, (
        "network", "connection error", "econnreset", "econnrefused", "enotfound", "enetunreach",
    )),
    (AIErrorKind.PARSE_ERROR, ("json", "parse", "invalid response")),
)

FALLBACK_KINDS = frozenset({
    AIErrorKind.TIMEOUT,
    AIErrorKind.RATE_LIMITED,
    AIErrorKind.NETWORK_ERROR,
    AIErrorKind.PARSE_ERROR,
})


@dataclass(frozen=True)
class AIError:
    """A classified AI failure. Consumed immediately to decide retry/fallback."""
    kind: AIErrorKind
    message: str
    retryable: bool
    timestamp: float
    status_code: Optional[int] = None
    original_error: Optional[BaseException] = None

    def to_dict(self) -> dict:
        return {
            "type": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "status_code": self.status_code,
            "timestamp": self.timestamp,
        }


def _make_error(
    kind: AIErrorKind,
    message: str,
    timestamp: float,
    status_code: Optional[int] = None,
    original: Optional[BaseException] = None
) -> AIError:
    retryable, default_status = _KIND_PROPERTIES[kind]
    return AIError(
        kind=kind,
        message=message,
        retryable=retryable,
        timestamp=timestamp,
        status_code=status_code if status_code is not None else default_status,
        original_error=original
    )


def _extract_status(error: Any) -> Optional[int]:
    if isinstance(error, Mapping):
        status = error.get("status", error.get("statusCode", error.get("status_code")))
    else:
        status = getattr(error, "status_code", None)
        if status is None:
            status = getattr(error, "status", None)
    if isinstance(status, bool):
        return None
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _extract_message(error: Any) -> str:
    if isinstance(error, Mapping):
        message = error.get("message")
        if not message and isinstance(error.get("error"), Mapping):
            message = error["error"].get("message")
        return str(message or "API error")
    return str(error)


def _kind_from_status(status: int, message: str) -> Optional[AIErrorKind]:
    if status in (401, 403):
        return AIErrorKind.AUTH_INVALID
    if status == 408:
        return AIErrorKind.TIMEOUT
    if status == 429:
        # Providers answer exhausted quota with 429 as well
        if "quota" in message or "credit" in message:
            return AIErrorKind.QUOTA_EXCEEDED
        return AIErrorKind.RATE_LIMITED
    if status >= 500:
        return AIErrorKind.NETWORK_ERROR
    return None


def _kind_from_message(message: str) -> Optional[AIErrorKind]:
    for kind, needles in _MESSAGE_RULES:
        if any(needle in message for needle in needles):
            return kind
    return None


def _kind_from_type(error: BaseException) -> Optional[AIErrorKind]:
    if isinstance(error, (json.JSONDecodeError, LLMResponseParseError)):
        return AIErrorKind.PARSE_ERROR
    if isinstance(error, TimeoutError):
        return AIErrorKind.TIMEOUT
    if isinstance(error, ConnectionError):
        return AIErrorKind.NETWORK_ERROR
    return None


def classify_error(error: Any) -> AIError:
    """Categorize an error into the AI error taxonomy.

    An HTTP-like status code (``status_code``/``status`` attribute, or a
    ``status``/``statusCode`` key on a mapping) takes precedence. Otherwise
    the lower-cased message is matched against known substrings, then the
    exception type is consulted.

    Args:
        error: An exception, an API error payload, or a plain string

    Returns:
        Classified AIError; UNKNOWN when nothing matches
    """
    timestamp = time.time()

    if isinstance(error, str):
        return _make_error(AIErrorKind.UNKNOWN, error, timestamp)

    if not isinstance(error, (BaseException, Mapping)):
        return _make_error(AIErrorKind.UNKNOWN, "An unknown error occurred", timestamp)

    original = error if isinstance(error, BaseException) else None
    message = _extract_message(error)
    lowered = message.lower()

    status = _extract_status(error)
    if status is not None:
        kind = _kind_from_status(status, lowered)
        if kind is not None:
            return _make_error(kind, message, timestamp, status, original)

    kind = _kind_from_message(lowered)
    if kind is None and original is not None:
        kind = _kind_from_type(original)

    if kind is None:
        return _make_error(
            AIErrorKind.UNKNOWN, message or "An unknown error occurred", timestamp, status, original
        )
    return _make_error(kind, message, timestamp, status, original)


def should_fallback(error: AIError) -> bool:
    """Whether a classified error should be answered with a rule-based result.

    Transient and response-quality failures degrade gracefully. Auth and
    quota failures are configuration problems and must surface.
    """
    return error.kind in FALLBACK_KINDS


def to_error_response(error: Any, fallback_used: bool = False) -> dict:
    """Structured error payload for an API boundary."""
    ai_error = error if isinstance(error, AIError) else classify_error(error)
    return {
        "success": False,
        "error": ai_error.to_dict(),
        "fallback_used": fallback_used,
    }


def log_ai_error(error: AIError, context: Optional[Dict[str, Any]] = None) -> None:
    """Log retryable errors as warnings and the rest as errors."""
    level = logging.WARNING if error.retryable else logging.ERROR
    logger.log(level, "AI error %s: %s", error.kind.value, error.message, extra={"ai_context": context or {}})


async def safe_ai_call(
    operation: Callable[[], Awaitable[Any]],
    context: Optional[Dict[str, Any]] = None
) -> dict:
    """Run an AI operation and return a success or error payload.

    For boundaries that must always answer with a structured response.
    """
    try:
        data = await operation()
    except Exception as exc:
        ai_error = classify_error(exc)
        log_ai_error(ai_error, context)
        return to_error_response(ai_error)
    return {"success": True, "data": data}
